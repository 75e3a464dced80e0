"""Practice session state machine.

The state is an immutable :class:`PlaySession`; every transition is a pure
function returning a new state. :class:`SessionEngine` holds the current state
and samples the clock at each event, so elapsed time is only ever measured at
transition boundaries.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Literal

from .chunker import retarget_row_for_mode
from .models import ChunkRow, HudCounters, InputMode

Status = Literal["idle", "ready", "paused", "completed"]
Done = tuple[bool, ...]


@dataclass(frozen=True)
class BootstrapMeta:
    """Session identity and totals supplied alongside the rows."""

    text_id: str | None = None
    total_rows: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class PlaySession:
    """Row pipeline, progress and counters of one practice session."""

    status: Status = "idle"
    live_row: ChunkRow | None = None
    live_row_done: Done = ()
    queued_row: ChunkRow | None = None
    queued_row_done: Done = ()
    pending_rows: tuple[ChunkRow, ...] = ()
    pending_rows_done: tuple[Done, ...] = ()
    reveal_index: int = 0
    tokens_revealed: int = 0
    total_rows: int = 0
    text_id: str | None = None
    hud: HudCounters = field(default_factory=HudCounters)
    mistake_version: int = 0
    last_active_ms: float | None = None
    input_mode: InputMode = "both"


@dataclass(frozen=True)
class Bootstrap:
    rows: tuple[ChunkRow, ...]
    meta: BootstrapMeta


@dataclass(frozen=True)
class KeyPressed:
    label: str


@dataclass(frozen=True)
class PauseRequested:
    pass


@dataclass(frozen=True)
class ResumeRequested:
    pass


@dataclass(frozen=True)
class InputModeChanged:
    mode: InputMode


@dataclass(frozen=True)
class ResetRequested:
    pass


SessionEvent = Bootstrap | KeyPressed | PauseRequested | ResumeRequested | InputModeChanged | ResetRequested


def _done_for(row: ChunkRow | None) -> Done:
    return (False,) * len(row.labels) if row is not None else ()


def _fold_active_time(state: PlaySession, now_ms: float) -> PlaySession:
    """Add time since the last active stamp to ``active_ms`` and restamp."""
    if state.last_active_ms is None:
        return replace(state, last_active_ms=now_ms)
    elapsed = max(0.0, now_ms - state.last_active_ms)
    return replace(
        state,
        hud=replace(state.hud, active_ms=state.hud.active_ms + elapsed),
        last_active_ms=now_ms,
    )


def _record_mistake(state: PlaySession) -> PlaySession:
    hud = state.hud
    return replace(
        state,
        hud=replace(
            hud,
            mistakes_total=hud.mistakes_total + 1,
            tokens_attempted=hud.tokens_attempted + 1,
            streak=0,
        ),
        mistake_version=state.mistake_version + 1,
    )


def bootstrap(state: PlaySession, rows: Sequence[ChunkRow], meta: BootstrapMeta, now_ms: float) -> PlaySession:
    """Load a new row pipeline, discarding the current one."""
    hud = replace(state.hud, tokens_total=meta.total_tokens)
    if not rows:
        return PlaySession(
            status="idle",
            total_rows=meta.total_rows,
            text_id=meta.text_id,
            hud=hud,
            input_mode=state.input_mode,
        )

    live_row = rows[0]
    queued_row = rows[1] if len(rows) > 1 else None
    pending_rows = tuple(rows[2:])
    return PlaySession(
        status="ready",
        live_row=live_row,
        live_row_done=_done_for(live_row),
        queued_row=queued_row,
        queued_row_done=_done_for(queued_row),
        pending_rows=pending_rows,
        pending_rows_done=tuple(_done_for(row) for row in pending_rows),
        reveal_index=0,
        tokens_revealed=live_row.tokens[0].absolute_index if live_row.tokens else 0,
        total_rows=meta.total_rows,
        text_id=meta.text_id,
        hud=hud,
        mistake_version=0,
        last_active_ms=now_ms,
        input_mode=state.input_mode,
    )


def handle_input(state: PlaySession, label: str, now_ms: float) -> PlaySession:
    """Resolve one key label against the live row."""
    row = state.live_row
    if state.status != "ready" or row is None:
        return state

    state = _fold_active_time(state, now_ms)
    try:
        slot = row.labels.index(label)
    except ValueError:
        return _record_mistake(state)

    if state.live_row_done[slot]:
        return state

    token_index = row.order[slot]
    # Duplicate words are interchangeable: matching text counts as the expected token.
    is_correct = (
        token_index == state.reveal_index
        or row.tokens[token_index].candidate == row.tokens[state.reveal_index].candidate
    )
    if not is_correct:
        return _record_mistake(state)

    live_done = state.live_row_done[:slot] + (True,) + state.live_row_done[slot + 1 :]
    reveal_index = state.reveal_index + 1
    row_completed = reveal_index >= len(row.tokens)
    hud = replace(
        state.hud,
        tokens_attempted=state.hud.tokens_attempted + 1,
        tokens_first_try_correct=state.hud.tokens_first_try_correct + 1,
        rows_completed=state.hud.rows_completed + (1 if row_completed else 0),
        streak=state.hud.streak + (1 if row_completed else 0),
    )
    tokens_revealed = state.tokens_revealed + 1

    if not row_completed:
        return replace(
            state,
            live_row_done=live_done,
            reveal_index=reveal_index,
            tokens_revealed=tokens_revealed,
            hud=hud,
        )

    promoted = state.queued_row
    if promoted is None:
        return replace(
            state,
            status="completed",
            live_row=None,
            live_row_done=(),
            reveal_index=0,
            tokens_revealed=tokens_revealed,
            hud=hud,
            last_active_ms=None,
        )

    next_queued = state.pending_rows[0] if state.pending_rows else None
    next_queued_done = state.pending_rows_done[0] if state.pending_rows_done else _done_for(next_queued)
    return replace(
        state,
        live_row=promoted,
        live_row_done=state.queued_row_done or _done_for(promoted),
        queued_row=next_queued,
        queued_row_done=next_queued_done if next_queued is not None else (),
        pending_rows=state.pending_rows[1:],
        pending_rows_done=state.pending_rows_done[1:],
        reveal_index=0,
        tokens_revealed=tokens_revealed,
        hud=hud,
    )


def pause(state: PlaySession, now_ms: float) -> PlaySession:
    """Stop accruing active time; only valid while ready."""
    if state.status != "ready":
        return state
    folded = _fold_active_time(state, now_ms)
    return replace(folded, status="paused", last_active_ms=None)


def resume(state: PlaySession, now_ms: float) -> PlaySession:
    """Resume accruing active time; only valid while paused."""
    if state.status != "paused":
        return state
    return replace(state, status="ready", last_active_ms=now_ms)


def apply_input_mode(state: PlaySession, mode: InputMode) -> PlaySession:
    """Reassign hands and labels of every pipeline slot without touching progress."""
    return replace(
        state,
        live_row=retarget_row_for_mode(state.live_row, mode),
        queued_row=retarget_row_for_mode(state.queued_row, mode),
        pending_rows=tuple(_retarget_pending(row, mode) for row in state.pending_rows),
        input_mode=mode,
    )


def _retarget_pending(row: ChunkRow, mode: InputMode) -> ChunkRow:
    retargeted = retarget_row_for_mode(row, mode)
    return retargeted if retargeted is not None else row


def restore_progress(state: PlaySession, reveal_index: int, live_row_done: Sequence[bool]) -> PlaySession:
    """Reapply a saved position inside the live row after bootstrap."""
    row = state.live_row
    if state.status != "ready" or row is None:
        return state
    if not 0 <= reveal_index < len(row.tokens) or len(live_row_done) != len(row.labels):
        return state
    if sum(1 for item in live_row_done if item) != reveal_index:
        return state
    base = row.tokens[0].absolute_index if row.tokens else 0
    return replace(
        state,
        reveal_index=reveal_index,
        live_row_done=tuple(bool(item) for item in live_row_done),
        tokens_revealed=base + reveal_index,
    )


def reset() -> PlaySession:
    """Return the initial idle state."""
    return PlaySession()


def transition(state: PlaySession, event: SessionEvent, now_ms: float) -> PlaySession:
    """Apply one event to a state."""
    if isinstance(event, KeyPressed):
        return handle_input(state, event.label, now_ms)
    if isinstance(event, PauseRequested):
        return pause(state, now_ms)
    if isinstance(event, ResumeRequested):
        return resume(state, now_ms)
    if isinstance(event, InputModeChanged):
        return apply_input_mode(state, event.mode)
    if isinstance(event, Bootstrap):
        return bootstrap(state, event.rows, event.meta, now_ms)
    if isinstance(event, ResetRequested):
        return reset()
    raise TypeError(f"Unsupported session event: {event!r}")


def accuracy_percent(hud: HudCounters) -> int:
    """Share of attempted tokens answered right the first time, as a rounded percent."""
    if hud.tokens_attempted <= 0:
        return 0
    return round(hud.tokens_first_try_correct / hud.tokens_attempted * 100)


def rows_per_minute(hud: HudCounters) -> float:
    """Completed rows per active minute, rounded to one decimal."""
    if hud.active_ms <= 0:
        return 0.0
    return round(hud.rows_completed / (hud.active_ms / 60000), 1)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SessionEngine:
    """Owns one session's state and feeds clock samples into the transitions."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        """Create an idle engine; ``clock`` returns milliseconds."""
        self._clock = clock or _monotonic_ms
        self.state = PlaySession()
        self._bootstrap_key: object | None = None

    def bootstrap(self, rows: Sequence[ChunkRow], meta: BootstrapMeta, key: object | None = None) -> bool:
        """Load rows unless ``key`` matches the pipeline already loaded."""
        if key is not None and key == self._bootstrap_key:
            return False
        self._bootstrap_key = key
        self.state = bootstrap(self.state, rows, meta, self._clock())
        return True

    def dispatch(self, event: SessionEvent) -> PlaySession:
        """Apply one event and return the new state."""
        if isinstance(event, ResetRequested):
            self._bootstrap_key = None
        self.state = transition(self.state, event, self._clock())
        return self.state

    def handle_input(self, label: str) -> PlaySession:
        return self.dispatch(KeyPressed(label))

    def pause(self) -> PlaySession:
        return self.dispatch(PauseRequested())

    def resume(self) -> PlaySession:
        return self.dispatch(ResumeRequested())

    def apply_input_mode(self, mode: InputMode) -> PlaySession:
        return self.dispatch(InputModeChanged(mode))

    def restore_progress(self, reveal_index: int, live_row_done: Sequence[bool]) -> PlaySession:
        self.state = restore_progress(self.state, reveal_index, live_row_done)
        return self.state

    def reset(self) -> PlaySession:
        return self.dispatch(ResetRequested())
