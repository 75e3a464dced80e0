"""Application service for the text library, practice sessions and history."""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from .chunker import build_rows_for_text
from .importer import normalize_raw_text, parse_imported_text
from .models import INPUT_MODES, InputMode, PreparedRows
from .session import BootstrapMeta, PlaySession, SessionEngine, accuracy_percent, rows_per_minute
from .storage import (
    STORAGE_POLICY_VERSION,
    LibraryStore,
    ProgressRecord,
    RowSnapshot,
    SentenceRecord,
    SessionRecord,
    TextRecord,
)

logger = logging.getLogger(__name__)

INPUT_MODE_SETTING = "input_mode"
DEFAULT_INPUT_MODE: InputMode = "both"


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a successful import."""

    text: TextRecord
    sentences_persisted: int


@dataclass(frozen=True)
class TextStats:
    """Lifetime metrics of one text across completed sessions."""

    text_id: str
    sessions: tuple[SessionRecord, ...]
    rows_completed: int
    tokens_first_try_correct: int
    mistakes_total: int
    active_ms: float
    best_rpm: float
    average_accuracy: int


class PracticeSession:
    """One practice run over a text, wrapping a session engine."""

    def __init__(self, text: TextRecord, prepared: PreparedRows, engine: SessionEngine, started_at: str) -> None:
        """Bind a prepared text to an engine."""
        self.text = text
        self.prepared = prepared
        self.engine = engine
        self.started_at = started_at

    @property
    def state(self) -> PlaySession:
        """Current engine state."""
        return self.engine.state

    def press(self, label: str) -> PlaySession:
        """Feed one label to the engine."""
        return self.engine.handle_input(label)

    def pause(self) -> PlaySession:
        return self.engine.pause()

    def resume(self) -> PlaySession:
        return self.engine.resume()

    def change_input_mode(self, mode: InputMode) -> PlaySession:
        return self.engine.apply_input_mode(mode)


class PracticeService:
    """Coordinates importing, the library and practice flows."""

    def __init__(self, db_path: Path | str, clock: Callable[[], float] | None = None) -> None:
        """Initialize service with database path and an optional millisecond clock for sessions."""
        self.store = LibraryStore(db_path)
        self._clock = clock

    def import_text(self, raw: str) -> ImportResult:
        """Parse and persist raw text, rejecting content already in the library."""
        normalized = normalize_raw_text(raw)
        parsed = parse_imported_text(normalized)
        content_hash = content_digest(normalized)
        now = _now()
        text_id = uuid.uuid4().hex[:12]

        text = TextRecord(
            id=text_id,
            title=parsed.title,
            lang_full=parsed.lang_full,
            lang_base=parsed.lang_base,
            content_hash=content_hash,
            created_at=now,
            updated_at=now,
            sentences_count=len(parsed.sentences),
            policy_version=STORAGE_POLICY_VERSION,
        )
        sentences = [
            SentenceRecord(
                id=f"{text_id}-{index}",
                text_id=text_id,
                index=index,
                surface_tokens=sentence.surface_tokens,
                candidate_tokens=sentence.candidate_tokens,
                lang_full=parsed.lang_full,
                seed=sentence.seed,
            )
            for index, sentence in enumerate(parsed.sentences)
        ]
        self.store.add_text(text, sentences)
        logger.info("Imported text %s (%d sentences, lang=%s)", text_id, len(sentences), parsed.lang_full)
        return ImportResult(text=text, sentences_persisted=len(sentences))

    def import_file(self, path: Path | str) -> ImportResult:
        """Import a UTF-8 text file."""
        return self.import_text(Path(path).read_text(encoding="utf-8"))

    def list_texts(self) -> list[TextRecord]:
        """Return library texts, most recently updated first."""
        return self.store.list_texts()

    def get_text(self, text_id: str) -> TextRecord:
        """Get one text or raise KeyError."""
        text = self.store.get_text(text_id)
        if text is None:
            raise KeyError(text_id)
        return text

    def delete_text(self, text_id: str) -> bool:
        """Delete a text and everything recorded for it."""
        deleted = self.store.delete_text(text_id)
        if deleted:
            logger.info("Deleted text %s", text_id)
        return deleted

    def get_input_mode(self) -> InputMode:
        """Return the persisted input mode."""
        value = self.store.get_setting(INPUT_MODE_SETTING)
        if value in INPUT_MODES:
            return cast(InputMode, value)
        return DEFAULT_INPUT_MODE

    def set_input_mode(self, mode: str) -> InputMode:
        """Persist the input mode."""
        if mode not in INPUT_MODES:
            raise ValueError(f"Unknown input mode: {mode}")
        self.store.set_setting(INPUT_MODE_SETTING, mode)
        return cast(InputMode, mode)

    def prepare_rows(self, text_id: str, input_mode: InputMode | None = None) -> PreparedRows:
        """Chunk every sentence of a text into practice rows."""
        text = self.get_text(text_id)
        sentences = self.store.list_sentences(text_id)
        mode = input_mode or self.get_input_mode()
        return build_rows_for_text(sentences, text.policy_version, mode)

    def start_session(self, text_id: str, *, resume: bool = True) -> PracticeSession:
        """Build rows for a text and bootstrap an engine, resuming saved progress when present."""
        text = self.get_text(text_id)
        mode = self.get_input_mode()
        prepared = self.prepare_rows(text_id, mode)
        engine = SessionEngine(clock=self._clock)

        progress = self.store.get_progress(text_id) if resume else None
        rows = prepared.rows
        start = 0
        if progress is not None and 0 < progress.ptr < len(rows):
            start = progress.ptr
        elif progress is not None and progress.ptr >= len(rows):
            logger.warning("Ignoring saved progress for %s past the last row", text_id)
            progress = None

        meta = BootstrapMeta(text_id=text_id, total_rows=len(rows), total_tokens=prepared.total_tokens)
        engine.bootstrap(rows[start:], meta, key=(text_id, text.updated_at))
        engine.apply_input_mode(mode)
        if progress is not None and progress.row_snapshots:
            live = progress.row_snapshots[0]
            current = engine.state.live_row
            if current is not None and current.order != live.order:
                logger.warning("Row order for %s changed since progress was saved", text_id)
            engine.restore_progress(progress.reveal_index, live.done)
        return PracticeSession(text=text, prepared=prepared, engine=engine, started_at=_now())

    def save_progress(self, session: PracticeSession) -> ProgressRecord | None:
        """Persist the live position of a session, or clear it once the text is finished."""
        state = session.state
        text_id = session.text.id
        if state.status == "completed" or state.live_row is None:
            self.store.clear_progress(text_id)
            return None

        slots = [(state.live_row, state.live_row_done)]
        if state.queued_row is not None:
            slots.append((state.queued_row, state.queued_row_done))
        slots.extend(zip(state.pending_rows, state.pending_rows_done, strict=True))
        snapshots = tuple(
            RowSnapshot(chunk_index=row.chunk_index, hand=row.hand, order=row.order, labels=row.labels, done=done)
            for row, done in slots
        )
        record = ProgressRecord(
            text_id=text_id,
            ptr=state.live_row.chunk_index,
            reveal_index=state.reveal_index,
            row_snapshots=snapshots,
            updated_at=_now(),
        )
        self.store.save_progress(record)
        self.store.touch_text(text_id)
        return record

    def finish_session(self, session: PracticeSession) -> SessionRecord | None:
        """Record the summary of a completed session and clear its progress."""
        state = session.state
        if state.status != "completed":
            return None
        hud = state.hud
        record = self.store.record_session(
            session.text.id,
            tokens_total=hud.tokens_total,
            tokens_first_try_correct=hud.tokens_first_try_correct,
            rows_completed=hud.rows_completed,
            mistakes_total=hud.mistakes_total,
            active_ms=hud.active_ms,
            started_at=session.started_at,
            ended_at=_now(),
            rpm=rows_per_minute(hud),
            accuracy=accuracy_percent(hud),
        )
        self.store.clear_progress(session.text.id)
        self.store.touch_text(session.text.id)
        logger.info("Recorded session %d for text %s", record.id, session.text.id)
        return record

    def text_stats(self, text_id: str) -> TextStats:
        """Aggregate completed sessions of a text."""
        self.get_text(text_id)
        sessions = tuple(self.store.list_sessions(text_id))
        # Every attempt is either a first-try hit or a mistake.
        attempted = sum(item.tokens_first_try_correct + item.mistakes_total for item in sessions)
        correct = sum(item.tokens_first_try_correct for item in sessions)
        return TextStats(
            text_id=text_id,
            sessions=sessions,
            rows_completed=sum(item.rows_completed for item in sessions),
            tokens_first_try_correct=correct,
            mistakes_total=sum(item.mistakes_total for item in sessions),
            active_ms=sum(item.active_ms for item in sessions),
            best_rpm=max((item.rpm for item in sessions), default=0.0),
            average_accuracy=round(correct / attempted * 100) if attempted else 0,
        )

    def close(self) -> None:
        """Close resources."""
        self.store.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass


def content_digest(normalized: str) -> str:
    """SHA-256 hex digest of normalized text, used for duplicate detection."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _now() -> str:
    return datetime.now(UTC).isoformat()
