"""Translate raw key input into row labels and the pause signal."""

from __future__ import annotations

from dataclasses import dataclass

from .chunker import HAND_KEY_MAP

PAUSE = "Space"
LABELS = frozenset(label for labels in HAND_KEY_MAP.values() for label in labels)

_NAMED_KEYS = {
    "space": PAUSE,
    " ": PAUSE,
    "semicolon": ";",
}


@dataclass(frozen=True)
class KeyEvent:
    """One key press as delivered by the input device."""

    key: str
    is_composing: bool = False


def label_for_key(event: KeyEvent) -> str | None:
    """Return the row label or ``PAUSE`` for a key event, or None when it is ignored."""
    if event.is_composing or not event.key:
        return None
    named = _NAMED_KEYS.get(event.key.lower())
    if named is not None:
        return named
    label = event.key.upper()
    return label if label in LABELS else None


def parse_key_stream(line: str) -> list[str]:
    """Split one typed shell line into labels; spaces become pause signals, unknown characters are skipped."""
    labels: list[str] = []
    for char in line:
        label = label_for_key(KeyEvent(key=char))
        if label is not None:
            labels.append(label)
    return labels
