"""Core domain shapes shared by the importer, chunker and session engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Hand = Literal["left", "right"]
InputMode = Literal["both", "left", "right"]

INPUT_MODES: tuple[InputMode, ...] = ("both", "left", "right")


@dataclass(frozen=True)
class ImportedSentence:
    """One imported line split into display and matching tokens."""

    surface_tokens: tuple[str, ...]
    candidate_tokens: tuple[str, ...]
    seed: int


@dataclass(frozen=True)
class ImportedText:
    """Parsed text ready to be persisted."""

    title: str
    lang_full: str
    lang_base: str
    sentences: tuple[ImportedSentence, ...]


@dataclass(frozen=True)
class TokenCard:
    """One token placed on a row card."""

    surface: str
    candidate: str
    absolute_index: int


@dataclass(frozen=True)
class ChunkRow:
    """Chunk-sized group of tokens with its hand, key labels and display order.

    ``order[slot]`` is the token index shown under ``labels[slot]``;
    ``expected_order`` is the reveal order, always ``0..n-1``.
    ``natural_hand`` is the hand the row gets when both hands are in play;
    ``hand`` differs from it only while an input mode pins one hand.
    """

    chunk_index: int
    hand: Hand
    natural_hand: Hand
    labels: tuple[str, ...]
    tokens: tuple[TokenCard, ...]
    order: tuple[int, ...]
    expected_order: tuple[int, ...]


@dataclass(frozen=True)
class PreparedRows:
    """All rows of a text, numbered globally."""

    rows: tuple[ChunkRow, ...] = field(default_factory=tuple)
    total_tokens: int = 0


@dataclass(frozen=True)
class HudCounters:
    """Running counters shown while practicing."""

    tokens_total: int = 0
    tokens_attempted: int = 0
    tokens_first_try_correct: int = 0
    rows_completed: int = 0
    mistakes_total: int = 0
    streak: int = 0
    active_ms: float = 0.0
