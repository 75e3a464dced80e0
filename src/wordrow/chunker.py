"""Deterministic chunking of sentences into shuffled, hand-assigned rows."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from typing import Protocol

from .models import ChunkRow, Hand, InputMode, PreparedRows, TokenCard

CHUNK_SIZE = 4
MAX_SHUFFLE_ATTEMPTS = 6
MASK32 = 0xFFFFFFFF

HAND_KEY_MAP: dict[Hand, tuple[str, ...]] = {
    "left": ("A", "S", "D", "F"),
    "right": ("J", "K", "L", ";"),
}


class LengthMismatch(ValueError):
    """Surface and candidate token arrays of a sentence differ in length."""


class SentenceTokens(Protocol):
    """Anything carrying a sentence's parallel token arrays and seed."""

    @property
    def surface_tokens(self) -> Sequence[str]: ...

    @property
    def candidate_tokens(self) -> Sequence[str]: ...

    @property
    def seed(self) -> int: ...


def other_hand(hand: Hand) -> Hand:
    """Return the opposite hand."""
    return "right" if hand == "left" else "left"


def hand_for_mode(natural: Hand, mode: InputMode) -> Hand:
    """Return the hand a row uses under an input mode restriction."""
    if mode == "left" or mode == "right":
        return mode
    return natural


def labels_for(hand: Hand, size: int) -> tuple[str, ...]:
    """Return the first ``size`` key labels of a hand."""
    return HAND_KEY_MAP[hand][:size]


def build_chunks_for_sentence(
    sentence: SentenceTokens,
    policy_version: int,
    *,
    chunk_size: int = CHUNK_SIZE,
    starting_hand: Hand = "left",
    input_mode: InputMode = "both",
) -> list[ChunkRow]:
    """Split one sentence into rows of at most ``chunk_size`` tokens.

    Row ``i`` of the sentence uses the hand ``starting_hand`` alternated ``i``
    times (unless ``input_mode`` pins one hand) and a display order shuffled
    from a seed mixed out of the sentence seed, ``i`` and ``policy_version``.
    """
    surface_tokens = sentence.surface_tokens
    candidate_tokens = sentence.candidate_tokens
    if len(surface_tokens) != len(candidate_tokens):
        raise LengthMismatch("Surface tokens and candidate tokens must match in length.")
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive.")

    rows: list[ChunkRow] = []
    natural = starting_hand
    cursor = 0
    while cursor < len(surface_tokens):
        size = min(chunk_size, len(surface_tokens) - cursor)
        tokens = tuple(
            TokenCard(
                surface=surface_tokens[cursor + offset],
                candidate=candidate_tokens[cursor + offset],
                absolute_index=cursor + offset,
            )
            for offset in range(size)
        )
        hand = hand_for_mode(natural, input_mode)
        expected_order = tuple(range(size))
        order = shuffle_order(expected_order, combine_seeds(sentence.seed, len(rows), policy_version))
        rows.append(
            ChunkRow(
                chunk_index=len(rows),
                hand=hand,
                natural_hand=natural,
                labels=labels_for(hand, size),
                tokens=tokens,
                order=order,
                expected_order=expected_order,
            )
        )
        cursor += size
        natural = other_hand(natural)
    return rows


def build_rows_for_text(
    sentences: Iterable[SentenceTokens],
    policy_version: int,
    input_mode: InputMode = "both",
    *,
    chunk_size: int = CHUNK_SIZE,
) -> PreparedRows:
    """Chunk every sentence of a text into one globally numbered row list."""
    rows: list[ChunkRow] = []
    token_offset = 0
    starting_hand: Hand = "left"
    for sentence in sentences:
        sentence_rows = build_chunks_for_sentence(
            sentence,
            policy_version,
            chunk_size=chunk_size,
            starting_hand=starting_hand,
            input_mode=input_mode,
        )
        for row in sentence_rows:
            rows.append(
                replace(
                    row,
                    chunk_index=len(rows),
                    tokens=tuple(
                        replace(token, absolute_index=token.absolute_index + token_offset) for token in row.tokens
                    ),
                )
            )
        # Continuity follows the natural alternation, not a mode-pinned hand.
        if len(sentence_rows) % 2 == 1:
            starting_hand = other_hand(starting_hand)
        token_offset += len(sentence.surface_tokens)
    return PreparedRows(rows=tuple(rows), total_tokens=token_offset)


def retarget_row_for_mode(row: ChunkRow | None, mode: InputMode) -> ChunkRow | None:
    """Reassign hand and labels of a row for an input mode, keeping tokens and order.

    In ``both`` mode the row goes back to the natural hand it was chunked with.
    """
    if row is None:
        return None
    hand = hand_for_mode(row.natural_hand, mode)
    labels = labels_for(hand, len(row.tokens))
    if hand == row.hand and labels == row.labels:
        return row
    return replace(row, hand=hand, labels=labels)


def combine_seeds(seed: int, chunk_index: int, policy_version: int) -> int:
    """Mix a sentence seed, row index and policy version into a 32-bit row seed."""
    result = (seed ^ (policy_version + 31)) & MASK32
    result = (result + (chunk_index + 1) * 0x9E3779B1) & MASK32
    result ^= (result << 13) & MASK32
    result ^= result >> 17
    result ^= (result << 5) & MASK32
    return result & MASK32


def mulberry32(seed: int) -> Callable[[], float]:
    """Return a 32-bit generator of floats in [0, 1) seeded with ``seed``."""
    state = seed & MASK32

    def next_float() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & MASK32
        value = ((state ^ (state >> 15)) * (1 | state)) & MASK32
        value ^= (value + (((value ^ (value >> 7)) * (61 | value)) & MASK32)) & MASK32
        return ((value ^ (value >> 14)) & MASK32) / 4294967296

    return next_float


def shuffle_order(order: Sequence[int], seed: int) -> tuple[int, ...]:
    """Return a seed-determined permutation of ``order``, avoiding identity for 3+ items."""
    size = len(order)
    if size <= 1:
        return tuple(order)

    rng = mulberry32(seed)
    if size == 2:
        return (order[1], order[0]) if rng() >= 0.5 else tuple(order)

    identity = tuple(order)
    for _ in range(MAX_SHUFFLE_ATTEMPTS):
        candidate = _fisher_yates(identity, rng)
        if candidate != identity:
            return candidate

    forced = list(identity)
    forced[-1], forced[-2] = forced[-2], forced[-1]
    return tuple(forced)


def _fisher_yates(items: tuple[int, ...], rng: Callable[[], float]) -> tuple[int, ...]:
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = math.floor(rng() * (i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return tuple(shuffled)
