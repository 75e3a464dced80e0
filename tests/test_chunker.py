import pytest

from wordrow.chunker import (
    HAND_KEY_MAP,
    LengthMismatch,
    build_chunks_for_sentence,
    build_rows_for_text,
    combine_seeds,
    mulberry32,
    retarget_row_for_mode,
    shuffle_order,
)
from wordrow.models import ImportedSentence

BASE_SEED = 0xABC123


def _sentence(count: int, seed: int = BASE_SEED) -> ImportedSentence:
    words = ("One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten")
    surface = words[:count]
    return ImportedSentence(
        surface_tokens=surface,
        candidate_tokens=tuple(word.lower() for word in surface),
        seed=seed,
    )


def test_combine_seeds_golden_values() -> None:
    assert combine_seeds(BASE_SEED, 0, 1) == 3473738670
    assert combine_seeds(BASE_SEED, 1, 1) == 424809582
    assert combine_seeds(BASE_SEED, 0, 2) == 3474058057
    assert combine_seeds(0, 0, 1) == 1352747959
    assert combine_seeds(0xFFFFFFFF, 3, 2) == 1160859750


def test_mulberry32_sequence() -> None:
    rng = mulberry32(42)
    assert [rng() for _ in range(4)] == [
        0.6011037519201636,
        0.44829055899754167,
        0.8524657934904099,
        0.6697340414393693,
    ]

    zero = mulberry32(0)
    assert [zero() for _ in range(3)] == [0.26642920868471265, 0.0003297457005828619, 0.2232720274478197]


def test_mulberry32_stays_in_unit_interval() -> None:
    rng = mulberry32(123456789)
    for _ in range(1000):
        assert 0.0 <= rng() < 1.0


def test_shuffle_order_golden_values() -> None:
    assert shuffle_order((0, 1, 2, 3), 3473738670) == (0, 2, 3, 1)
    assert shuffle_order((0, 1, 2, 3), 3474058057) == (1, 3, 0, 2)
    assert shuffle_order((0, 1), 424809582) == (0, 1)


def test_shuffle_order_forces_swap_when_every_attempt_is_identity() -> None:
    assert shuffle_order((0, 1, 2), 2677) == (0, 2, 1)


@pytest.mark.parametrize("order", [(), (0,)])
def test_shuffle_order_leaves_tiny_rows_alone(order: tuple[int, ...]) -> None:
    assert shuffle_order(order, 99) == order


def test_shuffle_order_never_returns_identity_for_three_or_more() -> None:
    for size in (3, 4):
        identity = tuple(range(size))
        for seed in range(5000):
            result = shuffle_order(identity, seed)
            assert result != identity
            assert sorted(result) == list(identity)


def test_shuffle_order_two_items_is_a_coin_flip() -> None:
    swapped = sum(1 for seed in range(5000) if shuffle_order((0, 1), seed) == (1, 0))
    assert swapped == 2503


def test_build_chunks_for_base_sentence() -> None:
    rows = build_chunks_for_sentence(_sentence(6), 1)

    assert len(rows) == 2
    first, second = rows
    assert first.chunk_index == 0
    assert first.hand == "left"
    assert first.labels == ("A", "S", "D", "F")
    assert [token.surface for token in first.tokens] == ["One", "Two", "Three", "Four"]
    assert first.order == (0, 2, 3, 1)
    assert first.expected_order == (0, 1, 2, 3)

    assert second.chunk_index == 1
    assert second.hand == "right"
    assert second.labels == ("J", "K")
    assert [token.candidate for token in second.tokens] == ["five", "six"]
    assert [token.absolute_index for token in second.tokens] == [4, 5]
    assert second.order == (0, 1)


def test_build_chunks_is_deterministic() -> None:
    assert build_chunks_for_sentence(_sentence(9), 1) == build_chunks_for_sentence(_sentence(9), 1)


def test_policy_version_changes_the_shuffle() -> None:
    first = build_chunks_for_sentence(_sentence(6), 1)[0]
    second = build_chunks_for_sentence(_sentence(6), 2)[0]
    assert first.order == (0, 2, 3, 1)
    assert second.order == (1, 3, 0, 2)


@pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 8, 10])
def test_rows_partition_sentence_tokens(count: int) -> None:
    rows = build_chunks_for_sentence(_sentence(count, seed=count * 7919), 1)

    indexes = [token.absolute_index for row in rows for token in row.tokens]
    assert indexes == list(range(count))
    for row in rows[:-1]:
        assert len(row.tokens) == 4
    for row in rows:
        size = len(row.tokens)
        assert sorted(row.order) == list(range(size))
        assert row.expected_order == tuple(range(size))
        assert row.labels == HAND_KEY_MAP[row.hand][:size]
        if size >= 3:
            assert row.order != row.expected_order


def test_single_token_row_keeps_identity_order() -> None:
    rows = build_chunks_for_sentence(_sentence(1), 1)
    assert len(rows) == 1
    assert rows[0].order == (0,)
    assert rows[0].labels == ("A",)


def test_empty_sentence_has_no_rows() -> None:
    assert build_chunks_for_sentence(_sentence(0), 1) == []


def test_mismatched_token_arrays_are_rejected() -> None:
    sentence = ImportedSentence(surface_tokens=("One", "Two"), candidate_tokens=("one",), seed=1)
    with pytest.raises(LengthMismatch, match="must match in length"):
        build_chunks_for_sentence(sentence, 1)


def test_starting_hand_and_pinned_mode() -> None:
    rows = build_chunks_for_sentence(_sentence(9), 1, starting_hand="right")
    assert [row.hand for row in rows] == ["right", "left", "right"]

    pinned = build_chunks_for_sentence(_sentence(9), 1, input_mode="right")
    assert [row.hand for row in pinned] == ["right", "right", "right"]
    assert pinned[0].labels == ("J", "K", "L", ";")
    # Pinning a hand never changes the shuffle.
    assert [row.order for row in pinned] == [row.order for row in rows]


def test_build_rows_for_text_numbers_rows_globally() -> None:
    sentences = [_sentence(6, seed=11), _sentence(3, seed=22), _sentence(5, seed=33)]
    prepared = build_rows_for_text(sentences, 1)

    assert prepared.total_tokens == 14
    assert [row.chunk_index for row in prepared.rows] == [0, 1, 2, 3, 4]
    assert [row.hand for row in prepared.rows] == ["left", "right", "left", "right", "left"]
    indexes = [token.absolute_index for row in prepared.rows for token in row.tokens]
    assert indexes == list(range(14))
    # Row shuffles still come from each sentence's own seed and local row index.
    assert prepared.rows[2].order == build_chunks_for_sentence(sentences[1], 1)[0].order


def test_build_rows_for_text_empty_library_text() -> None:
    prepared = build_rows_for_text([], 1)
    assert prepared.rows == ()
    assert prepared.total_tokens == 0


def test_retarget_row_keeps_tokens_and_order() -> None:
    prepared = build_rows_for_text([_sentence(10, seed=5)], 1)
    row = prepared.rows[1]

    left = retarget_row_for_mode(row, "left")
    assert left is not None
    assert left.hand == "left"
    assert left.labels == ("A", "S", "D", "F")
    assert left.tokens == row.tokens
    assert left.order == row.order

    restored = retarget_row_for_mode(left, "both")
    assert restored == row


def test_retarget_returns_same_row_when_nothing_changes() -> None:
    row = build_rows_for_text([_sentence(4)], 1).rows[0]
    assert retarget_row_for_mode(row, "both") is row
    assert retarget_row_for_mode(None, "left") is None


def test_retarget_restores_natural_hand_of_right_starting_rows() -> None:
    rows = build_chunks_for_sentence(_sentence(9), 1, starting_hand="right")
    assert [row.natural_hand for row in rows] == ["right", "left", "right"]
    assert [retarget_row_for_mode(row, "both") for row in rows] == rows

    pinned = build_chunks_for_sentence(_sentence(9), 1, starting_hand="right", input_mode="left")
    assert [row.hand for row in pinned] == ["left", "left", "left"]
    assert [retarget_row_for_mode(row, "both") for row in pinned] == rows
