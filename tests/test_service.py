from pathlib import Path

import pytest

from wordrow.importer import DuplicateText, EmptyInput
from wordrow.service import PracticeService, PracticeSession, content_digest
from wordrow.session import PlaySession

RAW = "Deck\nlang=en\nOne two three four five six\nSeven eight nine"


def _correct_label(state: PlaySession) -> str:
    row = state.live_row
    assert row is not None
    return row.labels[row.order.index(state.reveal_index)]


def _play(session: PracticeSession, presses: int, clock=None) -> None:
    for _ in range(presses):
        if clock is not None:
            clock.advance(1000)
        session.press(_correct_label(session.state))


def test_import_text_persists_sentences() -> None:
    service = PracticeService(":memory:")
    result = service.import_text(RAW)

    assert result.sentences_persisted == 2
    assert result.text.title == "Deck"
    assert result.text.lang_full == "en"
    assert result.text.sentences_count == 2
    assert service.list_texts() == [result.text]
    assert service.get_text(result.text.id) == result.text

    sentences = service.store.list_sentences(result.text.id)
    assert [sentence.id for sentence in sentences] == [f"{result.text.id}-0", f"{result.text.id}-1"]
    assert sentences[1].candidate_tokens == ("seven", "eight", "nine")


def test_duplicate_import_is_rejected_after_normalization() -> None:
    service = PracticeService(":memory:")
    service.import_text(RAW)

    with pytest.raises(DuplicateText, match="already exists"):
        service.import_text("\ufeff" + RAW.replace("\n", "\r\n"))
    assert len(service.list_texts()) == 1


def test_import_errors_propagate() -> None:
    service = PracticeService(":memory:")
    with pytest.raises(EmptyInput):
        service.import_text("  \n ")
    assert service.list_texts() == []


def test_import_file(tmp_path: Path) -> None:
    path = tmp_path / "deck.txt"
    path.write_text("Datei\nlang=de\nGuten Morgen, Welt!\n", encoding="utf-8")
    service = PracticeService(":memory:")

    result = service.import_file(path)
    assert result.text.title == "Datei"
    assert result.text.lang_base == "de"
    assert result.text.content_hash == content_digest("Datei\nlang=de\nGuten Morgen, Welt!\n")


def test_unknown_text_raises_key_error() -> None:
    service = PracticeService(":memory:")
    with pytest.raises(KeyError):
        service.get_text("missing")
    with pytest.raises(KeyError):
        service.start_session("missing")
    with pytest.raises(KeyError):
        service.text_stats("missing")


def test_input_mode_setting() -> None:
    service = PracticeService(":memory:")
    text_id = service.import_text(RAW).text.id
    assert service.get_input_mode() == "both"

    assert service.set_input_mode("left") == "left"
    assert service.get_input_mode() == "left"
    assert {row.hand for row in service.prepare_rows(text_id).rows} == {"left"}
    assert service.start_session(text_id).state.input_mode == "left"
    assert [row.hand for row in service.prepare_rows(text_id, "both").rows] == ["left", "right", "left"]

    with pytest.raises(ValueError, match="Unknown input mode"):
        service.set_input_mode("feet")


def test_start_session_bootstraps_rows(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id

    session = service.start_session(text_id)
    state = session.state
    assert state.status == "ready"
    assert state.text_id == text_id
    assert state.total_rows == 3
    assert state.hud.tokens_total == 9
    assert state.live_row is not None and state.live_row.chunk_index == 0
    assert session.prepared.total_tokens == 9


def test_progress_is_saved_and_resumed(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id

    session = service.start_session(text_id)
    _play(session, 5)
    assert session.state.live_row is not None and session.state.live_row.chunk_index == 1
    assert session.state.reveal_index == 1

    record = service.save_progress(session)
    assert record is not None
    assert record.ptr == 1
    assert record.reveal_index == 1
    assert [snapshot.chunk_index for snapshot in record.row_snapshots] == [1, 2]
    assert record.row_snapshots[0].done == session.state.live_row_done

    resumed = service.start_session(text_id)
    state = resumed.state
    assert state.live_row is not None
    assert state.live_row.chunk_index == 1
    assert state.reveal_index == 1
    assert state.live_row_done == session.state.live_row_done
    assert state.tokens_revealed == 5
    assert state.total_rows == 3

    fresh = service.start_session(text_id, resume=False)
    assert fresh.state.live_row is not None and fresh.state.live_row.chunk_index == 0


def test_finished_session_is_recorded(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id
    session = service.start_session(text_id)

    clock.advance(1000)
    session.press("J")
    _play(session, 9, clock)
    assert session.state.status == "completed"

    record = service.finish_session(session)
    assert record is not None
    assert record.rows_completed == 3
    assert record.tokens_first_try_correct == 9
    assert record.mistakes_total == 1
    assert record.active_ms == 10_000
    assert record.rpm == 18.0
    assert record.accuracy == 90
    assert service.store.get_progress(text_id) is None

    stats = service.text_stats(text_id)
    assert len(stats.sessions) == 1
    assert stats.rows_completed == 3
    assert stats.best_rpm == 18.0
    assert stats.average_accuracy == 90


def test_unfinished_session_is_not_recorded(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id
    session = service.start_session(text_id)
    _play(session, 2)

    assert service.finish_session(session) is None
    assert service.text_stats(text_id).sessions == ()


def test_saving_completed_session_clears_progress(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id
    session = service.start_session(text_id)
    _play(session, 3)
    service.save_progress(session)
    assert service.store.get_progress(text_id) is not None

    _play(session, 6)
    assert service.save_progress(session) is None
    assert service.store.get_progress(text_id) is None


def test_change_input_mode_mid_session(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id
    session = service.start_session(text_id)
    _play(session, 1)

    state = session.change_input_mode("right")
    assert state.live_row is not None
    assert state.live_row.hand == "right"
    assert state.reveal_index == 1
    _play(session, 1)
    assert session.state.reveal_index == 2


def test_pause_and_resume_through_session(clock) -> None:
    service = PracticeService(":memory:", clock=clock)
    text_id = service.import_text(RAW).text.id
    session = service.start_session(text_id)

    assert session.pause().status == "paused"
    assert session.resume().status == "ready"


def test_delete_text_removes_everything() -> None:
    service = PracticeService(":memory:")
    text_id = service.import_text(RAW).text.id

    assert service.delete_text(text_id) is True
    assert service.list_texts() == []
    assert service.delete_text(text_id) is False
