"""CLI entrypoint for the word-order recall trainer."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .importer import TextImportError
from .keymap import PAUSE, parse_key_stream
from .models import INPUT_MODES, ChunkRow
from .service import PracticeService, PracticeSession
from .session import PlaySession, accuracy_percent, rows_per_minute
from .storage import TextRecord

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
DB_ENV_VAR = "WORDROW_DB"
DEFAULT_DB_PATH = Path(".wordrow") / "library.db"
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q", ":b", ":back"}
MENU_QUIT_COMMANDS = {"q"}
MENU_BACK_COMMANDS = {"b"}


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _db_path(cli_value: str | None = None) -> Path:
    """Resolve database location from the CLI flag, the environment, or the default."""
    if cli_value:
        return Path(cli_value)
    env_value = os.environ.get(DB_ENV_VAR, "").strip()
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def _service(db_path: Path | None = None) -> PracticeService:
    """Create app service with local database path."""
    return PracticeService(db_path=db_path or _db_path())


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def run(argv: list[str] | None = None, print_fn: PrintFn = print) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="wordrow", description="Word-order recall practice")
    parser.add_argument("command", nargs="?", default="play", choices=["play", "import", "list"])
    parser.add_argument("file", nargs="?", help="text file to import (import command)")
    parser.add_argument("--db", help=f"database path (default: ${DB_ENV_VAR} or {DEFAULT_DB_PATH})")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    db_path = _db_path(args.db)

    if args.command == "import":
        if not args.file:
            parser.error("import requires a file path")
        return import_command(args.file, db_path, print_fn)
    if args.command == "list":
        return list_command(db_path, print_fn)
    return play_shell(db_path=db_path)


def import_command(path_text: str, db_path: Path | None = None, print_fn: PrintFn = print) -> int:
    """Import one file without entering the shell."""
    service = _service(db_path)
    try:
        return 0 if _import_path(service, path_text, print_fn) else 1
    finally:
        service.close()


def list_command(db_path: Path | None = None, print_fn: PrintFn = print) -> int:
    """Print the library."""
    service = _service(db_path)
    try:
        texts = service.list_texts()
        if not texts:
            print_fn("Library is empty.")
            return 0
        for text in texts:
            print_fn(f"{text.id}  {text.title} ({text.sentences_count} sentences, lang={text.lang_full})")
        return 0
    finally:
        service.close()


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print, db_path: Path | None = None) -> int:
    """Run persistent menu-driven shell."""
    service = _service(db_path)
    try:
        while True:
            texts = service.list_texts()
            print_fn("\n=== Library ===")
            if texts:
                for idx, text in enumerate(texts, start=1):
                    print_fn(f"{idx}) {text.title} ({text.sentences_count} sentences, lang={text.lang_full})")
            else:
                print_fn("No texts yet. Import a UTF-8 .txt file to begin.")
            print_fn("i) Import text from file")
            print_fn(f"s) Settings (input mode: {service.get_input_mode()})")
            print_fn("q) Quit")
            choice = input_fn("Choose: ").strip().lower()

            if choice in MENU_QUIT_COMMANDS:
                return 0
            if choice == "i":
                _import_flow(service, input_fn, print_fn)
                continue
            if choice == "s":
                _settings_flow(service, input_fn, print_fn)
                continue
            if choice.isdigit():
                index = int(choice) - 1
                if 0 <= index < len(texts):
                    _text_flow(service, texts[index], input_fn, print_fn)
                    continue
            print_fn("Invalid choice.")
    except QuitApp:
        return 0
    finally:
        service.close()


def _import_flow(service: PracticeService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Import a text file chosen by path."""
    print_fn("\n=== Import Text ===")
    print_fn("First line is the title, optional second line lang=<tag>, then one sentence per line.")
    path_text = input_fn("Text file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    _import_path(service, path_text, print_fn)


def _import_path(service: PracticeService, path_text: str, print_fn: PrintFn) -> bool:
    try:
        result = service.import_file(path_text)
    except TextImportError as exc:
        print_fn(f"Import failed: {exc}")
        return False
    except (OSError, UnicodeDecodeError) as exc:
        print_fn(f"Could not read {path_text}: {exc}")
        return False
    text = result.text
    print_fn(f'Imported "{text.title}" · {text.sentences_count} sentences ({text.lang_full})')
    return True


def _settings_flow(service: PracticeService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Choose which hand(s) rows are assigned to."""
    current = service.get_input_mode()
    print_fn("\n=== Input Mode ===")
    for idx, mode in enumerate(INPUT_MODES, start=1):
        marker = "*" if mode == current else " "
        print_fn(f"{idx}) {mode}{marker}")
    print_fn("b) Back")
    choice = input_fn("Choose mode: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice.isdigit() and 0 <= int(choice) - 1 < len(INPUT_MODES):
        mode = service.set_input_mode(INPUT_MODES[int(choice) - 1])
        print_fn(f"Input mode set to {mode}.")
        return
    print_fn("Invalid choice.")


def _text_flow(service: PracticeService, text: TextRecord, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Actions for one library text."""
    while True:
        print_fn(f"\n=== {text.title} ===")
        print_fn("1) Play")
        print_fn("2) Stats")
        print_fn("3) Delete")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            _play_flow(service, text, input_fn, print_fn)
        elif choice == "2":
            _stats_flow(service, text, print_fn)
        elif choice == "3":
            if _delete_flow(service, text, input_fn, print_fn):
                return
        else:
            print_fn("Invalid choice.")


def _delete_flow(service: PracticeService, text: TextRecord, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Delete a text with explicit confirmation safeguard."""
    print_fn(f"WARNING: This permanently deletes '{text.title}' and all related progress and sessions.")
    confirm = input_fn("Type YES to confirm deletion: ").strip()
    if confirm != "YES":
        print_fn("Deletion cancelled.")
        return False
    if service.delete_text(text.id):
        print_fn(f"Deleted '{text.title}'.")
    else:
        print_fn("Text was not found.")
    return True


def _stats_flow(service: PracticeService, text: TextRecord, print_fn: PrintFn) -> None:
    """Print completed sessions and lifetime totals for a text."""
    stats = service.text_stats(text.id)
    print_fn(f"\n=== Stats: {text.title} ===")
    if not stats.sessions:
        print_fn("No completed sessions yet.")
        return
    ended_width = 16
    header = f"{'Ended (local)':<{ended_width}} {'Rows':>5} {'Acc%':>5} {'RPM':>6} {'Active':>8}"
    print_fn(header)
    print_fn("-" * len(header))
    for item in stats.sessions:
        print_fn(
            f"{_format_local(item.ended_at):<{ended_width}} "
            f"{item.rows_completed:>5} "
            f"{item.accuracy:>5} "
            f"{item.rpm:>6.1f} "
            f"{_format_duration(item.active_ms):>8}"
        )
    print_fn(f"\nSessions: {len(stats.sessions)}")
    print_fn(f"Rows completed: {stats.rows_completed}")
    print_fn(f"Accuracy: {stats.average_accuracy}%")
    print_fn(f"Best RPM: {stats.best_rpm:.1f}")
    print_fn(f"Active time: {_format_duration(stats.active_ms)}")


def _play_flow(service: PracticeService, text: TextRecord, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Run the practice loop for one text until it completes or the player leaves."""
    session = service.start_session(text.id)
    if session.state.live_row is None:
        print_fn("This text is empty. Import sentences before practicing.")
        return

    print_fn(f"\nPracticing: {text.title} ({text.lang_full})")
    print_fn("Type the labels of the words in reading order, e.g. 'dfas'. Space pauses. :q saves and leaves.")
    while True:
        state = session.state
        if state.status == "completed":
            _finish_flow(service, session, print_fn)
            return
        if state.status == "paused":
            input_fn("Paused. Press Enter to resume: ")
            session.resume()
            continue

        _render(session, print_fn)
        line = input_fn("Keys: ")
        if line.strip().lower() in FLOW_EXIT_COMMANDS:
            service.save_progress(session)
            print_fn("Leaving practice. Progress saved.")
            return
        _feed_keys(session, line, print_fn)


def _feed_keys(session: PracticeSession, line: str, print_fn: PrintFn) -> None:
    """Send one typed line of labels to the session, stopping at pause or completion."""
    for label in parse_key_stream(line):
        if label == PAUSE:
            session.pause()
            return
        before = session.state.mistake_version
        state = session.press(label)
        if state.mistake_version != before:
            print_fn(f"Miss on {label}.")
        if state.status != "ready":
            return


def _finish_flow(service: PracticeService, session: PracticeSession, print_fn: PrintFn) -> None:
    record = service.finish_session(session)
    hud = session.state.hud
    print_fn("\nText complete!")
    print_fn(f"- Rows: {hud.rows_completed}")
    print_fn(f"- Accuracy: {accuracy_percent(hud)}%")
    print_fn(f"- RPM: {rows_per_minute(hud):.1f}")
    print_fn(f"- Mistakes: {hud.mistakes_total}")
    print_fn(f"- Active time: {_format_duration(hud.active_ms)}")
    if record is not None:
        print_fn("Session saved to stats.")


def _render(session: PracticeSession, print_fn: PrintFn) -> None:
    """Print HUD, revealed context, the live row and a preview of the next row."""
    state = session.state
    print_fn("")
    print_fn(_hud_line(state))
    print_fn(f"Context: {_context_line(session)}")
    if state.live_row is not None:
        print_fn(f"Now  ({state.live_row.hand}): {_row_line(state.live_row, state.live_row_done)}")
    if state.queued_row is not None:
        print_fn(f"Next ({state.queued_row.hand}): {_row_line(state.queued_row, state.queued_row_done)}")


def _hud_line(state: PlaySession) -> str:
    hud = state.hud
    position = state.live_row.chunk_index if state.live_row is not None else state.total_rows
    return (
        f"Row {position + 1}/{state.total_rows} | "
        f"Accuracy {accuracy_percent(hud)}% | "
        f"RPM {rows_per_minute(hud):.1f} | "
        f"Streak {hud.streak}"
    )


def _context_line(session: PracticeSession) -> str:
    """Surface tokens revealed so far, with the rest of the text masked."""
    revealed = session.state.tokens_revealed
    words: list[str] = []
    for row in session.prepared.rows:
        for token in row.tokens:
            if token.absolute_index < revealed:
                words.append(token.surface)
            else:
                words.append("_" * max(1, min(len(token.surface), 6)))
    start = max(0, revealed - 8)
    return " ".join(words[start : revealed + 4])


def _row_line(row: ChunkRow, done: tuple[bool, ...]) -> str:
    cells: list[str] = []
    for slot, label in enumerate(row.labels):
        token = row.tokens[row.order[slot]]
        mark = "✓" if done and done[slot] else " "
        cells.append(f"[{label}]{mark}{token.candidate}")
    return "  ".join(cells)


def _format_local(timestamp: str) -> str:
    """Convert ISO timestamp to local human-readable datetime."""
    try:
        dt = datetime.fromisoformat(timestamp)
    except ValueError:
        return timestamp
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _format_duration(active_ms: float) -> str:
    seconds = int(active_ms // 1000)
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}:{seconds:02d}"


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
