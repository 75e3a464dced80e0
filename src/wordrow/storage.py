"""SQLite persistence for imported texts, sentences, progress and session history."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .importer import DuplicateText

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
STORAGE_POLICY_VERSION = 1


@dataclass(frozen=True)
class TextRecord:
    """Imported text metadata."""

    id: str
    title: str
    lang_full: str
    lang_base: str
    content_hash: str
    created_at: str
    updated_at: str
    sentences_count: int
    policy_version: int


@dataclass(frozen=True)
class SentenceRecord:
    """One persisted sentence of a text."""

    id: str
    text_id: str
    index: int
    surface_tokens: tuple[str, ...]
    candidate_tokens: tuple[str, ...]
    lang_full: str
    seed: int


@dataclass(frozen=True)
class RowSnapshot:
    """Saved shape of one pipeline row."""

    chunk_index: int
    hand: str
    order: tuple[int, ...]
    labels: tuple[str, ...]
    done: tuple[bool, ...]


@dataclass(frozen=True)
class ProgressRecord:
    """Resumable position inside a text."""

    text_id: str
    ptr: int
    reveal_index: int
    row_snapshots: tuple[RowSnapshot, ...]
    updated_at: str


@dataclass(frozen=True)
class SessionRecord:
    """Summary of one completed practice session."""

    id: int
    text_id: str
    tokens_total: int
    tokens_first_try_correct: int
    rows_completed: int
    mistakes_total: int
    active_ms: float
    started_at: str
    ended_at: str
    rpm: float
    accuracy: int


class LibraryStore:
    """Database access layer for the text library and practice history."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and bring its schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            logger.debug("Applied schema migration %d", version)
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, _now()),
                )

    def _migrate_to_v1(self) -> None:
        """Create library, progress, session and settings tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS texts (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    lang_full TEXT NOT NULL,
                    lang_base TEXT NOT NULL,
                    content_hash TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    sentences_count INTEGER NOT NULL,
                    policy_version INTEGER NOT NULL
                )
                """)
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_texts_updated_at ON texts (updated_at)")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS sentences (
                    id TEXT PRIMARY KEY,
                    text_id TEXT NOT NULL REFERENCES texts (id) ON DELETE CASCADE,
                    idx INTEGER NOT NULL,
                    surface_tokens TEXT NOT NULL,
                    candidate_tokens TEXT NOT NULL,
                    lang_full TEXT NOT NULL,
                    seed INTEGER NOT NULL,
                    UNIQUE (text_id, idx)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS progress (
                    text_id TEXT PRIMARY KEY REFERENCES texts (id) ON DELETE CASCADE,
                    ptr INTEGER NOT NULL,
                    reveal_index INTEGER NOT NULL,
                    row_snapshots TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    text_id TEXT NOT NULL REFERENCES texts (id) ON DELETE CASCADE,
                    tokens_total INTEGER NOT NULL,
                    tokens_first_try_correct INTEGER NOT NULL,
                    rows_completed INTEGER NOT NULL,
                    mistakes_total INTEGER NOT NULL,
                    active_ms REAL NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT NOT NULL,
                    rpm REAL NOT NULL,
                    accuracy INTEGER NOT NULL
                )
                """)
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_text ON sessions (text_id, ended_at)")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """)

    def add_text(self, text: TextRecord, sentences: Sequence[SentenceRecord]) -> None:
        """Insert a text and all its sentences in one transaction.

        Raises ``DuplicateText`` when the content hash is already stored; in that
        case nothing is written.
        """
        with self._conn:
            if self.find_text_by_hash(text.content_hash) is not None:
                raise DuplicateText()
            self._conn.execute(
                """
                INSERT INTO texts (
                    id, title, lang_full, lang_base, content_hash,
                    created_at, updated_at, sentences_count, policy_version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    text.id,
                    text.title,
                    text.lang_full,
                    text.lang_base,
                    text.content_hash,
                    text.created_at,
                    text.updated_at,
                    text.sentences_count,
                    text.policy_version,
                ),
            )
            self._conn.executemany(
                """
                INSERT INTO sentences (id, text_id, idx, surface_tokens, candidate_tokens, lang_full, seed)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        sentence.id,
                        sentence.text_id,
                        sentence.index,
                        json.dumps(list(sentence.surface_tokens), ensure_ascii=False),
                        json.dumps(list(sentence.candidate_tokens), ensure_ascii=False),
                        sentence.lang_full,
                        sentence.seed,
                    )
                    for sentence in sentences
                ],
            )

    def get_text(self, text_id: str) -> TextRecord | None:
        """Get one text by id."""
        row = self._conn.execute("SELECT * FROM texts WHERE id = ?", (text_id,)).fetchone()
        return _text_from_row(row) if row is not None else None

    def find_text_by_hash(self, content_hash: str) -> TextRecord | None:
        """Get the text stored under a content hash."""
        row = self._conn.execute("SELECT * FROM texts WHERE content_hash = ?", (content_hash,)).fetchone()
        return _text_from_row(row) if row is not None else None

    def list_texts(self) -> list[TextRecord]:
        """Return texts, most recently updated first."""
        rows = self._conn.execute("SELECT * FROM texts ORDER BY updated_at DESC, id").fetchall()
        return [_text_from_row(row) for row in rows]

    def touch_text(self, text_id: str) -> None:
        """Bump a text's ``updated_at`` timestamp."""
        with self._conn:
            self._conn.execute("UPDATE texts SET updated_at = ? WHERE id = ?", (_now(), text_id))

    def list_sentences(self, text_id: str) -> list[SentenceRecord]:
        """Return a text's sentences ordered by index."""
        rows = self._conn.execute(
            """
            SELECT id, text_id, idx, surface_tokens, candidate_tokens, lang_full, seed
            FROM sentences
            WHERE text_id = ?
            ORDER BY idx ASC
            """,
            (text_id,),
        ).fetchall()
        return [
            SentenceRecord(
                id=str(row["id"]),
                text_id=str(row["text_id"]),
                index=int(row["idx"]),
                surface_tokens=tuple(json.loads(row["surface_tokens"])),
                candidate_tokens=tuple(json.loads(row["candidate_tokens"])),
                lang_full=str(row["lang_full"]),
                seed=int(row["seed"]),
            )
            for row in rows
        ]

    def delete_text(self, text_id: str) -> bool:
        """Delete a text with its sentences, progress and sessions."""
        with self._conn:
            self._conn.execute("DELETE FROM sessions WHERE text_id = ?", (text_id,))
            self._conn.execute("DELETE FROM progress WHERE text_id = ?", (text_id,))
            self._conn.execute("DELETE FROM sentences WHERE text_id = ?", (text_id,))
            cursor = self._conn.execute("DELETE FROM texts WHERE id = ?", (text_id,))
        return cursor.rowcount > 0

    def save_progress(self, progress: ProgressRecord) -> None:
        """Insert or replace the resumable position of a text."""
        snapshots = [
            {
                "chunk_index": item.chunk_index,
                "hand": item.hand,
                "order": list(item.order),
                "labels": list(item.labels),
                "done": list(item.done),
            }
            for item in progress.row_snapshots
        ]
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO progress (text_id, ptr, reveal_index, row_snapshots, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(text_id) DO UPDATE SET
                    ptr = excluded.ptr,
                    reveal_index = excluded.reveal_index,
                    row_snapshots = excluded.row_snapshots,
                    updated_at = excluded.updated_at
                """,
                (progress.text_id, progress.ptr, progress.reveal_index, json.dumps(snapshots), progress.updated_at),
            )

    def get_progress(self, text_id: str) -> ProgressRecord | None:
        """Return the saved position of a text if any."""
        row = self._conn.execute(
            "SELECT text_id, ptr, reveal_index, row_snapshots, updated_at FROM progress WHERE text_id = ?",
            (text_id,),
        ).fetchone()
        if row is None:
            return None
        snapshots = tuple(
            RowSnapshot(
                chunk_index=int(item["chunk_index"]),
                hand=str(item["hand"]),
                order=tuple(int(value) for value in item["order"]),
                labels=tuple(str(value) for value in item["labels"]),
                done=tuple(bool(value) for value in item["done"]),
            )
            for item in json.loads(row["row_snapshots"])
        )
        return ProgressRecord(
            text_id=str(row["text_id"]),
            ptr=int(row["ptr"]),
            reveal_index=int(row["reveal_index"]),
            row_snapshots=snapshots,
            updated_at=str(row["updated_at"]),
        )

    def clear_progress(self, text_id: str) -> None:
        """Forget the saved position of a text."""
        with self._conn:
            self._conn.execute("DELETE FROM progress WHERE text_id = ?", (text_id,))

    def record_session(
        self,
        text_id: str,
        *,
        tokens_total: int,
        tokens_first_try_correct: int,
        rows_completed: int,
        mistakes_total: int,
        active_ms: float,
        started_at: str,
        ended_at: str,
        rpm: float,
        accuracy: int,
    ) -> SessionRecord:
        """Store one completed session summary."""
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO sessions (
                    text_id, tokens_total, tokens_first_try_correct, rows_completed,
                    mistakes_total, active_ms, started_at, ended_at, rpm, accuracy
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    text_id,
                    tokens_total,
                    tokens_first_try_correct,
                    rows_completed,
                    mistakes_total,
                    active_ms,
                    started_at,
                    ended_at,
                    rpm,
                    accuracy,
                ),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not record session.")
        return SessionRecord(
            id=int(row_id),
            text_id=text_id,
            tokens_total=tokens_total,
            tokens_first_try_correct=tokens_first_try_correct,
            rows_completed=rows_completed,
            mistakes_total=mistakes_total,
            active_ms=active_ms,
            started_at=started_at,
            ended_at=ended_at,
            rpm=rpm,
            accuracy=accuracy,
        )

    def list_sessions(self, text_id: str) -> list[SessionRecord]:
        """Return completed sessions of a text, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM sessions WHERE text_id = ? ORDER BY ended_at ASC, id ASC",
            (text_id,),
        ).fetchall()
        return [
            SessionRecord(
                id=int(row["id"]),
                text_id=str(row["text_id"]),
                tokens_total=int(row["tokens_total"]),
                tokens_first_try_correct=int(row["tokens_first_try_correct"]),
                rows_completed=int(row["rows_completed"]),
                mistakes_total=int(row["mistakes_total"]),
                active_ms=float(row["active_ms"]),
                started_at=str(row["started_at"]),
                ended_at=str(row["ended_at"]),
                rpm=float(row["rpm"]),
                accuracy=int(row["accuracy"]),
            )
            for row in rows
        ]

    def get_setting(self, key: str) -> str | None:
        """Return a stored setting value."""
        row = self._conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return str(row["value"]) if row is not None else None

    def set_setting(self, key: str, value: str) -> None:
        """Store a setting value."""
        with self._conn:
            self._conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def _text_from_row(row: sqlite3.Row) -> TextRecord:
    return TextRecord(
        id=str(row["id"]),
        title=str(row["title"]),
        lang_full=str(row["lang_full"]),
        lang_base=str(row["lang_base"]),
        content_hash=str(row["content_hash"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
        sentences_count=int(row["sentences_count"]),
        policy_version=int(row["policy_version"]),
    )


def _now() -> str:
    return datetime.now(UTC).isoformat()
