"""SQLite persistence for positions, repertoires and entries.

Positions are deduplicated globally by canonical FEN. Every write batch
runs inside ``BEGIN IMMEDIATE`` so it either applies fully or not at
all, and so orphan checks see the same state as the deletion that
preceded them.

Usage:
    store = RepertoireStore("data/repertoire.db")
    with store.transaction() as conn:
        position_id = store.get_or_create_position(conn, fen)
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from loguru import logger

from repertoire.models import (
    CardState,
    Entry,
    Repertoire,
    phase_from_row,
    phase_to_row,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fen TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS repertoires (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    color TEXT NOT NULL CHECK (color IN ('white', 'black')),
    version INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, color)
);

CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    repertoire_id TEXT NOT NULL REFERENCES repertoires(id) ON DELETE CASCADE,
    position_id INTEGER NOT NULL REFERENCES positions(id),
    expected_move TEXT NOT NULL,
    interval_days INTEGER NOT NULL DEFAULT 0,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    repetitions INTEGER NOT NULL DEFAULT 0,
    phase TEXT NOT NULL DEFAULT 'learning',
    learning_step_index INTEGER NOT NULL DEFAULT 0,
    lapse_interval_days INTEGER NOT NULL DEFAULT 0,
    next_review TEXT NOT NULL,
    last_review TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (repertoire_id, position_id, expected_move)
);

CREATE INDEX IF NOT EXISTS idx_entries_repertoire ON entries(repertoire_id);
CREATE INDEX IF NOT EXISTS idx_entries_position ON entries(position_id);
CREATE INDEX IF NOT EXISTS idx_entries_next_review ON entries(next_review);
"""

_ENTRY_SELECT = """
SELECT e.*, p.fen AS fen, r.user_id AS user_id, r.color AS color
FROM entries e
JOIN positions p ON p.id = e.position_id
JOIN repertoires r ON r.id = e.repertoire_id
"""


def _to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime as a UTC ISO string (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RepertoireStore:
    """SQLite-backed store for the repertoire tables."""

    def __init__(self, db_path: str | Path) -> None:
        """Open (and if needed create) the database at ``db_path``.

        Args:
            db_path: Path to the SQLite file. Parent directories are created.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        """Open a new connection (one per operation, thread-safe pattern)."""
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Read scope: one deferred transaction, so all reads share a snapshot."""
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("ROLLBACK")
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write scope: commits on success, rolls back on any exception."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ── Repertoires ─────────────────────────────────────────────────

    def _row_to_repertoire(self, row: sqlite3.Row) -> Repertoire:
        return Repertoire(
            id=row["id"],
            user_id=row["user_id"],
            color=row["color"],
            version=row["version"],
        )

    def create_repertoire(
        self, conn: sqlite3.Connection, user_id: str, color: str
    ) -> tuple[Repertoire, bool]:
        """Create the (user, color) repertoire if missing.

        Returns:
            Tuple of (repertoire, created flag).
        """
        cursor = conn.execute(
            "INSERT INTO repertoires (id, user_id, color, version, created_at) "
            "VALUES (?, ?, ?, 0, ?) ON CONFLICT(user_id, color) DO NOTHING",
            (str(uuid.uuid4()), user_id, color, _to_iso(datetime.now(timezone.utc))),
        )
        repertoire = self.get_repertoire(conn, user_id, color)
        return repertoire, cursor.rowcount == 1

    def get_repertoire(
        self, conn: sqlite3.Connection, user_id: str, color: str
    ) -> Repertoire | None:
        row = conn.execute(
            "SELECT * FROM repertoires WHERE user_id = ? AND color = ?",
            (user_id, color),
        ).fetchone()
        return self._row_to_repertoire(row) if row else None

    def get_repertoire_by_id(
        self, conn: sqlite3.Connection, repertoire_id: str
    ) -> Repertoire | None:
        row = conn.execute(
            "SELECT * FROM repertoires WHERE id = ?", (repertoire_id,)
        ).fetchone()
        return self._row_to_repertoire(row) if row else None

    def list_repertoires(
        self, conn: sqlite3.Connection, user_id: str
    ) -> list[Repertoire]:
        rows = conn.execute(
            "SELECT * FROM repertoires WHERE user_id = ? ORDER BY color DESC",
            (user_id,),
        ).fetchall()
        return [self._row_to_repertoire(r) for r in rows]

    def bump_version(self, conn: sqlite3.Connection, repertoire_id: str) -> None:
        """Mark the repertoire's entry set as structurally changed."""
        conn.execute(
            "UPDATE repertoires SET version = version + 1 WHERE id = ?",
            (repertoire_id,),
        )

    # ── Positions ───────────────────────────────────────────────────

    def get_or_create_position(self, conn: sqlite3.Connection, fen: str) -> int:
        """Return the id of the position for ``fen``, creating it if needed.

        The UNIQUE constraint on fen makes concurrent creators converge
        on one row; there is no read-then-insert window.
        """
        conn.execute(
            "INSERT INTO positions (fen, created_at) VALUES (?, ?) "
            "ON CONFLICT(fen) DO NOTHING",
            (fen, _to_iso(datetime.now(timezone.utc))),
        )
        row = conn.execute(
            "SELECT id FROM positions WHERE fen = ?", (fen,)
        ).fetchone()
        return row["id"]

    def get_position_id(self, conn: sqlite3.Connection, fen: str) -> int | None:
        row = conn.execute(
            "SELECT id FROM positions WHERE fen = ?", (fen,)
        ).fetchone()
        return row["id"] if row else None

    def count_positions(self, conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COUNT(*) FROM positions").fetchone()[0]

    def delete_if_orphaned(self, conn: sqlite3.Connection, position_id: int) -> bool:
        """Delete a position only if no entry references it.

        The reference check and the delete are one statement, evaluated
        inside the caller's transaction.

        Returns:
            True if the position was deleted.
        """
        cursor = conn.execute(
            "DELETE FROM positions WHERE id = ? "
            "AND NOT EXISTS (SELECT 1 FROM entries WHERE position_id = ?)",
            (position_id, position_id),
        )
        return cursor.rowcount == 1

    # ── Entries ─────────────────────────────────────────────────────

    def _row_to_entry(self, row: sqlite3.Row) -> Entry:
        card = CardState(
            interval=row["interval_days"],
            ease_factor=row["ease_factor"],
            repetitions=row["repetitions"],
            phase=phase_from_row(
                row["phase"], row["learning_step_index"], row["lapse_interval_days"]
            ),
            next_review=_from_iso(row["next_review"]),
            last_review=_from_iso(row["last_review"]),
        )
        return Entry(
            id=row["id"],
            repertoire_id=row["repertoire_id"],
            position_id=row["position_id"],
            fen=row["fen"],
            expected_move=row["expected_move"],
            card=card,
            version=row["version"],
            color=row["color"],
            user_id=row["user_id"],
        )

    def list_entries(
        self, conn: sqlite3.Connection, repertoire_id: str
    ) -> list[Entry]:
        """All entries of a repertoire in creation order."""
        rows = conn.execute(
            _ENTRY_SELECT + "WHERE e.repertoire_id = ? ORDER BY e.created_at, e.rowid",
            (repertoire_id,),
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def entries_at(
        self, conn: sqlite3.Connection, repertoire_id: str, position_id: int
    ) -> list[Entry]:
        """Entries of one repertoire at one position."""
        rows = conn.execute(
            _ENTRY_SELECT + "WHERE e.repertoire_id = ? AND e.position_id = ?",
            (repertoire_id, position_id),
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def get_entry(self, conn: sqlite3.Connection, entry_id: str) -> Entry | None:
        row = conn.execute(
            _ENTRY_SELECT + "WHERE e.id = ?", (entry_id,)
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def insert_entry(
        self,
        conn: sqlite3.Connection,
        repertoire_id: str,
        position_id: int,
        expected_move: str,
        card: CardState,
        now: datetime,
    ) -> str:
        """Insert a new entry and return its id."""
        entry_id = str(uuid.uuid4())
        phase, step, lapse = phase_to_row(card.phase)
        conn.execute(
            "INSERT INTO entries (id, repertoire_id, position_id, expected_move, "
            "interval_days, ease_factor, repetitions, phase, learning_step_index, "
            "lapse_interval_days, next_review, last_review, version, created_at, "
            "updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)",
            (
                entry_id,
                repertoire_id,
                position_id,
                expected_move,
                card.interval,
                card.ease_factor,
                card.repetitions,
                phase,
                step,
                lapse,
                _to_iso(card.next_review),
                _to_iso(card.last_review),
                _to_iso(now),
                _to_iso(now),
            ),
        )
        return entry_id

    def update_card(
        self,
        conn: sqlite3.Connection,
        entry_id: str,
        card: CardState,
        expected_version: int,
        now: datetime,
    ) -> bool:
        """Compare-and-swap the card state of one entry.

        Returns:
            False if the entry's version no longer matches ``expected_version``.
        """
        phase, step, lapse = phase_to_row(card.phase)
        cursor = conn.execute(
            "UPDATE entries SET interval_days = ?, ease_factor = ?, repetitions = ?, "
            "phase = ?, learning_step_index = ?, lapse_interval_days = ?, "
            "next_review = ?, last_review = ?, "
            "updated_at = ?, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (
                card.interval,
                card.ease_factor,
                card.repetitions,
                phase,
                step,
                lapse,
                _to_iso(card.next_review),
                _to_iso(card.last_review),
                _to_iso(now),
                entry_id,
                expected_version,
            ),
        )
        return cursor.rowcount == 1

    def delete_entries(
        self, conn: sqlite3.Connection, entry_ids: list[str]
    ) -> tuple[int, set[int]]:
        """Delete a batch of entries.

        Returns:
            Tuple of (rows deleted, ids of the positions they referenced).
        """
        if not entry_ids:
            return 0, set()
        placeholders = ",".join("?" for _ in entry_ids)
        rows = conn.execute(
            f"SELECT DISTINCT position_id FROM entries WHERE id IN ({placeholders})",
            entry_ids,
        ).fetchall()
        cursor = conn.execute(
            f"DELETE FROM entries WHERE id IN ({placeholders})", entry_ids
        )
        logger.debug("Deleted {} entries", cursor.rowcount)
        return cursor.rowcount, {r["position_id"] for r in rows}
