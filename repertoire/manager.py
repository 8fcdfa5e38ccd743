"""Repertoire manager: the operations the application calls.

Ties the rules adapter, graph engine, scheduler and store together:

- insert_line: replay a human move list and upsert one entry per ply
- get_tree: rebuild the display tree of a repertoire
- delete_entry: cascade-delete an entry and everything below it
- review: run one SRS review and persist it with compare-and-swap
- get_stats / training_queue: read-side views for training

Usage:
    manager = RepertoireManager("data/repertoire.db")
    manager.ensure_repertoires("alice")
    manager.insert_line("alice", "white", ["e4", "c5", "Nf3"])
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from repertoire import graph, rules
from repertoire.errors import (
    EntryConflict,
    EntryNotFound,
    NotOwner,
    RepertoireNotFound,
    StaleEntry,
)
from repertoire.models import COLORS, CardState, Entry, LineNode, Repertoire
from repertoire.srs import (
    DEFAULT_CONFIG,
    ReviewResult,
    SM2Config,
    get_due,
    parse_response,
    process_review,
)
from repertoire.stats import compute_stats, trainable
from repertoire.store import RepertoireStore

_MODES = ("review", "practice")
_CHILDREN_CACHE_SIZE = 64


def normalize_color(color: str) -> str:
    """Accept 'white'/'White'/'w' style input; reject anything else.

    Raises:
        ValueError: If ``color`` is not white or black.
    """
    value = str(color).strip().lower()
    value = {"w": "white", "b": "black"}.get(value, value)
    if value not in COLORS:
        raise ValueError(f"Invalid color: {color!r} (must be 'white' or 'black')")
    return value


def _as_utc(now: datetime | None) -> datetime:
    """Current UTC time when ``now`` is None; naive values are taken as UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class RepertoireManager:
    """Manages opening repertoires and their spaced-repetition cards."""

    def __init__(
        self,
        db_path: str | Path = "data/repertoire.db",
        config: SM2Config = DEFAULT_CONFIG,
        cache_size: int = _CHILDREN_CACHE_SIZE,
    ) -> None:
        """Open the repertoire database.

        Args:
            db_path: Path to the SQLite file.
            config: Scheduling parameters used by ``review``.
            cache_size: Most repertoires whose child maps are kept in memory.
        """
        self._store = RepertoireStore(db_path)
        self._config = config
        self._cache_size = max(cache_size, 1)
        # repertoire id -> (version, derived child map), least recently used first
        self._children_cache: OrderedDict[str, tuple[int, dict]] = OrderedDict()

    @property
    def store(self) -> RepertoireStore:
        return self._store

    @property
    def config(self) -> SM2Config:
        return self._config

    # ── Repertoires ─────────────────────────────────────────────────

    def create_repertoire(self, user_id: str, color: str) -> Repertoire:
        """Create the (user, color) repertoire if it does not exist yet."""
        color = normalize_color(color)
        with self._store.transaction() as conn:
            repertoire, created = self._store.create_repertoire(conn, user_id, color)
        if created:
            logger.info("Created {} repertoire for {}", color, user_id)
        return repertoire

    def ensure_repertoires(self, user_id: str) -> dict:
        """Make sure the user has both a White and a Black repertoire.

        Returns:
            Dict with created count and the repertoire id per color.
        """
        result = {"created": 0}
        with self._store.transaction() as conn:
            for color in COLORS:
                repertoire, created = self._store.create_repertoire(conn, user_id, color)
                result[color] = repertoire.id
                result["created"] += int(created)
        return result

    def _require_repertoire(self, conn, user_id: str, color: str) -> Repertoire:
        repertoire = self._store.get_repertoire(conn, user_id, color)
        if repertoire is None:
            raise RepertoireNotFound(
                f"Repertoire not found for user {user_id} and color {color}"
            )
        return repertoire

    def _children(self, repertoire: Repertoire, entries: list[Entry]) -> dict:
        """Derived child map, cached per repertoire version."""
        cached = self._children_cache.get(repertoire.id)
        if cached is not None and cached[0] == repertoire.version:
            logger.debug("Child map cache hit for {}", repertoire.id)
            self._children_cache.move_to_end(repertoire.id)
            return cached[1]
        logger.debug("Deriving child map for {} ({} entries)", repertoire.id, len(entries))
        children = graph.build_children(entries)
        self._children_cache[repertoire.id] = (repertoire.version, children)
        self._children_cache.move_to_end(repertoire.id)
        while len(self._children_cache) > self._cache_size:
            self._children_cache.popitem(last=False)
        return children

    # ── Line insertion ──────────────────────────────────────────────

    def insert_line(
        self,
        user_id: str,
        color: str,
        san_moves: list[str],
        starting_fen: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Save a line to the user's repertoire, one entry per ply.

        Existing entries keep their card state; only new plies get a
        fresh card, due immediately.

        Args:
            user_id: Owner of the repertoire.
            color: Repertoire color, 'white' or 'black'.
            san_moves: Moves in SAN from the starting position.
            starting_fen: Optional non-standard starting position.
            now: Creation time for new cards (defaults to current UTC).

        Returns:
            Number of newly created entries.

        Raises:
            InvalidMoveSequence: If any move is illegal or unparseable.
            RepertoireNotFound: If the (user, color) repertoire is missing.
            EntryConflict: If a position where the repertoire's side is to
                move already commits to a different move.
        """
        color = normalize_color(color)
        now = _as_utc(now)
        plies = rules.replay_san(list(san_moves), starting_fen)

        created = 0
        with self._store.transaction() as conn:
            repertoire = self._require_repertoire(conn, user_id, color)
            for ply in plies:
                position_id = self._store.get_or_create_position(conn, ply.fen_before)
                existing = self._store.entries_at(conn, repertoire.id, position_id)
                if any(e.expected_move == ply.uci for e in existing):
                    continue
                if existing and rules.side_to_move(ply.fen_before) == color:
                    raise EntryConflict(
                        f"Position before ply {ply.index + 1} already plays "
                        f"{existing[0].expected_move}, not {ply.uci}"
                    )
                self._store.insert_entry(
                    conn,
                    repertoire.id,
                    position_id,
                    ply.uci,
                    CardState.new(now, self._config.starting_ease),
                    now,
                )
                logger.debug("New entry {} at {}", ply.san, ply.fen_before)
                created += 1
            if created:
                self._store.bump_version(conn, repertoire.id)

        logger.info(
            "Saved {}-ply line for {} ({}): {} new entries",
            len(plies),
            user_id,
            color,
            created,
        )
        return created

    # ── Tree reconstruction ─────────────────────────────────────────

    def _load(self, user_id: str, color: str) -> tuple[Repertoire | None, list[Entry]]:
        with self._store.connection() as conn:
            repertoire = self._store.get_repertoire(conn, user_id, color)
            if repertoire is None:
                return None, []
            return repertoire, self._store.list_entries(conn, repertoire.id)

    def get_forest(self, user_id: str, color: str) -> list[LineNode]:
        """Root nodes of the user's repertoire for ``color``."""
        repertoire, entries = self._load(user_id, normalize_color(color))
        if repertoire is None or not entries:
            return []
        return graph.build_forest(entries, self._children(repertoire, entries))

    def get_tree(self, user_id: str, color: str) -> LineNode | None:
        """Display tree of the repertoire, or None when it has no entries.

        Several roots are gathered under a synthetic "Initial Position" node.
        """
        repertoire, entries = self._load(user_id, normalize_color(color))
        if repertoire is None or not entries:
            return None
        roots = graph.build_forest(entries, self._children(repertoire, entries))
        return graph.display_root(roots, repertoire.id)

    # ── Cascading deletion ──────────────────────────────────────────

    def _owned_entry(self, conn, entry_id: str, requesting_user_id: str) -> Entry:
        entry = self._store.get_entry(conn, entry_id)
        if entry is None:
            raise EntryNotFound(f"Entry not found: {entry_id}")
        if entry.user_id != requesting_user_id:
            raise NotOwner(f"Entry {entry_id} belongs to another user")
        return entry

    def delete_entry(self, entry_id: str, requesting_user_id: str) -> int:
        """Delete an entry and every entry reachable below it.

        Positions left without any entry are removed in the same
        transaction.

        Returns:
            Number of entries deleted.

        Raises:
            EntryNotFound: If the entry does not exist.
            NotOwner: If the entry belongs to another user.
        """
        with self._store.transaction() as conn:
            entry = self._owned_entry(conn, entry_id, requesting_user_id)
            repertoire = self._store.get_repertoire_by_id(conn, entry.repertoire_id)
            entries = self._store.list_entries(conn, entry.repertoire_id)
            ids = graph.collect_descendants(
                entry_id, entries, self._children(repertoire, entries)
            )
            deleted, position_ids = self._store.delete_entries(conn, ids)
            orphans = [
                pid for pid in sorted(position_ids)
                if self._store.delete_if_orphaned(conn, pid)
            ]
            self._store.bump_version(conn, entry.repertoire_id)

        logger.info(
            "Deleted {} entries below {} ({} orphaned positions removed)",
            deleted,
            entry_id,
            len(orphans),
        )
        return deleted

    # ── Reviews ─────────────────────────────────────────────────────

    def get_entry(self, entry_id: str, requesting_user_id: str) -> Entry:
        """Fetch one entry owned by ``requesting_user_id``."""
        with self._store.connection() as conn:
            return self._owned_entry(conn, entry_id, requesting_user_id)

    def review(
        self,
        entry_id: str,
        requesting_user_id: str,
        response: str,
        now: datetime | None = None,
        expected_version: int | None = None,
    ) -> ReviewResult:
        """Apply one review to an entry and persist the new card state.

        Args:
            entry_id: Entry being reviewed.
            requesting_user_id: Must own the entry.
            response: forgot / partial / effort / easy.
            now: Review time (defaults to current UTC).
            expected_version: Entry version the caller saw; a duplicate
                submission of the same review then fails with StaleEntry.

        Returns:
            ReviewResult with the new card, interval in days and message.

        Raises:
            InvalidResponse: If ``response`` is not a known value.
            EntryNotFound / NotOwner: On missing or foreign entries.
            StaleEntry: If the entry changed since it was read.
        """
        parsed = parse_response(response)
        now = _as_utc(now)

        entry = self.get_entry(entry_id, requesting_user_id)
        version = entry.version if expected_version is None else expected_version
        result = process_review(entry.card, parsed, now, self._config)

        with self._store.transaction() as conn:
            if not self._store.update_card(conn, entry.id, result.card, version, now):
                raise StaleEntry(
                    f"Entry {entry_id} was modified concurrently; re-read and retry"
                )

        logger.info(
            "Reviewed {} as {}: {} -> {} ({})",
            entry_id,
            parsed.value,
            entry.card.phase.name,
            result.card.phase.name,
            result.message,
        )
        return result

    # ── Training views ──────────────────────────────────────────────

    def get_stats(self, user_id: str, now: datetime | None = None) -> dict:
        """Due, learned and total counts across the user's repertoires."""
        now = _as_utc(now)
        with self._store.connection() as conn:
            pairs = [
                (r.color, self._store.list_entries(conn, r.id))
                for r in self._store.list_repertoires(conn, user_id)
            ]
        return compute_stats(pairs, now)

    def training_queue(
        self,
        user_id: str,
        color: str | None = None,
        mode: str = "review",
        from_entry_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Entry]:
        """Entries to drill, ordered by next review.

        Args:
            user_id: Owner of the repertoires.
            color: Restrict to one repertoire color.
            mode: 'review' keeps due entries only; 'practice' keeps all.
            from_entry_id: Restrict to this entry and its descendants.
            now: Reference time for due filtering.

        Raises:
            ValueError: If ``mode`` is unknown or ``color`` is invalid.
            EntryNotFound / NotOwner: If ``from_entry_id`` is not usable.
        """
        if mode not in _MODES:
            raise ValueError(f"Invalid mode: {mode!r} (must be 'review' or 'practice')")
        now = _as_utc(now)

        with self._store.connection() as conn:
            repertoires = self._store.list_repertoires(conn, user_id)
            if color is not None:
                wanted = normalize_color(color)
                repertoires = [r for r in repertoires if r.color == wanted]
            anchor = None
            if from_entry_id is not None:
                anchor = self._owned_entry(conn, from_entry_id, user_id)
                repertoires = [r for r in repertoires if r.id == anchor.repertoire_id]
            loaded = [(r, self._store.list_entries(conn, r.id)) for r in repertoires]

        queue: list[Entry] = []
        for repertoire, entries in loaded:
            if anchor is not None:
                keep = set(
                    graph.collect_descendants(
                        anchor.id, entries, self._children(repertoire, entries)
                    )
                )
                entries = [e for e in entries if e.id in keep]
            queue.extend(trainable(entries, repertoire.color))

        if mode == "review":
            return get_due(queue, now)
        queue.sort(key=lambda e: e.card.next_review)
        return queue
