"""Repertoire graph engine: derive the move tree from stored entries.

Edges are never stored. An entry E at position P is the parent of every
entry whose position is reached by playing E's expected move followed
by any legal opponent reply. Transpositions therefore need no explicit
merge step: two move orders reaching one FEN land on the same entries.

All functions here are pure over a list of entries; the manager owns
storage and caching.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import NamedTuple

from loguru import logger

from repertoire import rules
from repertoire.models import Entry, LineNode


class Edge(NamedTuple):
    """Derived parent -> child link labelled with the opponent reply."""

    child_id: str
    opponent_move: str


def build_children(entries: list[Entry]) -> dict[str, list[Edge]]:
    """Derive the parent -> children map for a repertoire's entries.

    Args:
        entries: All entries of one repertoire.

    Returns:
        Dict mapping every entry id to its child edges, in the rules
        engine's legal-move order.
    """
    by_fen: dict[str, list[Entry]] = defaultdict(list)
    for entry in entries:
        by_fen[entry.fen].append(entry)

    children: dict[str, list[Edge]] = {}
    for entry in entries:
        edges: list[Edge] = []
        children[entry.id] = edges
        try:
            after_own_move = rules.apply_move(entry.fen, entry.expected_move)
        except ValueError:
            logger.warning(
                "Cannot replay {} from {}; entry {} has no children",
                entry.expected_move,
                entry.fen,
                entry.id,
            )
            continue

        seen: set[str] = set()
        for reply, fen_after in rules.successors(after_own_move):
            for child in by_fen.get(fen_after, ()):
                if child.id not in seen:
                    seen.add(child.id)
                    edges.append(Edge(child.id, reply))
    return children


def collect_descendants(
    entry_id: str,
    entries: list[Entry],
    children: dict[str, list[Edge]] | None = None,
) -> list[str]:
    """Breadth-first closure of ``entry_id`` under the derived child relation.

    Args:
        entry_id: Starting entry (included first in the result).
        entries: All entries of the starting entry's repertoire.
        children: Precomputed child map; derived from ``entries`` if None.

    Returns:
        Entry ids in BFS order, each at most once.
    """
    if children is None:
        children = build_children(entries)

    order = [entry_id]
    seen = {entry_id}
    queue = deque([entry_id])
    while queue:
        current = queue.popleft()
        for edge in children.get(current, ()):
            if edge.child_id in seen:
                continue
            seen.add(edge.child_id)
            order.append(edge.child_id)
            queue.append(edge.child_id)
    return order


def format_move_sequence(moves: list[str], start_ply: int = 0) -> str:
    """Render plies with move numbers.

    E.g., ['e4', 'c5', 'Nf3'] -> '1.e4 c5 2.Nf3'; a sequence starting on
    an odd ply gets an ellipsis: ['c5', 'Nf3'] at ply 1 -> '1...c5 2.Nf3'.

    Args:
        moves: Plies in display notation.
        start_ply: Ply index of the first move counted from the start.

    Returns:
        Formatted sequence, or "Initial Position" when empty.
    """
    if not moves:
        return "Initial Position"

    parts = []
    for offset, move in enumerate(moves):
        ply = start_ply + offset
        number = ply // 2 + 1
        if ply % 2 == 0:
            parts.append(f"{number}.{move}")
        elif offset == 0:
            parts.append(f"{number}...{move}")
        else:
            parts.append(move)
    return " ".join(parts)


def build_forest(
    entries: list[Entry],
    children: dict[str, list[Edge]] | None = None,
) -> list[LineNode]:
    """Reconstruct the display forest of a repertoire.

    Roots are entries with no incoming derived edge, in entry order.
    A transposed entry is expanded under every parent that reaches it,
    each copy labelled with its own path.

    Args:
        entries: All entries of one repertoire.
        children: Precomputed child map; derived from ``entries`` if None.

    Returns:
        Root LineNodes with children, move numbers and sequences filled in.
    """
    if children is None:
        children = build_children(entries)

    by_id = {e.id: e for e in entries}
    incoming = {edge.child_id for edges in children.values() for edge in edges}
    own_san = {e.id: rules.san_for(e.fen, e.expected_move) for e in entries}

    def expand(
        entry: Entry,
        start_ply: int,
        plies: list[str],
        opponent: tuple[str, str] | None,
        path: frozenset[str],
    ) -> LineNode:
        node_plies = list(plies)
        opponent_move = opponent_san = None
        if opponent is not None:
            opponent_move, opponent_san = opponent
            node_plies.append(opponent_san)
        node_plies.append(own_san[entry.id])

        node = LineNode(
            id=entry.id,
            fen=entry.fen,
            expected_move=entry.expected_move,
            expected_san=own_san[entry.id],
            opponent_move=opponent_move,
            opponent_san=opponent_san,
            move_number=(start_ply + len(node_plies) - 1) // 2 + 1,
            move_sequence=format_move_sequence(node_plies, start_ply),
        )

        # Derived edges always advance two plies, so a repeat on the
        # current path would mean corrupted input.
        path = path | {entry.id}
        after_own_move = None
        for edge in children.get(entry.id, ()):
            if edge.child_id in path or edge.child_id not in by_id:
                continue
            if after_own_move is None:
                after_own_move = rules.apply_move(entry.fen, entry.expected_move)
            reply_san = rules.san_for(after_own_move, edge.opponent_move)
            node.children.append(
                expand(
                    by_id[edge.child_id],
                    start_ply,
                    node_plies,
                    (edge.opponent_move, reply_san),
                    path,
                )
            )
        return node

    roots = []
    for entry in entries:
        if entry.id in incoming:
            continue
        roots.append(expand(entry, rules.ply_index(entry.fen), [], None, frozenset()))
    return roots


def display_root(roots: list[LineNode], repertoire_id: str) -> LineNode | None:
    """Collapse a forest into one display root.

    Several roots are wrapped in a synthetic "Initial Position" node that
    is never persisted and never trained.
    """
    if not roots:
        return None
    if len(roots) == 1:
        return roots[0]
    return LineNode(
        id=f"virtual-root-{repertoire_id}",
        fen=rules.STARTING_FEN,
        expected_move="",
        move_number=0,
        move_sequence=format_move_sequence([]),
        children=list(roots),
        is_virtual=True,
    )
