"""Training statistics over a user's repertoires.

First-move positions are the forced opening choices of a repertoire:
the initial position for White, the position after White's first move
for Black. They are never trained and never counted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from repertoire import rules
from repertoire.models import BLACK, COLORS, WHITE, Entry


def is_first_move_position(fen: str, color: str) -> bool:
    """True if ``fen`` is the first-move position for a ``color`` repertoire.

    Args:
        fen: Canonical FEN of the entry's position.
        color: Repertoire color, 'white' or 'black'.
    """
    fields = rules.decode(fen)
    if fields.fullmove != 1:
        return False
    if color == WHITE:
        return fields.turn == WHITE
    return fields.turn == BLACK


def trainable(entries: Iterable[Entry], color: str) -> list[Entry]:
    """Drop first-move positions from a repertoire's entries."""
    return [e for e in entries if not is_first_move_position(e.fen, color)]


def compute_stats(
    repertoires: Iterable[tuple[str, list[Entry]]], now: datetime
) -> dict:
    """Fold (color, entries) pairs into due / learned / total counts.

    Args:
        repertoires: Pairs of repertoire color and its entries.
        now: Reference time for the due count.

    Returns:
        Dict with keys: due_count, total_positions, color_stats.
    """
    due_count = 0
    total_positions = 0
    color_stats = {color: {"learned": 0, "total": 0} for color in COLORS}

    for color, entries in repertoires:
        for entry in trainable(entries, color):
            total_positions += 1
            color_stats[color]["total"] += 1
            if entry.card.repetitions > 0:
                color_stats[color]["learned"] += 1
            if entry.card.next_review <= now:
                due_count += 1

    return {
        "due_count": due_count,
        "total_positions": total_positions,
        "color_stats": color_stats,
    }
