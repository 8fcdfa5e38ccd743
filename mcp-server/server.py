"""MCP server for the Opening Drill repertoire trainer.

Exposes repertoire editing and spaced-repetition training tools via
FastMCP. All state lives in the SQLite database named by
OPENING_DRILL_DB (default data/repertoire.db); every tool names the user
it acts for.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from loguru import logger
from mcp.server.fastmcp import FastMCP

from repertoire.config import Settings, configure_logging
from repertoire.errors import RepertoireError
from repertoire.manager import RepertoireManager, normalize_color

from response_schemas import (  # noqa: E402
    ERROR_SCHEMA,
    QUEUE_SCHEMA,
    REVIEW_SCHEMA,
    STATS_SCHEMA,
    TREE_SCHEMA,
    minify_entry,
    minify_review,
    minify_tree,
    validate_response,
)

mcp = FastMCP("opening-drill")

_settings = Settings.load()
configure_logging(_settings.log_level)

# Tests swap this for a manager on a temporary database.
_manager = RepertoireManager(_settings.db_path)


def _error(exc: Exception) -> dict:
    """Turn a domain error into the tool error dict."""
    return {"error": str(exc), "error_type": type(exc).__name__}


def _checked(response: dict, schema: dict) -> dict:
    """Log schema mismatches when OPENING_DRILL_VALIDATE=1."""
    problems = validate_response(response, schema)
    for problem in problems:
        logger.warning("Response schema mismatch: {}", problem)
    return response


# ---------------------------------------------------------------------------
# Repertoire editing
# ---------------------------------------------------------------------------


@mcp.tool()
def create_repertoires(user_id: str) -> dict:
    """Create the user's White and Black repertoires if missing.

    Args:
        user_id: Owner of the repertoires.

    Returns:
        Dict with created count and repertoire ids per color.
    """
    return _manager.ensure_repertoires(user_id)


@mcp.tool()
def save_line(
    user_id: str,
    color: str,
    moves: list[str],
    starting_fen: str | None = None,
) -> dict:
    """Save a line of SAN moves to a repertoire.

    Every ply becomes an entry; plies already in the repertoire keep
    their training progress.

    Args:
        user_id: Owner of the repertoire.
        color: 'white' or 'black'.
        moves: SAN moves from the starting position, e.g. ["e4", "c5", "Nf3"].
        starting_fen: Optional FEN to start from instead of the initial position.

    Returns:
        Dict with entries_created and total plies, or an error dict.
    """
    try:
        created = _manager.insert_line(user_id, color, moves, starting_fen)
    except (RepertoireError, ValueError) as exc:
        return _checked(_error(exc), ERROR_SCHEMA)
    return {
        "message": f"Saved {len(moves)}-ply line ({created} new entries)",
        "entries_created": created,
        "plies": len(moves),
    }


@mcp.tool()
def get_repertoire_tree(user_id: str, color: str, compact: bool = True) -> dict:
    """Get the move tree of a repertoire.

    Args:
        user_id: Owner of the repertoire.
        color: 'white' or 'black'.
        compact: Minify nodes to ids, move labels and children (default True).

    Returns:
        Dict with the root node (None when the repertoire is empty).
    """
    try:
        color = normalize_color(color)
        tree = _manager.get_tree(user_id, color)
    except ValueError as exc:
        return _checked(_error(exc), ERROR_SCHEMA)
    if tree is None:
        return {"color": color, "tree": None}
    node = tree.to_dict()
    if compact:
        node = _checked(minify_tree(node), TREE_SCHEMA)
    return {"color": color, "tree": node}


@mcp.tool()
def delete_entry(user_id: str, entry_id: str) -> dict:
    """Delete an entry and every line continuing from it.

    Args:
        user_id: Must own the entry.
        entry_id: Entry to delete.

    Returns:
        Dict with deleted_count, or an error dict.
    """
    try:
        deleted = _manager.delete_entry(entry_id, user_id)
    except RepertoireError as exc:
        return _checked(_error(exc), ERROR_SCHEMA)
    return {
        "message": f"Deleted {deleted} entries",
        "deleted_count": deleted,
    }


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------


@mcp.tool()
def review_entry(
    user_id: str,
    entry_id: str,
    response: str,
    expected_version: int | None = None,
) -> dict:
    """Record a review of an entry.

    Args:
        user_id: Must own the entry.
        entry_id: Entry that was drilled.
        response: One of forgot, partial, effort, easy.
        expected_version: Entry version shown to the user; a repeated
            submission of the same review is then rejected.

    Returns:
        Dict with interval_days, next_review, message and card, or an error dict.
    """
    try:
        result = _manager.review(
            entry_id, user_id, response, expected_version=expected_version
        )
    except RepertoireError as exc:
        return _checked(_error(exc), ERROR_SCHEMA)
    return _checked(minify_review(result.to_dict()), REVIEW_SCHEMA)


@mcp.tool()
def training_stats(user_id: str) -> dict:
    """Get due / learned / total counts across the user's repertoires.

    Args:
        user_id: Owner of the repertoires.

    Returns:
        Dict with due_count, total_positions and color_stats.
    """
    return _checked(_manager.get_stats(user_id), STATS_SCHEMA)


@mcp.tool()
def training_queue(
    user_id: str,
    color: str | None = None,
    mode: str = "review",
    from_entry_id: str | None = None,
    limit: int = 20,
) -> dict:
    """Get the next entries to drill, soonest due first.

    Args:
        user_id: Owner of the repertoires.
        color: Restrict to 'white' or 'black' (default both).
        mode: 'review' for due entries only, 'practice' for all entries.
        from_entry_id: Restrict to one entry and the lines below it.
        limit: Maximum entries returned (default 20).

    Returns:
        Dict with mode, count (before the limit) and entries.
    """
    try:
        queue = _manager.training_queue(
            user_id, color=color, mode=mode, from_entry_id=from_entry_id
        )
    except (RepertoireError, ValueError) as exc:
        return _checked(_error(exc), ERROR_SCHEMA)
    return _checked(
        {
            "mode": mode,
            "count": len(queue),
            "entries": [minify_entry(e.to_dict()) for e in queue[: max(limit, 0)]],
        },
        QUEUE_SCHEMA,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    mcp.run()
