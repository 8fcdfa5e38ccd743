"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
Trees are flattened to the fields a trainer needs to walk a line;
card state keeps only what decides the next prompt.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_tree(node: dict) -> dict:
    """Minify a LineNode dict (recursively) for MCP response.

    Keeps id, move_sequence, the SAN of the expected move and the
    opponent reply leading here; drops FENs and UCI duplicates.

    Args:
        node: Full LineNode dict (as produced by LineNode.to_dict).

    Returns:
        Minified dict with the same nesting.
    """
    result = {
        "id": node["id"],
        "move_number": node.get("move_number", 0),
        "move_sequence": node.get("move_sequence", ""),
    }
    if node.get("is_virtual"):
        result["is_virtual"] = True
    else:
        result["move"] = node.get("expected_san") or node.get("expected_move")
    if node.get("opponent_san"):
        result["after"] = node["opponent_san"]
    children = node.get("children") or []
    if children:
        result["children"] = [minify_tree(child) for child in children]
    return result


def minify_card(card: dict) -> dict:
    """Reduce a CardState dict to phase, interval, ease and due date."""
    result = {
        "phase": card.get("phase"),
        "interval": card.get("interval"),
        "ease": round(card.get("ease_factor", 0.0), 2),
        "next_review": card.get("next_review"),
    }
    if card.get("phase") in ("learning", "relearning"):
        result["step"] = card.get("learning_step_index", 0)
    return result


def minify_review(result: dict) -> dict:
    """Minify a ReviewResult dict for MCP response."""
    return {
        "interval_days": result["interval_days"],
        "next_review": result["next_review"],
        "message": result["message"],
        "card": minify_card(result["card"]),
    }


def minify_entry(entry: dict) -> dict:
    """Minify an Entry dict to the fields a trainer prompts with."""
    return {
        "id": entry["id"],
        "fen": entry["fen"],
        "expected_move": entry["expected_move"],
        "color": entry.get("color"),
        "version": entry.get("version", 0),
        "next_review": entry["next_review"],
    }


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

TREE_SCHEMA = {
    "id": str,
    "move_number": int,
    "move_sequence": str,
}

REVIEW_SCHEMA = {
    "interval_days": int,
    "next_review": str,
    "message": str,
    "card": dict,
}

STATS_SCHEMA = {
    "due_count": int,
    "total_positions": int,
    "color_stats": dict,
}

QUEUE_SCHEMA = {
    "mode": str,
    "count": int,
    "entries": list,
}

ERROR_SCHEMA = {
    "error": str,
    "error_type": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when OPENING_DRILL_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("OPENING_DRILL_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        elif not isinstance(value, expected_types):
            errors.append(
                f"Key '{key}': expected {expected_types.__name__}, "
                f"got {type(value).__name__}"
            )

    return errors
