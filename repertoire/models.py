"""Shared data models for the opening repertoire trainer.

CardState, Entry and LineNode are the shared contract between the
store, the graph engine, the scheduler and the tool surface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

WHITE = "white"
BLACK = "black"
COLORS = (WHITE, BLACK)


# ---------------------------------------------------------------------------
# Card phases (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Learning:
    """First exposure: walking the learning step ladder."""

    step_index: int = 0
    name: str = field(default="learning", init=False)


@dataclass(frozen=True)
class Exponential:
    """Long-term SM-2 regime with day-based intervals."""

    name: str = field(default="exponential", init=False)


@dataclass(frozen=True)
class Relearning:
    """Short regime after a lapse: walking the relearning ladder.

    ``lapse_interval`` is the day interval the card returns to once the
    ladder is done.
    """

    step_index: int = 0
    lapse_interval: int = 1
    name: str = field(default="relearning", init=False)


Phase = Union[Learning, Exponential, Relearning]


def phase_from_row(name: str, step_index: int, lapse_interval: int = 1) -> Phase:
    """Rebuild a phase variant from its flattened storage columns.

    Raises:
        ValueError: If the stored phase name is unknown.
    """
    if name == "learning":
        return Learning(step_index)
    if name == "exponential":
        return Exponential()
    if name == "relearning":
        return Relearning(step_index, lapse_interval)
    raise ValueError(f"Unknown card phase: {name}")


def phase_to_row(phase: Phase) -> tuple[str, int, int]:
    """Flatten a phase into (name, step_index, lapse_interval) storage columns."""
    return (
        phase.name,
        getattr(phase, "step_index", 0),
        getattr(phase, "lapse_interval", 0),
    )


# ---------------------------------------------------------------------------
# Card state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CardState:
    """Spaced-repetition payload attached to a repertoire entry."""

    interval: int
    ease_factor: float
    repetitions: int
    phase: Phase
    next_review: datetime
    last_review: datetime | None = None

    @classmethod
    def new(cls, now: datetime, starting_ease: float = 2.5) -> CardState:
        """Default state for a freshly created entry, due immediately."""
        return cls(
            interval=0,
            ease_factor=starting_ease,
            repetitions=0,
            phase=Learning(0),
            next_review=now,
            last_review=None,
        )

    def to_dict(self) -> dict:
        name, step, lapse = phase_to_row(self.phase)
        return {
            "interval": self.interval,
            "ease_factor": self.ease_factor,
            "repetitions": self.repetitions,
            "phase": name,
            "learning_step_index": step,
            "lapse_interval_days": lapse,
            "next_review": self.next_review.isoformat(),
            "last_review": (
                self.last_review.isoformat() if self.last_review else None
            ),
        }


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Repertoire:
    """One repertoire per (user, color) pair."""

    id: str
    user_id: str
    color: str
    version: int = 0


@dataclass(frozen=True)
class Entry:
    """A trainable move: from the position at ``fen`` play ``expected_move``."""

    id: str
    repertoire_id: str
    position_id: int
    fen: str
    expected_move: str
    card: CardState
    version: int = 0
    color: str | None = None
    user_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "repertoire_id": self.repertoire_id,
            "fen": self.fen,
            "expected_move": self.expected_move,
            "color": self.color,
            "version": self.version,
            **self.card.to_dict(),
        }


# ---------------------------------------------------------------------------
# Derived display tree
# ---------------------------------------------------------------------------


@dataclass
class LineNode:
    """Display node of a reconstructed repertoire tree.

    Nodes are rebuilt on every read; ``opponent_move`` is the reply that
    led here from the parent node, if any.
    """

    id: str
    fen: str
    expected_move: str
    expected_san: str = ""
    opponent_move: str | None = None
    opponent_san: str | None = None
    move_number: int = 0
    move_sequence: str = ""
    children: list[LineNode] = field(default_factory=list)
    is_virtual: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fen": self.fen,
            "expected_move": self.expected_move,
            "expected_san": self.expected_san,
            "opponent_move": self.opponent_move,
            "opponent_san": self.opponent_san,
            "move_number": self.move_number,
            "move_sequence": self.move_sequence,
            "is_virtual": self.is_virtual,
            "children": [child.to_dict() for child in self.children],
        }

    def walk(self):
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()
