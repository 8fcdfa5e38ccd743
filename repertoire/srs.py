"""Spaced Repetition System (SRS) scheduling for repertoire training.

Uses an SM-2 variant with Anki-style learning and relearning ladders.
Cards move between three phases:

- learning: new cards walk the learning step ladder (minutes/hours)
- exponential: long-term regime, intervals in whole days grow by ease
- relearning: after a lapse, cards walk the relearning ladder before
  returning to the exponential regime

``process_review`` is a pure function of (card, response, now, config):
it never reads the clock, so every transition is reproducible in tests.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from repertoire.errors import InvalidResponse
from repertoire.models import CardState, Exponential, Learning, Relearning

_MIN_EASE_FACTOR = 1.3
_STARTING_EASE = 2.5
_SECONDS_PER_DAY = 24 * 60 * 60


class Response(str, Enum):
    """How well the player recalled the expected move."""

    FORGOT = "forgot"
    PARTIAL = "partial"
    EFFORT = "effort"
    EASY = "easy"


def parse_response(value: str | Response) -> Response:
    """Validate a raw review response before it reaches the scheduler.

    Raises:
        InvalidResponse: If ``value`` is not forgot/partial/effort/easy.
    """
    if isinstance(value, Response):
        return value
    try:
        return Response(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(r.value for r in Response)
        raise InvalidResponse(
            f"Invalid response {value!r}: expected one of {valid}"
        ) from None


@dataclass(frozen=True)
class SM2Config:
    """Scheduling parameters. Ladders are in wall-clock time, intervals in days."""

    learning_steps: tuple[timedelta, ...] = (
        timedelta(minutes=24),
        timedelta(hours=2),
        timedelta(days=1),
    )
    relearning_steps: tuple[timedelta, ...] = (
        timedelta(hours=2),
        timedelta(hours=12),
    )
    starting_ease: float = _STARTING_EASE
    minimum_ease: float = _MIN_EASE_FACTOR
    maximum_interval_days: int = 36500
    graduating_interval_days: int = 1
    easy_graduating_interval_days: int = 4
    easy_bonus: float = 1.3
    interval_multiplier: float = 1.0
    hard_interval_factor: float = 1.2
    lapse_interval_multiplier: float = 0.1
    minimum_lapse_interval_days: int = 1
    # (response, value) pairs
    ease_deltas: tuple[tuple[Response, float], ...] = (
        (Response.FORGOT, -0.2),
        (Response.PARTIAL, -0.15),
        (Response.EFFORT, 0.0),
        (Response.EASY, 0.15),
    )
    late_dividers: tuple[tuple[Response, int], ...] = (
        (Response.PARTIAL, 4),
        (Response.EFFORT, 2),
        (Response.EASY, 1),
    )

    def ease_delta(self, response: Response) -> float:
        return dict(self.ease_deltas).get(response, 0.0)

    def late_divider(self, response: Response) -> int:
        return dict(self.late_dividers)[response]


DEFAULT_CONFIG = SM2Config()


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of one review: the new card plus display-only feedback."""

    card: CardState
    interval_days: int
    next_review: datetime
    message: str

    def to_dict(self) -> dict:
        return {
            "card": self.card.to_dict(),
            "interval_days": self.interval_days,
            "next_review": self.next_review.isoformat(),
            "message": self.message,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _update_ease(ease: float, response: Response, config: SM2Config) -> float:
    ease = ease + config.ease_delta(response)
    return round(max(config.minimum_ease, ease), 4)


def process_review(
    card: CardState,
    response: Response,
    now: datetime,
    config: SM2Config = DEFAULT_CONFIG,
) -> ReviewResult:
    """Apply one review to a card and compute its next schedule.

    Args:
        card: Current card state.
        response: Parsed review response.
        now: Review time; the only clock this function sees.
        config: Scheduling parameters.

    Returns:
        ReviewResult with the new card state, the resulting interval in
        days and a short message describing the transition.
    """
    phase = card.phase
    if isinstance(phase, Learning):
        updated, message = _review_ladder(
            card, response, now, config, config.learning_steps, relearning=False
        )
    elif isinstance(phase, Relearning):
        updated, message = _review_ladder(
            card, response, now, config, config.relearning_steps, relearning=True
        )
    else:
        updated, message = _review_exponential(card, response, now, config)

    return ReviewResult(
        card=updated,
        interval_days=updated.interval,
        next_review=updated.next_review,
        message=message,
    )


def _step_phase(phase: Learning | Relearning, index: int) -> Learning | Relearning:
    if isinstance(phase, Relearning):
        return Relearning(index, phase.lapse_interval)
    return Learning(index)


def _review_ladder(
    card: CardState,
    response: Response,
    now: datetime,
    config: SM2Config,
    steps: tuple[timedelta, ...],
    relearning: bool,
) -> tuple[CardState, str]:
    """Learning and relearning share one step-ladder walk.

    Ladder steps are shorter than a day, so ``interval`` stays 0 until
    the card graduates; a relearning card carries its lapse interval on
    the phase instead.
    """
    label = "relearning" if relearning else "learning"

    if response is Response.FORGOT:
        ease = card.ease_factor
        if relearning:
            ease = _update_ease(ease, response, config)
        updated = replace(
            card,
            interval=0,
            ease_factor=ease,
            repetitions=0,
            phase=_step_phase(card.phase, 0),
            next_review=now + steps[0],
            last_review=now,
        )
        return updated, f"Back to first {label} step"

    next_index = card.phase.step_index + 1
    if next_index < len(steps):
        updated = replace(
            card,
            interval=0,
            phase=_step_phase(card.phase, next_index),
            next_review=now + steps[next_index],
            last_review=now,
        )
        return updated, f"Moving to {label} step {next_index + 1} of {len(steps)}"

    # Ladder exhausted: graduate to the exponential regime.
    ease = card.ease_factor
    if response is Response.EASY:
        ease = _update_ease(ease, response, config)

    if relearning:
        interval = max(config.minimum_lapse_interval_days, card.phase.lapse_interval)
        message = "Completed relearning - back to exponential phase"
    elif response is Response.EASY:
        interval = config.easy_graduating_interval_days
        message = "Easy - graduating to exponential phase"
    else:
        interval = config.graduating_interval_days
        message = "Exiting learning phase - entering exponential phase"

    interval = min(max(1, interval), config.maximum_interval_days)
    updated = replace(
        card,
        interval=interval,
        ease_factor=ease,
        repetitions=1,
        phase=Exponential(),
        next_review=now + timedelta(days=interval),
        last_review=now,
    )
    return updated, message


def _review_exponential(
    card: CardState,
    response: Response,
    now: datetime,
    config: SM2Config,
) -> tuple[CardState, str]:
    """SM-2 regime: grow the interval by ease, or lapse into relearning."""
    previous = card.interval
    ease = _update_ease(card.ease_factor, response, config)

    if response is Response.FORGOT:
        lapse_interval = max(
            config.minimum_lapse_interval_days,
            _round_half_up(previous * config.lapse_interval_multiplier),
        )
        updated = replace(
            card,
            interval=0,
            ease_factor=ease,
            repetitions=0,
            phase=Relearning(0, lapse_interval),
            next_review=now + config.relearning_steps[0],
            last_review=now,
        )
        return updated, "Forgot - entering relearning phase"

    days_late = 0
    if card.last_review is not None:
        elapsed = (now - card.last_review).total_seconds() // _SECONDS_PER_DAY
        days_late = max(0, int(elapsed) - previous)
    late_bonus = days_late / config.late_divider(response)

    if response is Response.PARTIAL:
        factor = config.hard_interval_factor
    elif response is Response.EFFORT:
        factor = ease
    else:
        factor = ease * config.easy_bonus

    raw = (previous + late_bonus) * factor * config.interval_multiplier
    interval = max(previous + 1, _round_half_up(raw), 1)
    interval = min(interval, max(previous, config.maximum_interval_days))

    updated = replace(
        card,
        interval=interval,
        ease_factor=ease,
        repetitions=card.repetitions + 1,
        phase=Exponential(),
        next_review=now + timedelta(days=interval),
        last_review=now,
    )
    return updated, f"Interval increased to {interval} days"


def is_due(card: CardState, now: datetime) -> bool:
    """True when the card's next review is at or before ``now``."""
    return card.next_review <= now


def get_due(entries: list, now: datetime) -> list:
    """Return entries whose card is due, sorted by next review ascending."""
    due = [e for e in entries if is_due(e.card, now)]
    due.sort(key=lambda e: e.card.next_review)
    return due


def card_summary(card: CardState, now: datetime) -> dict:
    """Summarize a card's scheduling state for display."""
    remaining = (card.next_review - now).total_seconds() / _SECONDS_PER_DAY
    return {
        "phase": card.phase.name,
        "interval": card.interval,
        "ease_factor": card.ease_factor,
        "repetitions": card.repetitions,
        "next_review": card.next_review.isoformat(),
        "days_until_review": math.ceil(remaining),
    }
