"""Pytest tests for the SM-2 variant scheduler.

Tests cover the learning and relearning ladders, graduation, the
exponential regime, lapses, ease bounds and response validation.
The scheduler is pure, so every test passes ``now`` explicitly.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from repertoire.errors import InvalidResponse
from repertoire.models import CardState, Exponential, Learning, Relearning
from repertoire.srs import (
    DEFAULT_CONFIG,
    Response,
    SM2Config,
    _MIN_EASE_FACTOR,
    card_summary,
    get_due,
    is_due,
    parse_response,
    process_review,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _exponential(interval=6, ease=2.5, repetitions=3, last_review=None) -> CardState:
    """A card in the exponential phase reviewed at ``last_review``."""
    return CardState(
        interval=interval,
        ease_factor=ease,
        repetitions=repetitions,
        phase=Exponential(),
        next_review=_NOW,
        last_review=last_review,
    )


# ---------------------------------------------------------------------------
# Learning ladder
# ---------------------------------------------------------------------------


class TestLearningLadder:

    def test_new_card_defaults(self):
        card = CardState.new(_NOW)
        assert card.interval == 0
        assert card.ease_factor == 2.5
        assert card.repetitions == 0
        assert card.phase == Learning(0)
        assert card.next_review == _NOW
        assert card.last_review is None

    def test_success_advances_one_step(self):
        result = process_review(CardState.new(_NOW), Response.EFFORT, _NOW)
        assert result.card.phase == Learning(1)
        assert result.card.next_review == _NOW + DEFAULT_CONFIG.learning_steps[1]
        assert result.card.last_review == _NOW
        assert result.card.repetitions == 0

    def test_walking_the_ladder_graduates(self):
        card = CardState.new(_NOW)
        now = _NOW
        for _ in range(len(DEFAULT_CONFIG.learning_steps)):
            result = process_review(card, Response.EFFORT, now)
            card = result.card
            now = card.next_review

        assert card.phase == Exponential()
        assert card.repetitions == 1
        assert card.interval == DEFAULT_CONFIG.graduating_interval_days
        assert card.ease_factor == 2.5
        assert card.next_review == card.last_review + timedelta(days=1)

    def test_easy_graduation_bumps_ease_and_interval(self):
        last_step = Learning(len(DEFAULT_CONFIG.learning_steps) - 1)
        card = replace(CardState.new(_NOW), phase=last_step)
        result = process_review(card, Response.EASY, _NOW)
        assert result.card.phase == Exponential()
        assert result.interval_days == DEFAULT_CONFIG.easy_graduating_interval_days
        assert result.card.ease_factor == pytest.approx(2.65)
        assert result.next_review == _NOW + timedelta(days=4)

    def test_forgot_restarts_ladder_without_ease_change(self):
        card = replace(CardState.new(_NOW), phase=Learning(2))
        result = process_review(card, Response.FORGOT, _NOW)
        assert result.card.phase == Learning(0)
        assert result.card.ease_factor == 2.5
        assert result.card.next_review == _NOW + DEFAULT_CONFIG.learning_steps[0]


# ---------------------------------------------------------------------------
# Exponential regime
# ---------------------------------------------------------------------------


class TestExponential:

    def test_easy_from_interval_six(self):
        card = _exponential(interval=6, ease=2.5, repetitions=3)
        result = process_review(card, Response.EASY, _NOW)
        assert result.interval_days >= 15
        assert result.card.repetitions == 4
        assert result.card.ease_factor == pytest.approx(2.65)
        assert result.next_review == _NOW + timedelta(days=result.interval_days)

    def test_effort_multiplies_by_ease(self):
        result = process_review(_exponential(interval=10), Response.EFFORT, _NOW)
        assert result.interval_days == 25
        assert result.card.ease_factor == 2.5

    def test_partial_uses_hard_factor_and_lowers_ease(self):
        result = process_review(_exponential(interval=10), Response.PARTIAL, _NOW)
        assert result.interval_days == 12
        assert result.card.ease_factor == pytest.approx(2.35)

    @pytest.mark.parametrize("response", [Response.PARTIAL, Response.EFFORT, Response.EASY])
    def test_success_never_shrinks_interval(self, response):
        card = _exponential(interval=3, ease=_MIN_EASE_FACTOR)
        result = process_review(card, response, _NOW)
        assert result.interval_days >= card.interval + 1

    def test_late_review_adds_bonus(self):
        on_time = _exponential(interval=10, last_review=_NOW - timedelta(days=10))
        late = _exponential(interval=10, last_review=_NOW - timedelta(days=18))
        on_time_result = process_review(on_time, Response.EFFORT, _NOW)
        late_result = process_review(late, Response.EFFORT, _NOW)
        # 8 days late / divider 2 = 4 extra days before the ease multiplier
        assert on_time_result.interval_days == 25
        assert late_result.interval_days == 35

    def test_interval_capped(self):
        config = SM2Config(maximum_interval_days=100)
        result = process_review(_exponential(interval=90), Response.EASY, _NOW, config)
        assert result.interval_days == 100


# ---------------------------------------------------------------------------
# Lapses and relearning
# ---------------------------------------------------------------------------


class TestLapse:

    def test_forgot_enters_relearning(self):
        card = _exponential(interval=30, ease=2.5, repetitions=5)
        result = process_review(card, Response.FORGOT, _NOW)
        assert result.card.phase == Relearning(0, lapse_interval=3)
        assert result.card.repetitions == 0
        assert result.card.ease_factor == pytest.approx(2.3)
        assert result.card.interval == 0
        assert result.interval_days == 0
        assert result.next_review == _NOW + DEFAULT_CONFIG.relearning_steps[0]

    def test_lapse_interval_has_floor(self):
        result = process_review(_exponential(interval=2), Response.FORGOT, _NOW)
        assert result.card.phase.lapse_interval == 1

    def test_relearning_graduates_with_lapse_interval(self):
        card = process_review(_exponential(interval=30), Response.FORGOT, _NOW).card
        now = _NOW
        for _ in range(len(DEFAULT_CONFIG.relearning_steps)):
            now = card.next_review
            card = process_review(card, Response.EFFORT, now).card

        assert card.phase == Exponential()
        assert card.interval == 3
        assert card.repetitions == 1
        assert card.next_review == now + timedelta(days=3)

    def test_forgot_in_relearning_lowers_ease(self):
        card = replace(_exponential(interval=0, ease=2.0), phase=Relearning(1, 3))
        result = process_review(card, Response.FORGOT, _NOW)
        assert result.card.phase == Relearning(0, 3)
        assert result.card.ease_factor == pytest.approx(1.8)


class TestScheduleInvariant:

    @pytest.mark.parametrize("response", list(Response))
    @pytest.mark.parametrize(
        "card",
        [
            CardState.new(_NOW),
            replace(CardState.new(_NOW), phase=Learning(2)),
            _exponential(interval=30, last_review=_NOW - timedelta(days=30)),
            replace(_exponential(interval=0), phase=Relearning(0, 3)),
            replace(_exponential(interval=0), phase=Relearning(1, 3)),
        ],
        ids=["new", "last-learning-step", "exponential", "relearning", "last-relearning-step"],
    )
    def test_next_review_covers_interval(self, card, response):
        result = process_review(card, response, _NOW)
        assert result.interval_days == result.card.interval
        assert result.next_review >= _NOW + timedelta(days=result.card.interval)
        assert result.card.last_review == _NOW

    def test_walk_through_lapse_keeps_invariant(self):
        card = _exponential(interval=30)
        now = _NOW
        for response in [Response.FORGOT, Response.EFFORT, Response.FORGOT,
                         Response.EFFORT, Response.EASY, Response.EFFORT]:
            card = process_review(card, response, now).card
            assert card.next_review >= now + timedelta(days=card.interval)
            now = card.next_review
        assert card.phase == Exponential()


class TestConfig:

    def test_default_config_is_hashable(self):
        assert hash(DEFAULT_CONFIG) == hash(SM2Config())

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_CONFIG.ease_deltas[0] = (Response.FORGOT, 0.0)

    def test_table_lookups(self):
        assert DEFAULT_CONFIG.ease_delta(Response.FORGOT) == -0.2
        assert DEFAULT_CONFIG.ease_delta(Response.EFFORT) == 0.0
        assert DEFAULT_CONFIG.late_divider(Response.PARTIAL) == 4


class TestEaseFactorMinimum:

    def test_ease_factor_minimum(self):
        """Repeated lapses never drop ease below 1.3."""
        card = _exponential(interval=20, ease=1.5)
        for _ in range(10):
            card = process_review(card, Response.FORGOT, _NOW).card
            card = replace(card, phase=Exponential())
        assert card.ease_factor == _MIN_EASE_FACTOR


# ---------------------------------------------------------------------------
# Responses and due filtering
# ---------------------------------------------------------------------------


class TestResponses:

    @pytest.mark.parametrize("raw", ["forgot", "Partial", " EFFORT ", Response.EASY])
    def test_parse_valid(self, raw):
        assert isinstance(parse_response(raw), Response)

    @pytest.mark.parametrize("raw", ["", "hard", "4", None])
    def test_parse_invalid(self, raw):
        with pytest.raises(InvalidResponse):
            parse_response(raw)

    def test_invalid_response_is_value_error(self):
        with pytest.raises(ValueError):
            parse_response("again")


class _Item:
    def __init__(self, card):
        self.card = card


class TestDue:

    def test_due_sorted_and_filtered(self):
        soon = _Item(replace(_exponential(), next_review=_NOW - timedelta(hours=1)))
        earlier = _Item(replace(_exponential(), next_review=_NOW - timedelta(days=2)))
        future = _Item(replace(_exponential(), next_review=_NOW + timedelta(days=1)))
        due = get_due([soon, future, earlier], _NOW)
        assert due == [earlier, soon]

    def test_due_boundary_inclusive(self):
        assert is_due(CardState.new(_NOW), _NOW)

    def test_card_summary(self):
        card = replace(_exponential(interval=4), next_review=_NOW + timedelta(days=4))
        summary = card_summary(card, _NOW)
        assert summary["phase"] == "exponential"
        assert summary["days_until_review"] == 4
