"""SM-2 style interval scheduling and difficulty adjustment.

Everything here is pure and synchronous: callers pass ``now`` in, nothing
reads the clock or touches the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from packages.srs.models import (
    DEFAULT_EASY_BONUS,
    DEFAULT_INTERVAL_MODIFIER,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    Rating,
)

INITIAL_EASE = 2.5
MIN_EASE = 1.3
FIRST_INTERVAL_DAYS = 1.0
SECOND_INTERVAL_DAYS = 6.0

# Hard bounds on the due timestamp, applied after every formula.
MIN_DELAY = timedelta(minutes=10)
MAX_DELAY = timedelta(days=365)


@dataclass(frozen=True)
class ScheduleResult:
    """Scheduler output for one review."""

    next_review_due: datetime
    repetition_count: int
    interval_days: float


def parse_rating(value: int) -> Rating:
    """Convert an int to a Rating, raising ValueError outside 1-4."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid rating: {value!r}")
    try:
        return Rating(value)
    except ValueError:
        raise ValueError(
            f"Invalid rating: {value}. Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
        ) from None


def is_correct_rating(rating: Rating) -> bool:
    """Ratings at or above the scale midpoint (2.5) count as correct."""
    return rating >= Rating.GOOD


def ease_factor(rating: Rating) -> float:
    """Ease for a mature card; recomputed from 2.5 on every call."""
    penalty = 4 - int(rating)
    return max(MIN_EASE, INITIAL_EASE + (0.1 - penalty * (0.08 + penalty * 0.02)))


def raw_interval_days(
    rating: Rating,
    repetition_count: int,
    interval_modifier: float = DEFAULT_INTERVAL_MODIFIER,
    easy_bonus: float = DEFAULT_EASY_BONUS,
) -> float:
    """Interval in days before the due-time clamp.

    ``repetition_count`` is the count *before* this review.
    """
    if repetition_count < 0:
        raise ValueError("repetition_count must not be negative")
    if interval_modifier < 0:
        raise ValueError("interval_modifier must not be negative")
    if easy_bonus < 1.0:
        raise ValueError("easy_bonus must be at least 1.0")

    if repetition_count == 0:
        interval = FIRST_INTERVAL_DAYS
    elif repetition_count == 1:
        interval = SECOND_INTERVAL_DAYS
    else:
        ease = ease_factor(rating)
        second_review = SECOND_INTERVAL_DAYS * ease
        if repetition_count == 2:
            interval = second_review
        else:
            # rep * ease * modifier alone falls below the repetition-2 interval for
            # small rep or modifier (rep 3, GOOD: 7.5 days vs 15). The floor keeps
            # the interval non-decreasing in repetitions.
            interval = max(second_review, repetition_count * ease * interval_modifier)

    if rating == Rating.EASY:
        interval *= easy_bonus
    return interval


def clamp_due(due: datetime, now: datetime) -> datetime:
    return min(max(due, now + MIN_DELAY), now + MAX_DELAY)


def schedule(
    rating: Rating,
    repetition_count: int,
    interval_modifier: float = DEFAULT_INTERVAL_MODIFIER,
    easy_bonus: float = DEFAULT_EASY_BONUS,
    *,
    now: datetime,
) -> ScheduleResult:
    """Compute when a card is next due after a review at ``now``."""
    interval = raw_interval_days(rating, repetition_count, interval_modifier, easy_bonus)
    # timedelta overflows far beyond the clamp, so cap the raw value first.
    bounded = min(interval, MAX_DELAY.days + 1.0)
    due = clamp_due(now + timedelta(days=bounded), now)
    return ScheduleResult(
        next_review_due=due,
        repetition_count=repetition_count + 1,
        interval_days=round(interval, 4),
    )


def adjust_difficulty(current: int, rating: Rating, is_correct: bool) -> int:
    """Easier after a correct EASY, harder after a miss or a HARD/AGAIN rating."""
    level = min(max(current, MIN_DIFFICULTY), MAX_DIFFICULTY)
    if is_correct and rating == Rating.EASY:
        return max(MIN_DIFFICULTY, level - 1)
    if not is_correct or rating <= Rating.HARD:
        return min(MAX_DIFFICULTY, level + 1)
    return level
