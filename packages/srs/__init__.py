"""Spaced-repetition data model and scheduler."""

from packages.srs.models import (
    Card,
    CardDraft,
    Deck,
    DueCard,
    DueCardsResult,
    Rating,
    ReviewResult,
)
from packages.srs.scheduler import (
    ScheduleResult,
    adjust_difficulty,
    is_correct_rating,
    parse_rating,
    raw_interval_days,
    schedule,
)

__all__ = [
    "Card",
    "CardDraft",
    "Deck",
    "DueCard",
    "DueCardsResult",
    "Rating",
    "ReviewResult",
    "ScheduleResult",
    "adjust_difficulty",
    "is_correct_rating",
    "parse_rating",
    "raw_interval_days",
    "schedule",
]
