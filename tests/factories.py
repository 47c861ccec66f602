"""Builders shared across test modules."""

from datetime import UTC, datetime, timedelta
from typing import Any

from packages.srs.models import Card, Deck

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Settable clock for time-dependent code."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def make_card(**overrides: Any) -> Card:
    """Build a card with sensible defaults."""
    values: dict[str, Any] = {
        "question": "What is the capital of France?",
        "answer": "Paris",
        "last_reviewed": NOW - timedelta(days=2),
        "next_review_due": NOW - timedelta(hours=1),
    }
    values.update(overrides)
    return Card(**values)


def make_deck(**overrides: Any) -> Deck:
    """Build a deck with sensible defaults."""
    values: dict[str, Any] = {
        "user_id": "user-1",
        "course_id": "course-1",
        "title": "Geography",
        "created_at": NOW - timedelta(days=30),
        "updated_at": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return Deck(**values)
