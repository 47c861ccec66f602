"""Typed deck and card structures with document (de)serialization.

Decks are persisted as JSON documents. Everything read from the store goes
through :meth:`Deck.from_document`, which either returns a fully validated
deck or raises :class:`DataIntegrityError` listing what is wrong.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from packages.common.exceptions import DataIntegrityError

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
DEFAULT_DIFFICULTY = 3
DEFAULT_INTERVAL_MODIFIER = 1.0
DEFAULT_EASY_BONUS = 1.3
DEFAULT_SECTION = "default"


class Rating(IntEnum):
    """Canonical review rating. Higher means the recall was easier."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


def coerce_datetime(value: Any) -> datetime | None:
    """Parse a stored timestamp.

    Accepts aware/naive datetimes, ISO-8601 strings and legacy epoch
    milliseconds. Naive values are taken as UTC. Returns None for None or
    empty strings; raises ValueError for anything else unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, int | float):
        if value <= 0:
            raise ValueError(f"Invalid timestamp: {value!r}")
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    raise ValueError(f"Invalid timestamp: {value!r}")


def normalize_card_text(text: str) -> str:
    """Trim, collapse inner whitespace and casefold for duplicate detection."""
    return " ".join(text.split()).casefold()


class Card(BaseModel):
    """One flashcard with its scheduling metadata. Owned by a deck."""

    model_config = ConfigDict(extra="ignore")

    card_id: str = Field(default_factory=new_id, min_length=1)
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    chapter_id: str = DEFAULT_SECTION
    section_id: str = DEFAULT_SECTION
    difficulty_level: int = Field(
        default=DEFAULT_DIFFICULTY,
        ge=MIN_DIFFICULTY,
        le=MAX_DIFFICULTY,
        description="1 (easiest) to 5 (hardest)",
    )
    last_reviewed: datetime | None = None
    next_review_due: datetime | None = None
    repetition_count: int = Field(default=0, ge=0)
    correct_count: int = Field(default=0, ge=0)
    incorrect_count: int = Field(default=0, ge=0)
    ai_generated: bool | None = None
    average_thinking_time: float | None = Field(default=None, ge=0)
    last_confidence: float | None = Field(default=None, ge=0, le=1)

    @field_validator("last_reviewed", "next_review_due", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)

    @property
    def review_count(self) -> int:
        return self.correct_count + self.incorrect_count

    @property
    def accuracy(self) -> float:
        """Share of correct reviews, 0.0 for a card never reviewed."""
        if self.review_count == 0:
            return 0.0
        return round(self.correct_count / self.review_count, 4)

    @property
    def content_key(self) -> tuple[str, str]:
        return normalize_card_text(self.question), normalize_card_text(self.answer)

    def is_due(self, now: datetime) -> bool:
        return self.next_review_due is None or self.next_review_due <= now


class CardDraft(BaseModel):
    """Content for a card that does not exist yet (user input or generated)."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    chapter_id: str | None = None
    section_id: str | None = None
    difficulty_level: int = Field(default=DEFAULT_DIFFICULTY, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)
    ai_generated: bool | None = None

    @field_validator("question", "answer")
    @classmethod
    def _strip(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class Deck(BaseModel):
    """A user's collection of cards for one course."""

    model_config = ConfigDict(extra="ignore")

    deck_id: str = Field(default_factory=new_id, min_length=1)
    user_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    cards: list[Card] = Field(default_factory=list)
    interval_modifier: float = Field(default=DEFAULT_INTERVAL_MODIFIER, ge=0)
    easy_bonus: float = Field(default=DEFAULT_EASY_BONUS, ge=1.0)
    total_reviews: int = Field(default=0, ge=0)
    correct_reviews: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)

    @model_validator(mode="after")
    def _check_counters(self) -> Deck:
        if self.correct_reviews > self.total_reviews:
            raise ValueError(
                f"correct_reviews ({self.correct_reviews}) exceeds "
                f"total_reviews ({self.total_reviews})"
            )
        return self

    @property
    def accuracy(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return round(self.correct_reviews / self.total_reviews, 4)

    def find_card(self, card_id: str) -> Card | None:
        for card in self.cards:
            if card.card_id == card_id:
                return card
        return None

    def find_duplicate(
        self, question: str, answer: str, *, exclude_id: str | None = None
    ) -> Card | None:
        """Return an existing card whose normalized question+answer match."""
        key = (normalize_card_text(question), normalize_card_text(answer))
        for card in self.cards:
            if card.card_id != exclude_id and card.content_key == key:
                return card
        return None

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON document shape stored in the card store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Deck:
        """Deserialize a stored document or reject it.

        Raises:
            DataIntegrityError: If the document does not satisfy the deck schema.
        """
        try:
            return cls.model_validate(document)
        except PydanticValidationError as exc:
            violations = [
                f"{'.'.join(str(part) for part in error['loc']) or 'deck'}: {error['msg']}"
                for error in exc.errors()
            ]
            deck_id = document.get("deck_id") if isinstance(document, dict) else None
            raise DataIntegrityError(
                f"Stored deck {deck_id} failed validation",
                violations,
                context={"deck_id": deck_id},
            ) from exc


class DueCard(Card):
    """A due card joined with its parent deck's metadata at query time."""

    deck_id: str
    deck_title: str
    course_id: str


class DueCardsResult(BaseModel):
    """Review queue returned by the due-card selector."""

    due_cards: list[DueCard]
    total_due: int


class ReviewResult(BaseModel):
    """Outcome of one submitted review."""

    deck_id: str
    card_id: str
    is_correct: bool
    next_review_due: datetime
    repetition_count: int
    difficulty_level: int
    interval_days: float
    accuracy: float
    deck_accuracy: float
