"""Field-level integrity rules over raw deck documents.

Rules take plain dicts rather than :class:`Deck` models so that documents
too damaged to deserialize can still be inspected and repaired.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any

from packages.common.exceptions import DataIntegrityError
from packages.srs.models import MAX_DIFFICULTY, MIN_DIFFICULTY, Card, Deck, coerce_datetime

PLAUSIBILITY_WINDOW = timedelta(days=365)
DEFAULT_STATS_TOLERANCE = 10

DECK_COUNTERS = ("total_reviews", "correct_reviews")
CARD_COUNTERS = ("repetition_count", "correct_count", "incorrect_count")
CARD_LOCATION_FIELDS = ("chapter_id", "section_id")

# Optional review telemetry: None or a number within the bounds.
CARD_TELEMETRY: dict[str, tuple[float, float | None]] = {
    "average_thinking_time": (0.0, None),
    "last_confidence": (0.0, 1.0),
}

_FIELD_LABELS = {
    "total_reviews": "total reviews",
    "correct_reviews": "correct reviews",
    "repetition_count": "repetition count",
    "correct_count": "correct count",
    "incorrect_count": "incorrect count",
    "chapter_id": "chapter ID",
    "section_id": "section ID",
    "average_thinking_time": "average thinking time",
    "last_confidence": "last confidence",
}


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def parse_timestamp(value: Any) -> datetime | None:
    """Lenient timestamp parse: None when missing or unparseable."""
    try:
        return coerce_datetime(value)
    except (TypeError, ValueError):
        return None


def is_non_empty_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_telemetry(value: Any, low: float, high: float | None) -> bool:
    if value is None:
        return True
    if not is_number(value) or value < low:
        return False
    return high is None or value <= high


def has_invalid_optional(document: dict[str, Any], field: str, low: float) -> bool:
    """An optional number is fine when absent; present (even null) it must be >= ``low``."""
    if field not in document:
        return False
    value = document[field]
    return not is_number(value) or value < low


def deck_violations(document: dict[str, Any]) -> list[str]:
    """Deck-level structural problems, excluding the contents of individual cards."""
    issues: list[str] = []

    if not is_non_empty_text(document.get("deck_id")):
        issues.append("Missing deck ID")
    if not is_non_empty_text(document.get("user_id")):
        issues.append("Missing user ID")
    if not is_non_empty_text(document.get("course_id")):
        issues.append("Missing course ID")
    if not is_non_empty_text(document.get("title")):
        issues.append("Empty title")
    if not isinstance(document.get("description", ""), str):
        issues.append("Invalid description")
    if parse_timestamp(document.get("created_at")) is None:
        issues.append("Invalid creation date")
    if parse_timestamp(document.get("updated_at")) is None:
        issues.append("Invalid update date")

    for field in DECK_COUNTERS:
        value = document.get(field)
        if value is None:
            issues.append(f"Missing {_FIELD_LABELS[field]}")
        elif not is_int(value):
            issues.append(f"Invalid {_FIELD_LABELS[field]}")
        elif value < 0:
            issues.append(f"Negative {_FIELD_LABELS[field]}")

    total = document.get("total_reviews")
    correct = document.get("correct_reviews")
    if is_int(total) and is_int(correct) and correct > total:
        issues.append("Correct reviews exceed total")

    if not isinstance(document.get("cards"), list):
        issues.append("Cards property is not an array")

    if has_invalid_optional(document, "interval_modifier", 0.0):
        issues.append("Invalid interval modifier")
    if has_invalid_optional(document, "easy_bonus", 1.0):
        issues.append("Invalid easy bonus")

    return issues


def card_violations(card: Any, now: datetime) -> list[str]:
    """Problems with one card entry, judged against ``now``."""
    if not isinstance(card, dict):
        return ["Card entry is not an object"]

    issues: list[str] = []

    if not is_non_empty_text(card.get("card_id")):
        issues.append("Missing card ID")
    if not is_non_empty_text(card.get("question")):
        issues.append("Empty question")
    if not is_non_empty_text(card.get("answer")):
        issues.append("Empty answer")

    for field in CARD_LOCATION_FIELDS:
        if not isinstance(card.get(field, ""), str):
            issues.append(f"Invalid {_FIELD_LABELS[field]}")

    difficulty = card.get("difficulty_level")
    if not is_int(difficulty) or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
        issues.append("Invalid difficulty level")

    if not isinstance(card.get("ai_generated"), bool | None):
        issues.append("Invalid AI-generated flag")
    for field, (low, high) in CARD_TELEMETRY.items():
        if not is_valid_telemetry(card.get(field), low, high):
            issues.append(f"Invalid {_FIELD_LABELS[field]}")

    for field in CARD_COUNTERS:
        value = card.get(field)
        if value is None:
            issues.append(f"Missing {_FIELD_LABELS[field]}")
        elif not is_int(value):
            issues.append(f"Invalid {_FIELD_LABELS[field]}")
        elif value < 0:
            issues.append(f"Negative {_FIELD_LABELS[field]}")

    last_reviewed = parse_timestamp(card.get("last_reviewed"))
    if last_reviewed is None:
        issues.append("Invalid last reviewed date")
    elif last_reviewed < now - PLAUSIBILITY_WINDOW:
        issues.append("Last reviewed date too old")

    next_due = parse_timestamp(card.get("next_review_due"))
    if next_due is None:
        issues.append("Invalid next review due date")
    elif next_due > now + PLAUSIBILITY_WINDOW:
        issues.append("Next review due date too far in future")

    return issues


def statistics_violations(
    document: dict[str, Any],
    tolerance: int = DEFAULT_STATS_TOLERANCE,
) -> list[str]:
    """Compare deck counters with per-card sums. Skipped when cards is not a list."""
    cards = document.get("cards")
    if not isinstance(cards, list):
        return []

    actual_total = 0
    actual_correct = 0
    for card in cards:
        if not isinstance(card, dict):
            continue
        correct = card.get("correct_count")
        incorrect = card.get("incorrect_count")
        correct = correct if is_int(correct) else 0
        incorrect = incorrect if is_int(incorrect) else 0
        actual_total += correct + incorrect
        actual_correct += correct

    issues: list[str] = []
    total = document.get("total_reviews")
    correct_reviews = document.get("correct_reviews")
    total = total if is_int(total) else 0
    correct_reviews = correct_reviews if is_int(correct_reviews) else 0

    if abs(total - actual_total) > tolerance:
        issues.append(f"Total reviews mismatch: deck={total}, calculated={actual_total}")
    if abs(correct_reviews - actual_correct) > tolerance:
        issues.append(
            f"Correct reviews mismatch: deck={correct_reviews}, calculated={actual_correct}"
        )
    return issues


def schema_violations(document: dict[str, Any]) -> list[str]:
    """Whatever keeps the document from loading as a :class:`Deck`, in the read path's terms."""
    try:
        Deck.from_document(document)
    except DataIntegrityError as exc:
        return [f"Schema: {violation}" for violation in exc.violations]
    return []


def ensure_writable(deck: Deck, card: Card, now: datetime) -> None:
    """Check a mutated deck and the card that changed before they are persisted.

    Other cards are not re-validated here, so a stale neighbour never blocks
    a review.

    Raises:
        DataIntegrityError: Listing every violated rule; nothing should be written.
    """
    document = deck.to_document()
    violations = deck_violations(document)
    card_issues = card_violations(card.model_dump(mode="json"), now)
    violations.extend(f"card {card.card_id}: {issue}" for issue in card_issues)
    if violations:
        raise DataIntegrityError(
            f"Deck {deck.deck_id} failed validation before write",
            violations,
            context={"deck_id": deck.deck_id, "card_id": card.card_id},
        )
