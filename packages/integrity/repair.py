"""Normalization of damaged deck documents.

Only the offending field is touched. Question and answer text is never
rewritten and cards are never dropped, so a repaired deck keeps all content.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from packages.integrity.rules import (
    CARD_COUNTERS,
    CARD_LOCATION_FIELDS,
    CARD_TELEMETRY,
    DECK_COUNTERS,
    PLAUSIBILITY_WINDOW,
    has_invalid_optional,
    is_int,
    is_non_empty_text,
    is_valid_telemetry,
    parse_timestamp,
)
from packages.srs.models import (
    DEFAULT_DIFFICULTY,
    DEFAULT_EASY_BONUS,
    DEFAULT_INTERVAL_MODIFIER,
    DEFAULT_SECTION,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    new_id,
)

DEFAULT_COURSE = "uncategorized"


def _iso(value: datetime) -> str:
    return value.isoformat()


def _repair_counter(target: dict[str, Any], field: str, changes: list[str], prefix: str) -> None:
    value = target.get(field)
    if not is_int(value) or value < 0:
        target[field] = 0
        changes.append(f"{prefix}{field}: {value!r} -> 0")


def _repair_card(
    card: dict[str, Any],
    now: datetime,
    fallback_reviewed: datetime,
    changes: list[str],
) -> None:
    card_id = card.get("card_id")
    if not is_non_empty_text(card_id):
        card_id = new_id()
        card["card_id"] = card_id
        changes.append(f"card {card_id}: assigned card_id")
    prefix = f"card {card_id}: "

    difficulty = card.get("difficulty_level")
    if not is_int(difficulty) or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
        card["difficulty_level"] = DEFAULT_DIFFICULTY
        changes.append(f"{prefix}difficulty_level: {difficulty!r} -> {DEFAULT_DIFFICULTY}")

    for field in CARD_LOCATION_FIELDS:
        value = card.get(field, "")
        if not isinstance(value, str):
            card[field] = DEFAULT_SECTION
            changes.append(f"{prefix}{field}: {value!r} -> {DEFAULT_SECTION!r}")

    flag = card.get("ai_generated")
    if not isinstance(flag, bool | None):
        card["ai_generated"] = None
        changes.append(f"{prefix}ai_generated: {flag!r} -> None")
    for field, (low, high) in CARD_TELEMETRY.items():
        value = card.get(field)
        if not is_valid_telemetry(value, low, high):
            card[field] = None
            changes.append(f"{prefix}{field}: {value!r} -> None")

    for field in CARD_COUNTERS:
        _repair_counter(card, field, changes, prefix)

    last_reviewed = parse_timestamp(card.get("last_reviewed"))
    if last_reviewed is None:
        card["last_reviewed"] = _iso(fallback_reviewed)
        changes.append(f"{prefix}last_reviewed: missing -> {card['last_reviewed']}")
    elif last_reviewed < now - PLAUSIBILITY_WINDOW:
        card["last_reviewed"] = _iso(now)
        changes.append(f"{prefix}last_reviewed: too old -> {card['last_reviewed']}")

    next_due = parse_timestamp(card.get("next_review_due"))
    if next_due is None:
        card["next_review_due"] = _iso(now)
        changes.append(f"{prefix}next_review_due: missing -> {card['next_review_due']}")
    elif next_due > now + PLAUSIBILITY_WINDOW:
        card["next_review_due"] = _iso(now + PLAUSIBILITY_WINDOW)
        changes.append(f"{prefix}next_review_due: too far -> {card['next_review_due']}")


def repair_document(document: dict[str, Any], now: datetime) -> tuple[dict[str, Any], list[str]]:
    """Return a repaired copy of ``document`` and a description of each change.

    An empty change list means the document needs no write. Running the
    repair on its own output yields no further changes.
    """
    repaired = copy.deepcopy(document)
    changes: list[str] = []

    if not isinstance(repaired.get("cards"), list):
        changes.append(f"cards: {type(repaired.get('cards')).__name__} -> []")
        repaired["cards"] = []

    for field in DECK_COUNTERS:
        _repair_counter(repaired, field, changes, "")
    if repaired["correct_reviews"] > repaired["total_reviews"]:
        changes.append(
            f"correct_reviews: {repaired['correct_reviews']} -> {repaired['total_reviews']}"
        )
        repaired["correct_reviews"] = repaired["total_reviews"]

    course_id = repaired.get("course_id")
    if not is_non_empty_text(course_id):
        repaired["course_id"] = DEFAULT_COURSE
        changes.append(f"course_id: {course_id!r} -> {DEFAULT_COURSE!r}")
    description = repaired.get("description", "")
    if not isinstance(description, str):
        repaired["description"] = ""
        changes.append(f"description: {description!r} -> ''")

    if has_invalid_optional(repaired, "interval_modifier", 0.0):
        modifier = repaired["interval_modifier"]
        repaired["interval_modifier"] = DEFAULT_INTERVAL_MODIFIER
        changes.append(f"interval_modifier: {modifier!r} -> {DEFAULT_INTERVAL_MODIFIER}")
    if has_invalid_optional(repaired, "easy_bonus", 1.0):
        bonus = repaired["easy_bonus"]
        repaired["easy_bonus"] = DEFAULT_EASY_BONUS
        changes.append(f"easy_bonus: {bonus!r} -> {DEFAULT_EASY_BONUS}")

    for field in ("created_at", "updated_at"):
        if parse_timestamp(repaired.get(field)) is None:
            repaired[field] = _iso(now)
            changes.append(f"{field}: missing -> {repaired[field]}")

    created_at = parse_timestamp(repaired["created_at"])
    if created_at is not None and now - PLAUSIBILITY_WINDOW <= created_at <= now:
        fallback_reviewed = created_at
    else:
        fallback_reviewed = now

    for card in repaired["cards"]:
        # Non-object entries are reported by the checker and left in place.
        if isinstance(card, dict):
            _repair_card(card, now, fallback_reviewed, changes)

    return repaired, changes
