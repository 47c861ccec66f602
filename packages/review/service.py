"""Review session handling: one submitted rating, one persisted deck update."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from packages.common.exceptions import NotFoundError, ValidationError
from packages.common.logging import get_logger, log_context
from packages.common.validation import (
    check_fraction,
    check_non_negative,
    check_requester,
    require_id,
)
from packages.integrity.rules import ensure_writable
from packages.protection.service import DataProtection
from packages.srs.models import Card, ReviewResult, utcnow
from packages.srs.scheduler import adjust_difficulty, is_correct_rating, parse_rating, schedule
from packages.store.client import StoreClient

logger = get_logger(module=__name__)


def _fold_thinking_time(card: Card, thinking_time: float | None) -> float | None:
    """Running average over every review that reported a thinking time."""
    if thinking_time is None:
        return card.average_thinking_time
    if card.average_thinking_time is None or card.review_count == 0:
        return round(thinking_time, 3)
    previous = card.review_count
    total = card.average_thinking_time * previous + thinking_time
    return round(total / (previous + 1), 3)


class ReviewService:
    """Applies a review to a card and persists the deck.

    Not idempotent: submitting the same review twice counts it twice.
    """

    def __init__(
        self,
        store: StoreClient,
        protection: DataProtection,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.protection = protection
        self.clock = clock

    async def submit_review(
        self,
        deck_id: str,
        user_id: str,
        card_id: str,
        rating: int,
        is_correct: bool | None = None,
        thinking_time: float | None = None,
        confidence: float | None = None,
        requester_id: str | None = None,
    ) -> ReviewResult:
        """Record one review.

        Raises:
            ValidationError: Bad rating, telemetry or identifiers.
            AuthorizationError: Requester is not the deck owner.
            NotFoundError: Deck or card does not exist; nothing is written.
            DataIntegrityError: The updated deck would violate an invariant.
        """
        deck_id = require_id("deck_id", deck_id)
        user_id = require_id("user_id", user_id)
        card_id = require_id("card_id", card_id)
        try:
            parsed_rating = parse_rating(rating)
        except ValueError as exc:
            raise ValidationError(str(exc), context={"field": "rating", "value": rating}) from exc
        thinking_time = check_non_negative("thinking_time", thinking_time)
        confidence = check_fraction("confidence", confidence)
        check_requester(requester_id, user_id)

        with log_context(user_id=user_id, deck_id=deck_id, card_id=card_id):
            deck = await self.store.load_deck(deck_id, user_id)
            card = deck.find_card(card_id)
            if card is None:
                raise NotFoundError(
                    f"Card not found: {card_id}",
                    context={"deck_id": deck_id, "card_id": card_id},
                )

            pre_image = deck.to_document()
            now = self.clock()
            correct = is_correct_rating(parsed_rating) if is_correct is None else is_correct
            scheduled = schedule(
                parsed_rating,
                card.repetition_count,
                deck.interval_modifier,
                deck.easy_bonus,
                now=now,
            )

            updated_card = Card.model_validate(
                {
                    **card.model_dump(),
                    "last_reviewed": now,
                    "next_review_due": scheduled.next_review_due,
                    "repetition_count": scheduled.repetition_count,
                    "difficulty_level": adjust_difficulty(
                        card.difficulty_level, parsed_rating, correct
                    ),
                    "correct_count": card.correct_count + (1 if correct else 0),
                    "incorrect_count": card.incorrect_count + (0 if correct else 1),
                    "average_thinking_time": _fold_thinking_time(card, thinking_time),
                    "last_confidence": (
                        confidence if confidence is not None else card.last_confidence
                    ),
                }
            )
            cards = [updated_card if c.card_id == card_id else c for c in deck.cards]
            updated_deck = deck.model_copy(
                update={
                    "cards": cards,
                    "total_reviews": deck.total_reviews + 1,
                    "correct_reviews": deck.correct_reviews + (1 if correct else 0),
                    "updated_at": now,
                }
            )
            ensure_writable(updated_deck, updated_card, now)

            document = updated_deck.to_document()
            fields = {
                "cards": document["cards"],
                "total_reviews": document["total_reviews"],
                "correct_reviews": document["correct_reviews"],
                "updated_at": document["updated_at"],
            }
            self.protection.backups.capture(user_id, deck_id, "review", pre_image)
            await self.store.update(deck_id, user_id, fields)
            self.protection.monitor.after_write(
                user_id,
                deck_id,
                {
                    "total_reviews": fields["total_reviews"],
                    "correct_reviews": fields["correct_reviews"],
                    "updated_at": fields["updated_at"],
                },
            )

            logger.info(
                "review_submitted",
                rating=int(parsed_rating),
                is_correct=correct,
                repetition_count=updated_card.repetition_count,
                interval_days=scheduled.interval_days,
            )

        return ReviewResult(
            deck_id=deck_id,
            card_id=card_id,
            is_correct=correct,
            next_review_due=scheduled.next_review_due,
            repetition_count=updated_card.repetition_count,
            difficulty_level=updated_card.difficulty_level,
            interval_days=scheduled.interval_days,
            accuracy=updated_card.accuracy,
            deck_accuracy=updated_deck.accuracy,
        )
