"""Due-card selection across a user's decks."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from packages.common.exceptions import NotFoundError
from packages.common.logging import get_logger
from packages.common.validation import check_range, check_requester, require_id
from packages.srs.models import DueCard, DueCardsResult, utcnow
from packages.store.base import DeckFilter
from packages.store.client import StoreClient

logger = get_logger(module=__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 500

_NEVER_SCHEDULED = datetime.min.replace(tzinfo=UTC)


def _sort_key(card: DueCard) -> tuple[int, datetime]:
    # Cards with no due time come first.
    if card.next_review_due is None:
        return (0, _NEVER_SCHEDULED)
    return (1, card.next_review_due)


class DueCardSelector:
    """Builds the review queue. Read-only; independent of the review write path."""

    def __init__(self, store: StoreClient, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def _due_cards_in(self, document: dict[str, Any], now: datetime) -> list[DueCard]:
        deck_id = str(document.get("deck_id") or "")
        cards = document.get("cards")
        if not isinstance(cards, list):
            logger.debug("deck_without_card_list", deck_id=deck_id)
            return []

        joined = {
            "deck_id": deck_id,
            "deck_title": str(document.get("title") or ""),
            "course_id": str(document.get("course_id") or ""),
        }
        due: list[DueCard] = []
        for raw in cards:
            if not isinstance(raw, dict):
                logger.warning("malformed_card_skipped", deck_id=deck_id, reason="not an object")
                continue
            try:
                card = DueCard.model_validate({**raw, **joined})
            except PydanticValidationError as exc:
                logger.warning(
                    "malformed_card_skipped",
                    deck_id=deck_id,
                    card_id=raw.get("card_id"),
                    reason=str(exc.errors()[0]["msg"]) if exc.errors() else "invalid",
                )
                continue
            if card.is_due(now):
                due.append(card)
        return due

    async def get_due_cards(
        self,
        user_id: str,
        deck_id: str | None = None,
        course_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        requester_id: str | None = None,
    ) -> DueCardsResult:
        """Return due cards, earliest first, and the total number due.

        Raises:
            ValidationError: Empty user id or limit outside 1-500.
            AuthorizationError: Requester is not ``user_id``.
            NotFoundError: ``deck_id`` given but no such deck for the user.
        """
        user_id = require_id("user_id", user_id)
        check_range("limit", limit, 1, MAX_LIMIT)
        check_requester(requester_id, user_id)

        if deck_id is not None:
            deck_id = require_id("deck_id", deck_id)
            document = await self.store.get_document(deck_id, user_id)
            if document is None or document.get("user_id", user_id) != user_id:
                raise NotFoundError(
                    f"Deck not found: {deck_id}",
                    context={"deck_id": deck_id, "user_id": user_id},
                )
            documents = [document]
        else:
            documents = await self.store.scan_documents(
                DeckFilter(user_id=user_id, course_id=course_id)
            )

        now = self.clock()
        due: list[DueCard] = []
        for document in documents:
            due.extend(self._due_cards_in(document, now))
        due.sort(key=_sort_key)

        logger.debug(
            "due_cards_selected", user_id=user_id, decks=len(documents), total_due=len(due)
        )
        return DueCardsResult(due_cards=due[:limit], total_due=len(due))
