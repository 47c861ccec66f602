"""Tests for due-card selection."""

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest

from packages.common.exceptions import AuthorizationError, NotFoundError, ValidationError
from packages.review.selector import DueCardSelector
from packages.store.client import StoreClient
from packages.store.memory import InMemoryDeckStore
from tests.factories import NOW, FrozenClock, make_card


@pytest.fixture
def selector(store: StoreClient, clock: FrozenClock) -> DueCardSelector:
    return DueCardSelector(store, clock=clock)


class TestGetDueCards:
    """Tests for DueCardSelector.get_due_cards."""

    async def test_returns_only_due_cards(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        await deck_factory(
            cards=[
                make_card(card_id="due", next_review_due=NOW - timedelta(minutes=5)),
                make_card(card_id="exact", question="Q2", next_review_due=NOW),
                make_card(card_id="later", question="Q3", next_review_due=NOW + timedelta(days=2)),
            ]
        )

        result = await selector.get_due_cards("user-1")

        assert {card.card_id for card in result.due_cards} == {"due", "exact"}
        assert result.total_due == 2

    async def test_sorted_earliest_first_across_decks(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        await deck_factory(
            title="A",
            cards=[make_card(card_id="a1", next_review_due=NOW - timedelta(hours=1))],
        )
        await deck_factory(
            title="B",
            cards=[
                make_card(card_id="b1", next_review_due=NOW - timedelta(days=3)),
                make_card(card_id="b2", question="Q", next_review_due=NOW - timedelta(hours=5)),
            ],
        )

        result = await selector.get_due_cards("user-1")

        assert [card.card_id for card in result.due_cards] == ["b1", "b2", "a1"]
        dues = [card.next_review_due for card in result.due_cards]
        assert dues == sorted(dues)

    async def test_joined_with_deck_metadata(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        deck = await deck_factory(title="Chemistry", course_id="chem-101", cards=[make_card()])

        result = await selector.get_due_cards("user-1")

        card = result.due_cards[0]
        assert card.deck_id == deck.deck_id
        assert card.deck_title == "Chemistry"
        assert card.course_id == "chem-101"

    async def test_limit_truncates_but_total_counts_all(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        cards = [
            make_card(card_id=f"c{i}", question=f"Q{i}", next_review_due=NOW - timedelta(hours=i))
            for i in range(1, 8)
        ]
        await deck_factory(cards=cards)

        result = await selector.get_due_cards("user-1", limit=3)

        assert len(result.due_cards) == 3
        assert result.total_due == 7
        assert [card.card_id for card in result.due_cards] == ["c7", "c6", "c5"]

    async def test_scoped_to_owner(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        await deck_factory(user_id="someone-else", cards=[make_card()])

        result = await selector.get_due_cards("user-1")

        assert result.due_cards == []
        assert result.total_due == 0

    async def test_filters_by_course(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        await deck_factory(course_id="math", cards=[make_card(card_id="m")])
        await deck_factory(course_id="history", cards=[make_card(card_id="h")])

        result = await selector.get_due_cards("user-1", course_id="math")

        assert [card.card_id for card in result.due_cards] == ["m"]

    async def test_filters_by_deck(
        self,
        selector: DueCardSelector,
        deck_factory: Callable[..., Any],
    ) -> None:
        wanted = await deck_factory(cards=[make_card(card_id="wanted")])
        await deck_factory(cards=[make_card(card_id="other")])

        result = await selector.get_due_cards("user-1", deck_id=wanted.deck_id)

        assert [card.card_id for card in result.due_cards] == ["wanted"]

    async def test_unknown_deck(self, selector: DueCardSelector) -> None:
        with pytest.raises(NotFoundError):
            await selector.get_due_cards("user-1", deck_id="missing")

    async def test_malformed_cards_skipped(
        self,
        selector: DueCardSelector,
        memory_store: InMemoryDeckStore,
        deck_factory: Callable[..., Any],
    ) -> None:
        deck = await deck_factory(cards=[make_card(card_id="good")])
        document = await memory_store.get(deck.deck_id, "user-1")
        assert document is not None
        cards = [
            *document["cards"],
            "not a card",
            {"card_id": "no-question", "answer": "A", "next_review_due": NOW.isoformat()},
            {**document["cards"][0], "card_id": "bad-level", "difficulty_level": 9},
        ]
        await memory_store.update(deck.deck_id, "user-1", {"cards": cards})

        result = await selector.get_due_cards("user-1")

        assert [card.card_id for card in result.due_cards] == ["good"]

    async def test_read_only(
        self,
        selector: DueCardSelector,
        memory_store: InMemoryDeckStore,
        deck_factory: Callable[..., Any],
    ) -> None:
        deck = await deck_factory(cards=[make_card()])
        before = await memory_store.get(deck.deck_id, "user-1")

        await selector.get_due_cards("user-1")

        assert await memory_store.get(deck.deck_id, "user-1") == before


class TestGetDueCardsValidation:
    """Argument checks."""

    @pytest.mark.parametrize("limit", [0, -1, 501])
    async def test_limit_out_of_range(self, selector: DueCardSelector, limit: int) -> None:
        with pytest.raises(ValidationError):
            await selector.get_due_cards("user-1", limit=limit)

    @pytest.mark.parametrize("user_id", ["", "undefined", "null"])
    async def test_placeholder_user_rejected(self, selector: DueCardSelector, user_id: str) -> None:
        with pytest.raises(ValidationError):
            await selector.get_due_cards(user_id)

    async def test_requester_must_match(self, selector: DueCardSelector) -> None:
        with pytest.raises(AuthorizationError):
            await selector.get_due_cards("user-1", requester_id="user-2")
