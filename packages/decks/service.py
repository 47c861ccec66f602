"""Deck and card management on top of the card store."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from packages.common.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    ContentGenerationError,
    DataIntegrityError,
    NotFoundError,
    ValidationError,
)
from packages.common.logging import get_logger, log_context
from packages.common.validation import check_range, check_requester, require_id, require_text
from packages.content.generator import ContentGenerator, TemplateContentGenerator
from packages.protection.backups import BackupRecord
from packages.protection.service import DataProtection
from packages.srs.models import (
    DEFAULT_DIFFICULTY,
    DEFAULT_SECTION,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    Card,
    CardDraft,
    Deck,
    normalize_card_text,
    utcnow,
)
from packages.store.base import DeckFilter
from packages.store.client import StoreClient

logger = get_logger(module=__name__)

NEW_CARD_DELAY = timedelta(days=1)
MAX_GENERATED_CARDS = 100
MAX_ALTERNATIVES = 10
STATUS_RECENT_BACKUPS = 5

# AI collaborator failures that fall back to template extraction.
SOFT_GENERATION_ERRORS = (ContentGenerationError, ConfigurationError)


class ChapterContent(BaseModel):
    """Source material for deck generation."""

    chapter_id: str = Field(..., min_length=1)
    title: str = ""
    content: str = ""
    section_id: str | None = None


@dataclass
class BatchAddResult:
    """Outcome of a batch card insert."""

    added: list[Card] = field(default_factory=list)
    skipped_duplicates: int = 0


@dataclass
class GenerationResult:
    """A generated deck plus how its cards were produced."""

    deck: Deck
    cards_generated: int
    total_candidates: int
    ai_chapters: int = 0
    template_chapters: int = 0


class DeckService:
    """Owner-scoped deck and card operations.

    Every mutation snapshots the stored pre-image into the backup ring before
    writing and schedules background verification afterwards.
    """

    def __init__(
        self,
        store: StoreClient,
        protection: DataProtection,
        generator: ContentGenerator | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.protection = protection
        self.generator = generator or TemplateContentGenerator()
        self.fallback = TemplateContentGenerator()
        self.clock = clock

    def _new_card(self, draft: CardDraft, now: datetime) -> Card:
        return Card(
            question=draft.question,
            answer=draft.answer,
            chapter_id=draft.chapter_id or DEFAULT_SECTION,
            section_id=draft.section_id or DEFAULT_SECTION,
            difficulty_level=draft.difficulty_level,
            last_reviewed=now,
            next_review_due=now + NEW_CARD_DELAY,
            ai_generated=draft.ai_generated,
        )

    async def _persist(self, deck: Deck, operation: str, fields: dict[str, Any]) -> None:
        """Snapshot, write the changed top-level fields, then schedule verification."""
        self.protection.backups.capture(deck.user_id, deck.deck_id, operation, deck.to_document())
        await self.store.update(deck.deck_id, deck.user_id, fields)
        self.protection.monitor.after_write(
            deck.user_id,
            deck.deck_id,
            {"updated_at": fields["updated_at"]},
        )

    async def _write_cards(self, deck: Deck, cards: list[Card], operation: str) -> Deck:
        now = self.clock()
        updated = deck.model_copy(update={"cards": cards, "updated_at": now})
        document = updated.to_document()
        await self._persist(
            deck,
            operation,
            {"cards": document["cards"], "updated_at": document["updated_at"]},
        )
        return updated

    async def create_deck(
        self,
        user_id: str,
        course_id: str,
        title: str,
        description: str | None = None,
        *,
        cards: list[Card] | None = None,
        requester_id: str | None = None,
    ) -> Deck:
        """Create an empty (or pre-filled) deck owned by ``user_id``."""
        user_id = require_id("user_id", user_id)
        course_id = require_id("course_id", course_id)
        title = require_text("title", title)
        check_requester(requester_id, user_id)

        now = self.clock()
        deck = Deck(
            user_id=user_id,
            course_id=course_id,
            title=title,
            description=description if description else f"Memory cards for {title}",
            cards=cards or [],
            created_at=now,
            updated_at=now,
        )
        await self.store.create(deck.to_document())
        self.protection.monitor.submit(user_id)
        logger.info(
            "deck_created",
            user_id=user_id,
            deck_id=deck.deck_id,
            course_id=course_id,
            cards=len(deck.cards),
        )
        return deck

    async def list_decks(
        self,
        user_id: str,
        *,
        course_id: str | None = None,
        requester_id: str | None = None,
    ) -> list[Deck]:
        """All of a user's decks. Documents that fail validation are skipped with a warning."""
        user_id = require_id("user_id", user_id)
        check_requester(requester_id, user_id)

        decks: list[Deck] = []
        for document in await self.store.scan_documents(
            DeckFilter(user_id=user_id, course_id=course_id)
        ):
            try:
                decks.append(Deck.from_document(document))
            except DataIntegrityError as exc:
                logger.warning(
                    "invalid_deck_skipped",
                    user_id=user_id,
                    deck_id=document.get("deck_id"),
                    violations=exc.violations,
                )
        return decks

    async def get_deck(
        self,
        deck_id: str,
        user_id: str,
        *,
        requester_id: str | None = None,
    ) -> Deck:
        deck_id = require_id("deck_id", deck_id)
        user_id = require_id("user_id", user_id)
        check_requester(requester_id, user_id)
        return await self.store.load_deck(deck_id, user_id)

    async def delete_deck(
        self,
        deck_id: str,
        user_id: str,
        *,
        requester_id: str | None = None,
    ) -> None:
        deck_id = require_id("deck_id", deck_id)
        user_id = require_id("user_id", user_id)
        check_requester(requester_id, user_id)

        document = await self.store.get_document(deck_id, user_id)
        if document is None:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})
        self.protection.backups.capture(user_id, deck_id, "delete_deck", document)
        await self.store.delete(deck_id, user_id)
        self.protection.monitor.submit(user_id)
        logger.info("deck_deleted", user_id=user_id, deck_id=deck_id)

    async def add_card(
        self,
        deck_id: str,
        user_id: str,
        draft: CardDraft,
        *,
        requester_id: str | None = None,
    ) -> Card:
        """Append one card.

        Raises:
            ConflictError: A card with the same question and answer already exists.
        """
        deck = await self.get_deck(deck_id, user_id, requester_id=requester_id)
        duplicate = deck.find_duplicate(draft.question, draft.answer)
        if duplicate is not None:
            raise ConflictError(
                "A card with this question and answer already exists in the deck",
                context={"deck_id": deck.deck_id, "existing_card_id": duplicate.card_id},
            )

        card = self._new_card(draft, self.clock())
        await self._write_cards(deck, [*deck.cards, card], "add_card")
        logger.info("card_added", user_id=deck.user_id, deck_id=deck.deck_id, card_id=card.card_id)
        return card

    async def add_cards(
        self,
        deck_id: str,
        user_id: str,
        drafts: list[CardDraft],
        *,
        requester_id: str | None = None,
    ) -> BatchAddResult:
        """Append many cards, skipping duplicates of existing cards and of each other."""
        if not drafts:
            raise ValidationError("cards must be a non-empty list", context={"field": "cards"})
        deck = await self.get_deck(deck_id, user_id, requester_id=requester_id)

        now = self.clock()
        seen = {card.content_key for card in deck.cards}
        result = BatchAddResult()
        for draft in drafts:
            key = (normalize_card_text(draft.question), normalize_card_text(draft.answer))
            if key in seen:
                result.skipped_duplicates += 1
                continue
            seen.add(key)
            result.added.append(self._new_card(draft, now))

        if result.added:
            await self._write_cards(deck, [*deck.cards, *result.added], "add_cards")
        else:
            self.protection.monitor.submit(deck.user_id)
        logger.info(
            "cards_added",
            user_id=deck.user_id,
            deck_id=deck.deck_id,
            added=len(result.added),
            skipped_duplicates=result.skipped_duplicates,
        )
        return result

    async def update_card(
        self,
        deck_id: str,
        user_id: str,
        card_id: str,
        *,
        question: str | None = None,
        answer: str | None = None,
        difficulty_level: int | None = None,
        requester_id: str | None = None,
    ) -> Card:
        """Edit card content or difficulty. Scheduling state is left alone."""
        card_id = require_id("card_id", card_id)
        if question is not None:
            question = require_text("question", question)
        if answer is not None:
            answer = require_text("answer", answer)
        if difficulty_level is not None:
            check_range("difficulty_level", difficulty_level, MIN_DIFFICULTY, MAX_DIFFICULTY)

        deck = await self.get_deck(deck_id, user_id, requester_id=requester_id)
        card = deck.find_card(card_id)
        if card is None:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

        changes: dict[str, Any] = {}
        if question is not None:
            changes["question"] = question
        if answer is not None:
            changes["answer"] = answer
        if difficulty_level is not None:
            changes["difficulty_level"] = difficulty_level
        updated_card = card.model_copy(update=changes)

        duplicate = deck.find_duplicate(
            updated_card.question, updated_card.answer, exclude_id=card_id
        )
        if duplicate is not None:
            raise ConflictError(
                "A card with this question and answer already exists in the deck",
                context={"deck_id": deck.deck_id, "existing_card_id": duplicate.card_id},
            )

        cards = [updated_card if c.card_id == card_id else c for c in deck.cards]
        await self._write_cards(deck, cards, "update_card")
        logger.info("card_updated", user_id=deck.user_id, deck_id=deck.deck_id, card_id=card_id)
        return updated_card

    async def delete_card(
        self,
        deck_id: str,
        user_id: str,
        card_id: str,
        *,
        requester_id: str | None = None,
    ) -> None:
        card_id = require_id("card_id", card_id)
        deck = await self.get_deck(deck_id, user_id, requester_id=requester_id)
        if deck.find_card(card_id) is None:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

        cards = [c for c in deck.cards if c.card_id != card_id]
        await self._write_cards(deck, cards, "delete_card")
        logger.info("card_deleted", user_id=deck.user_id, deck_id=deck.deck_id, card_id=card_id)

    async def deck_status(
        self,
        deck_id: str,
        user_id: str,
        *,
        requester_id: str | None = None,
    ) -> dict[str, Any]:
        """Card counts, due counts and recent backups for one deck."""
        deck = await self.get_deck(deck_id, user_id, requester_id=requester_id)
        now = self.clock()
        due = [card for card in deck.cards if card.is_due(now)]
        next_due = min(
            (card.next_review_due for card in deck.cards if card.next_review_due is not None),
            default=None,
        )
        return {
            "deck_id": deck.deck_id,
            "title": deck.title,
            "course_id": deck.course_id,
            "total_cards": len(deck.cards),
            "due_cards": len(due),
            "new_cards": sum(1 for card in deck.cards if card.repetition_count == 0),
            "total_reviews": deck.total_reviews,
            "correct_reviews": deck.correct_reviews,
            "accuracy": deck.accuracy,
            "next_due": next_due.isoformat() if next_due else None,
            "recent_backups": [
                record.summary()
                for record in self.protection.backups.history(
                    deck.user_id, deck.deck_id, limit=STATUS_RECENT_BACKUPS
                )
            ],
        }

    async def _generate_for_chapter(
        self,
        chapter: ChapterContent,
        budget: int,
    ) -> tuple[list[CardDraft], bool]:
        """Try the configured generator, fall back to templates on any generation failure."""
        if self.generator.is_ai:
            try:
                drafts = await self.generator.generate_cards(chapter.content, chapter.title, budget)
                return drafts, True
            except SOFT_GENERATION_ERRORS as exc:
                logger.warning(
                    "content_generation_fallback",
                    chapter_id=chapter.chapter_id,
                    generator=self.generator.name,
                    error=str(exc),
                )
        drafts = await self.fallback.generate_cards(chapter.content, chapter.title, budget)
        return drafts, False

    async def generate_deck(
        self,
        user_id: str,
        course_id: str,
        title: str,
        chapters: list[ChapterContent],
        max_cards: int = MAX_GENERATED_CARDS,
        *,
        description: str | None = None,
        requester_id: str | None = None,
    ) -> GenerationResult:
        """Create a deck pre-filled with cards extracted from chapter content."""
        user_id = require_id("user_id", user_id)
        course_id = require_id("course_id", course_id)
        title = require_text("title", title)
        check_range("max_cards", max_cards, 1, MAX_GENERATED_CARDS)
        check_requester(requester_id, user_id)
        if not chapters:
            raise ValidationError(
                "chapters must be a non-empty list", context={"field": "chapters"}
            )

        now = self.clock()
        result_cards: list[Card] = []
        seen: set[tuple[str, str]] = set()
        total_candidates = 0
        ai_chapters = template_chapters = 0

        with log_context(user_id=user_id, course_id=course_id):
            for chapter in chapters:
                if len(result_cards) >= max_cards:
                    break
                drafts, from_ai = await self._generate_for_chapter(
                    chapter, max_cards - len(result_cards)
                )
                if from_ai:
                    ai_chapters += 1
                else:
                    template_chapters += 1
                total_candidates += len(drafts)
                for draft in drafts:
                    key = (normalize_card_text(draft.question), normalize_card_text(draft.answer))
                    if key in seen or len(result_cards) >= max_cards:
                        continue
                    seen.add(key)
                    located = draft.model_copy(
                        update={
                            "chapter_id": chapter.chapter_id,
                            "section_id": chapter.section_id,
                            "difficulty_level": DEFAULT_DIFFICULTY,
                        }
                    )
                    result_cards.append(self._new_card(located, now))

            deck = await self.create_deck(
                user_id,
                course_id,
                title,
                description,
                cards=result_cards,
            )
            logger.info(
                "deck_generated",
                deck_id=deck.deck_id,
                cards_generated=len(result_cards),
                total_candidates=total_candidates,
                ai_chapters=ai_chapters,
                template_chapters=template_chapters,
            )

        return GenerationResult(
            deck=deck,
            cards_generated=len(result_cards),
            total_candidates=total_candidates,
            ai_chapters=ai_chapters,
            template_chapters=template_chapters,
        )

    async def generate_alternatives(
        self,
        question: str,
        answer: str,
        count: int = 3,
    ) -> list[CardDraft]:
        """Alternative phrasings of a card; the template fallback yields at most four."""
        question = require_text("question", question)
        answer = require_text("answer", answer)
        check_range("count", count, 1, MAX_ALTERNATIVES)

        if self.generator.is_ai:
            try:
                return await self.generator.generate_alternatives(question, answer, count)
            except SOFT_GENERATION_ERRORS as exc:
                logger.warning(
                    "content_generation_fallback",
                    generator=self.generator.name,
                    error=str(exc),
                )
        return await self.fallback.generate_alternatives(question, answer, count)

    def backup_history(
        self,
        user_id: str,
        deck_id: str,
        limit: int,
        *,
        requester_id: str | None = None,
    ) -> list[BackupRecord]:
        user_id = require_id("user_id", user_id)
        deck_id = require_id("deck_id", deck_id)
        check_requester(requester_id, user_id)
        return self.protection.backups.history(user_id, deck_id, limit=limit)

    async def restore_deck(
        self,
        user_id: str,
        deck_id: str,
        timestamp: datetime,
        *,
        requester_id: str | None = None,
    ) -> Deck:
        """Write a backed-up deck document back to the store.

        The current document, if any, is itself snapshotted first so a restore
        can be undone.

        Raises:
            NotFoundError: No backup at ``timestamp``.
            DataIntegrityError: The backup payload is not a valid deck.
        """
        user_id = require_id("user_id", user_id)
        deck_id = require_id("deck_id", deck_id)
        check_requester(requester_id, user_id)

        payload = self.protection.backups.restore(user_id, deck_id, timestamp)
        restored = Deck.from_document(payload)
        if restored.user_id != user_id or restored.deck_id != deck_id:
            raise AuthorizationError(
                "Backup does not belong to this deck",
                context={"deck_id": deck_id, "user_id": user_id},
            )

        now = self.clock()
        restored = restored.model_copy(update={"updated_at": now})
        document = restored.to_document()
        current = await self.store.get_document(deck_id, user_id)
        if current is None:
            await self.store.create(document)
        else:
            self.protection.backups.capture(user_id, deck_id, "restore", current)
            fields = {k: v for k, v in document.items() if k not in ("deck_id", "user_id")}
            await self.store.update(deck_id, user_id, fields)
        self.protection.monitor.after_write(
            user_id, deck_id, {"updated_at": document["updated_at"]}
        )

        logger.info(
            "deck_restored",
            user_id=user_id,
            deck_id=deck_id,
            backup_timestamp=timestamp.isoformat(),
        )
        return restored
