"""Integrity scans and repairs over stored deck documents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from packages.common.exceptions import MemoryDeckError
from packages.common.logging import get_logger
from packages.integrity.repair import repair_document
from packages.integrity.rules import (
    DEFAULT_STATS_TOLERANCE,
    card_violations,
    deck_violations,
    is_non_empty_text,
    schema_violations,
    statistics_violations,
)
from packages.srs.models import utcnow
from packages.store.base import DeckFilter

if TYPE_CHECKING:
    from packages.protection.backups import BackupRing
    from packages.store.client import StoreClient

logger = get_logger(module=__name__)


@dataclass
class DeckIssue:
    """Problems found on one deck."""

    deck_id: str
    user_id: str | None
    issues: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"deck_id": self.deck_id, "user_id": self.user_id, "issues": self.issues}


@dataclass
class CardIssue:
    """Problems found on one card."""

    deck_id: str
    card_id: str | None
    issues: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"deck_id": self.deck_id, "card_id": self.card_id, "issues": self.issues}


@dataclass
class IntegrityReport:
    """Result of an integrity scan."""

    total_decks: int = 0
    total_cards: int = 0
    corrupted_decks: list[DeckIssue] = field(default_factory=list)
    invalid_cards: list[CardIssue] = field(default_factory=list)
    inconsistent_stats: list[DeckIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    checked_at: datetime | None = None

    @property
    def issue_count(self) -> int:
        return len(self.corrupted_decks) + len(self.invalid_cards) + len(self.inconsistent_stats)

    @property
    def is_healthy(self) -> bool:
        return self.issue_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_decks": self.total_decks,
            "total_cards": self.total_cards,
            "corrupted_decks": [issue.to_dict() for issue in self.corrupted_decks],
            "invalid_cards": [issue.to_dict() for issue in self.invalid_cards],
            "inconsistent_stats": [issue.to_dict() for issue in self.inconsistent_stats],
            "issue_count": self.issue_count,
            "recommendations": self.recommendations,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


def build_recommendations(report: IntegrityReport) -> list[str]:
    recommendations: list[str] = []
    if report.corrupted_decks:
        recommendations.append(
            f"Found {len(report.corrupted_decks)} corrupted decks - consider restoration or cleanup"
        )
    if report.invalid_cards:
        recommendations.append(
            f"Found {len(report.invalid_cards)} problematic cards - review and fix data validation"
        )
    if report.inconsistent_stats:
        recommendations.append(
            f"Found {len(report.inconsistent_stats)} decks with statistical inconsistencies"
            " - recommend stats recalculation"
        )
    if report.total_cards == 0 and report.total_decks > 0:
        recommendations.append("Found decks with no cards - consider removing empty decks")
    if report.issue_count == 0:
        recommendations.append("All memory card data appears to be in good condition")
    return recommendations


def _deck_label(document: dict[str, Any]) -> str:
    deck_id = document.get("deck_id")
    return deck_id if isinstance(deck_id, str) and deck_id else "<missing>"


class IntegrityChecker:
    """Scans decks for invariant violations and repairs what can be repaired."""

    def __init__(
        self,
        store: StoreClient,
        *,
        backups: BackupRing | None = None,
        stats_tolerance: int = DEFAULT_STATS_TOLERANCE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.backups = backups
        self.stats_tolerance = stats_tolerance
        self.clock = clock

    async def _scan(self, user_id: str | None) -> list[dict[str, Any]]:
        return await self.store.scan_documents(DeckFilter(user_id=user_id))

    def inspect(self, documents: list[dict[str, Any]]) -> IntegrityReport:
        """Build a report for already-loaded documents."""
        now = self.clock()
        report = IntegrityReport(total_decks=len(documents), checked_at=now)

        for document in documents:
            deck_id = _deck_label(document)
            user_id = document.get("user_id") if isinstance(document.get("user_id"), str) else None

            deck_issues = deck_violations(document)
            if deck_issues:
                report.corrupted_decks.append(DeckIssue(deck_id, user_id, deck_issues))

            cards = document.get("cards")
            if not isinstance(cards, list):
                continue

            report.total_cards += len(cards)
            flagged = bool(deck_issues)
            for card in cards:
                card_issues = card_violations(card, now)
                if card_issues:
                    flagged = True
                    card_id = card.get("card_id") if isinstance(card, dict) else None
                    if not isinstance(card_id, str):
                        card_id = None
                    report.invalid_cards.append(CardIssue(deck_id, card_id, card_issues))

            # A deck the read path would reject is never reported as clean.
            if not flagged:
                schema_issues = schema_violations(document)
                if schema_issues:
                    report.corrupted_decks.append(DeckIssue(deck_id, user_id, schema_issues))

            stats_issues = statistics_violations(document, self.stats_tolerance)
            if stats_issues:
                report.inconsistent_stats.append(DeckIssue(deck_id, user_id, stats_issues))

        report.recommendations = build_recommendations(report)
        return report

    async def check(self, user_id: str | None = None) -> IntegrityReport:
        """Scan one user's decks, or every deck when ``user_id`` is None."""
        documents = await self._scan(user_id)
        report = self.inspect(documents)
        logger.info(
            "integrity_check_completed",
            user_id=user_id,
            total_decks=report.total_decks,
            total_cards=report.total_cards,
            issue_count=report.issue_count,
        )
        return report

    async def repair(self, user_id: str | None = None) -> int:
        """Normalize damaged fields and persist the decks that changed.

        Each changed deck is snapshotted before it is written. A failed write
        is logged and skipped so one bad deck does not stop the pass.

        Returns:
            Number of decks written.
        """
        now = self.clock()
        repaired_count = 0

        for document in await self._scan(user_id):
            repaired, changes = repair_document(document, now)
            if not changes:
                continue

            deck_id = document.get("deck_id")
            owner = document.get("user_id")
            if not is_non_empty_text(deck_id) or not is_non_empty_text(owner):
                logger.warning("repair_skipped_unkeyed_deck", changes=changes)
                continue

            if self.backups is not None:
                self.backups.capture(owner, deck_id, "repair", document)

            fields = {
                key: value for key, value in repaired.items() if key not in ("deck_id", "user_id")
            }
            fields["updated_at"] = now.isoformat()
            try:
                await self.store.update(deck_id, owner, fields)
            except MemoryDeckError as exc:
                logger.error("deck_repair_failed", deck_id=deck_id, user_id=owner, error=str(exc))
                continue

            repaired_count += 1
            logger.info("deck_repaired", deck_id=deck_id, user_id=owner, changes=changes)

        logger.info("integrity_repair_completed", user_id=user_id, repaired_decks=repaired_count)
        return repaired_count
