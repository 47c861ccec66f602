"""Deck integrity checking and repair."""

from packages.integrity.checker import (
    CardIssue,
    DeckIssue,
    IntegrityChecker,
    IntegrityReport,
    build_recommendations,
)
from packages.integrity.repair import repair_document
from packages.integrity.rules import (
    PLAUSIBILITY_WINDOW,
    card_violations,
    deck_violations,
    ensure_writable,
    statistics_violations,
)

__all__ = [
    "PLAUSIBILITY_WINDOW",
    "CardIssue",
    "DeckIssue",
    "IntegrityChecker",
    "IntegrityReport",
    "build_recommendations",
    "card_violations",
    "deck_violations",
    "ensure_writable",
    "repair_document",
    "statistics_violations",
]
