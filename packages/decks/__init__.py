"""Deck and card management."""

from packages.decks.service import (
    BatchAddResult,
    ChapterContent,
    DeckService,
    GenerationResult,
)

__all__ = [
    "BatchAddResult",
    "ChapterContent",
    "DeckService",
    "GenerationResult",
]
