"""Card store contract shared by all backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class DeckFilter:
    """Scan filter. ``None`` fields match everything."""

    user_id: str | None = None
    course_id: str | None = None


class DeckStore(Protocol):
    """Key-value document store holding one deck document per (deck_id, user_id).

    Documents are plain JSON-compatible dicts; backends never validate them.
    """

    async def get(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        """Return the stored document, or None when the key is absent."""
        ...

    async def scan(self, deck_filter: DeckFilter) -> list[dict[str, Any]]:
        """Return every document matching the filter."""
        ...

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document keyed by its deck_id and user_id."""
        ...

    async def update(self, deck_id: str, user_id: str, fields: dict[str, Any]) -> None:
        """Shallow-merge ``fields`` into the stored document."""
        ...

    async def delete(self, deck_id: str, user_id: str) -> None:
        """Remove the document."""
        ...

    async def ping(self) -> bool:
        """Return True when the backend is reachable."""
        ...
