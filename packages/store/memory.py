"""Process-local card store used for development and tests."""

from __future__ import annotations

import copy
from typing import Any

from packages.common.exceptions import ConflictError, NotFoundError, ValidationError
from packages.store.base import DeckFilter


class InMemoryDeckStore:
    """Dict-backed store. Every read and write deep-copies, like a real round trip."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._documents)

    async def get(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        document = self._documents.get((deck_id, user_id))
        return copy.deepcopy(document) if document is not None else None

    async def scan(self, deck_filter: DeckFilter) -> list[dict[str, Any]]:
        results = []
        for (_, user_id), document in self._documents.items():
            if deck_filter.user_id is not None and user_id != deck_filter.user_id:
                continue
            course_id = deck_filter.course_id
            if course_id is not None and document.get("course_id") != course_id:
                continue
            results.append(copy.deepcopy(document))
        return results

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        deck_id = document.get("deck_id")
        user_id = document.get("user_id")
        if not isinstance(deck_id, str) or not isinstance(user_id, str):
            raise ValidationError("Deck document requires string deck_id and user_id")
        key = (deck_id, user_id)
        if key in self._documents:
            raise ConflictError(f"Deck already exists: {deck_id}", context={"deck_id": deck_id})
        self._documents[key] = copy.deepcopy(document)
        return copy.deepcopy(document)

    async def update(self, deck_id: str, user_id: str, fields: dict[str, Any]) -> None:
        document = self._documents.get((deck_id, user_id))
        if document is None:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})
        document.update(copy.deepcopy(fields))

    async def delete(self, deck_id: str, user_id: str) -> None:
        if self._documents.pop((deck_id, user_id), None) is None:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})

    async def ping(self) -> bool:
        return True
