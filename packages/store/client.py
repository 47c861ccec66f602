"""Store access with bounded time, bounded read retries and boundary validation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from packages.common.config import Settings, get_settings
from packages.common.exceptions import AuthorizationError, NotFoundError, TransientStoreError
from packages.common.logging import get_logger
from packages.common.retry import retry_async
from packages.srs.models import Deck
from packages.store.base import DeckFilter, DeckStore

logger = get_logger(module=__name__)

T = TypeVar("T")


class StoreClient:
    """Wraps a :class:`DeckStore` backend.

    Every call is bounded by ``store_timeout_seconds``; a timeout surfaces as
    :class:`TransientStoreError`. Reads are retried with exponential backoff,
    writes are attempted exactly once.
    """

    def __init__(self, store: DeckStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def _bounded(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self.settings.store_timeout_seconds):
                return await operation()
        except TimeoutError as exc:
            raise TransientStoreError(
                f"Store call timed out: {label}",
                context={"operation": label, "timeout": self.settings.store_timeout_seconds},
            ) from exc

    async def _read(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry_async(
            lambda: self._bounded(label, operation),
            attempts=self.settings.store_read_attempts,
            base_delay=self.settings.store_retry_backoff_seconds,
            retry_on=(TransientStoreError,),
            label=label,
        )

    async def get_document(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        return await self._read("store_get", lambda: self.store.get(deck_id, user_id))

    async def scan_documents(self, deck_filter: DeckFilter) -> list[dict[str, Any]]:
        return await self._read("store_scan", lambda: self.store.scan(deck_filter))

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        return await self._bounded("store_create", lambda: self.store.create(document))

    async def update(self, deck_id: str, user_id: str, fields: dict[str, Any]) -> None:
        await self._bounded("store_update", lambda: self.store.update(deck_id, user_id, fields))

    async def delete(self, deck_id: str, user_id: str) -> None:
        await self._bounded("store_delete", lambda: self.store.delete(deck_id, user_id))

    async def ping(self) -> bool:
        try:
            return await self._bounded("store_ping", self.store.ping)
        except TransientStoreError:
            logger.warning("store_ping_timed_out")
            return False

    async def load_deck(self, deck_id: str, user_id: str) -> Deck:
        """Read and validate one deck.

        Raises:
            NotFoundError: No document stored under the key.
            AuthorizationError: The document names a different owner.
            DataIntegrityError: The document does not satisfy the deck schema.
        """
        document = await self.get_document(deck_id, user_id)
        if document is None:
            raise NotFoundError(
                f"Deck not found: {deck_id}",
                context={"deck_id": deck_id, "user_id": user_id},
            )
        owner = document.get("user_id")
        if owner is not None and owner != user_id:
            raise AuthorizationError(
                "Deck belongs to a different user",
                context={"deck_id": deck_id, "user_id": user_id},
            )
        return Deck.from_document(document)


def create_store(settings: Settings | None = None) -> DeckStore:
    """Build the configured backend."""
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        from packages.store.memory import InMemoryDeckStore

        return InMemoryDeckStore()

    from packages.store.postgres import PostgresDeckStore

    return PostgresDeckStore(settings)


_store_client: StoreClient | None = None


def get_store_client(settings: Settings | None = None) -> StoreClient:
    """Get cached store client."""
    global _store_client
    if _store_client is None:
        settings = settings or get_settings()
        _store_client = StoreClient(create_store(settings), settings)
    return _store_client


def reset_store_client() -> None:
    """Drop the cached client (the postgres pool is closed separately)."""
    global _store_client
    _store_client = None
