"""Card store backends and the client used by services."""

from packages.store.base import DeckFilter, DeckStore
from packages.store.client import (
    StoreClient,
    create_store,
    get_store_client,
    reset_store_client,
)
from packages.store.memory import InMemoryDeckStore

__all__ = [
    "DeckFilter",
    "DeckStore",
    "InMemoryDeckStore",
    "StoreClient",
    "create_store",
    "get_store_client",
    "reset_store_client",
]
