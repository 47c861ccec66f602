"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest

from packages.common.config import Settings
from packages.protection.service import DataProtection
from packages.srs.models import Deck
from packages.store.client import StoreClient
from packages.store.memory import InMemoryDeckStore
from tests.factories import FrozenClock, make_deck


@pytest.fixture
def settings() -> Settings:
    """Settings for the in-memory backend with fast retries."""
    return Settings(
        store_backend="memory",
        store_timeout_seconds=1.0,
        store_read_attempts=3,
        store_retry_backoff_seconds=0.0,
        backup_capacity=100,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def memory_store() -> InMemoryDeckStore:
    return InMemoryDeckStore()


@pytest.fixture
def store(memory_store: InMemoryDeckStore, settings: Settings) -> StoreClient:
    """Store client over the in-memory backend."""
    return StoreClient(memory_store, settings)


@pytest.fixture
async def protection(
    store: StoreClient,
    settings: Settings,
    clock: FrozenClock,
) -> AsyncGenerator[DataProtection]:
    """Protection layer; background verification is drained on teardown."""
    layer = DataProtection(store, settings, clock=clock)
    yield layer
    await layer.close()


@pytest.fixture
def deck_factory(memory_store: InMemoryDeckStore) -> Callable[..., Any]:
    """Store a deck in the in-memory backend and return it."""

    async def _create(**overrides: Any) -> Deck:
        deck = make_deck(**overrides)
        await memory_store.create(deck.to_document())
        return deck

    return _create
