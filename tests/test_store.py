"""Tests for the card store backends and the store client."""

import asyncio
from typing import Any

import psycopg
import pytest
from psycopg import errors as pg_errors

from packages.common.config import Settings
from packages.common.exceptions import (
    AuthorizationError,
    ConflictError,
    DatabaseError,
    DataIntegrityError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from packages.common.retry import retry_async
from packages.store import InMemoryDeckStore, StoreClient, create_store
from packages.store.base import DeckFilter
from packages.store.postgres import PostgresDeckStore, _translate_errors
from tests.factories import make_card, make_deck


class TestInMemoryDeckStore:
    """Tests for InMemoryDeckStore."""

    async def test_round_trip_is_a_copy(self, memory_store: InMemoryDeckStore) -> None:
        document = make_deck(deck_id="d1").to_document()
        await memory_store.create(document)

        fetched = await memory_store.get("d1", "user-1")
        assert fetched == document
        assert fetched is not None
        fetched["title"] = "changed"
        again = await memory_store.get("d1", "user-1")
        assert again is not None
        assert again["title"] == "Geography"

    async def test_keyed_by_deck_and_user(self, memory_store: InMemoryDeckStore) -> None:
        await memory_store.create(make_deck(deck_id="d1").to_document())
        assert await memory_store.get("d1", "user-2") is None

    async def test_create_conflict(self, memory_store: InMemoryDeckStore) -> None:
        document = make_deck(deck_id="d1").to_document()
        await memory_store.create(document)
        with pytest.raises(ConflictError):
            await memory_store.create(document)

    async def test_create_requires_keys(self, memory_store: InMemoryDeckStore) -> None:
        with pytest.raises(ValidationError):
            await memory_store.create({"title": "no keys"})

    async def test_update_merges_top_level_fields(self, memory_store: InMemoryDeckStore) -> None:
        await memory_store.create(make_deck(deck_id="d1").to_document())

        await memory_store.update("d1", "user-1", {"title": "New", "total_reviews": 3})

        stored = await memory_store.get("d1", "user-1")
        assert stored is not None
        assert stored["title"] == "New"
        assert stored["total_reviews"] == 3
        assert stored["course_id"] == "course-1"

    async def test_update_and_delete_missing(self, memory_store: InMemoryDeckStore) -> None:
        with pytest.raises(NotFoundError):
            await memory_store.update("nope", "user-1", {"title": "x"})
        with pytest.raises(NotFoundError):
            await memory_store.delete("nope", "user-1")

    async def test_scan_filters(self, memory_store: InMemoryDeckStore) -> None:
        await memory_store.create(make_deck(deck_id="a", course_id="math").to_document())
        await memory_store.create(make_deck(deck_id="b", course_id="art").to_document())
        await memory_store.create(make_deck(deck_id="c", user_id="user-2").to_document())

        assert len(await memory_store.scan(DeckFilter())) == 3
        user_docs = await memory_store.scan(DeckFilter(user_id="user-1"))
        assert {d["deck_id"] for d in user_docs} == {"a", "b"}
        course_docs = await memory_store.scan(DeckFilter(user_id="user-1", course_id="math"))
        assert [d["deck_id"] for d in course_docs] == ["a"]


class FlakyStore(InMemoryDeckStore):
    """Fails the first ``failures`` reads with a transient error."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.get_calls = 0
        self.update_calls = 0

    async def get(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        self.get_calls += 1
        if self.get_calls <= self.failures:
            raise TransientStoreError("connection reset")
        return await super().get(deck_id, user_id)

    async def update(self, deck_id: str, user_id: str, fields: dict[str, Any]) -> None:
        self.update_calls += 1
        raise TransientStoreError("connection reset")


class SlowStore(InMemoryDeckStore):
    async def get(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(5)
        return None

    async def ping(self) -> bool:
        await asyncio.sleep(5)
        return True


class TestStoreClient:
    """Tests for StoreClient."""

    async def test_reads_retried(self, settings: Settings) -> None:
        backend = FlakyStore(failures=2)
        await backend.create(make_deck(deck_id="d1").to_document())
        client = StoreClient(backend, settings)

        assert await client.get_document("d1", "user-1") is not None
        assert backend.get_calls == 3

    async def test_read_retries_bounded(self, settings: Settings) -> None:
        client = StoreClient(FlakyStore(failures=10), settings)
        with pytest.raises(TransientStoreError):
            await client.get_document("d1", "user-1")

    async def test_writes_not_retried(self, settings: Settings) -> None:
        backend = FlakyStore(failures=0)
        client = StoreClient(backend, settings)
        with pytest.raises(TransientStoreError):
            await client.update("d1", "user-1", {"title": "x"})
        assert backend.update_calls == 1

    async def test_timeout_is_transient(self) -> None:
        settings = Settings(
            store_backend="memory",
            store_timeout_seconds=0.01,
            store_read_attempts=1,
        )
        client = StoreClient(SlowStore(), settings)

        with pytest.raises(TransientStoreError, match="timed out"):
            await client.get_document("d1", "user-1")
        assert await client.ping() is False

    async def test_load_deck(self, store: StoreClient, memory_store: InMemoryDeckStore) -> None:
        deck = make_deck(deck_id="d1", cards=[make_card(card_id="c1")])
        await memory_store.create(deck.to_document())

        loaded = await store.load_deck("d1", "user-1")

        assert loaded == deck

    async def test_load_deck_missing(self, store: StoreClient) -> None:
        with pytest.raises(NotFoundError):
            await store.load_deck("d1", "user-1")

    async def test_load_deck_owner_mismatch(
        self,
        store: StoreClient,
        memory_store: InMemoryDeckStore,
    ) -> None:
        document = make_deck(deck_id="d1").to_document()
        await memory_store.create(document)
        await memory_store.update("d1", "user-1", {"user_id": "user-2"})

        with pytest.raises(AuthorizationError):
            await store.load_deck("d1", "user-1")

    async def test_load_deck_invalid_document(
        self,
        store: StoreClient,
        memory_store: InMemoryDeckStore,
    ) -> None:
        document = make_deck(deck_id="d1").to_document()
        document["cards"] = [{"card_id": "c1", "question": "", "answer": "A"}]
        await memory_store.create(document)

        with pytest.raises(DataIntegrityError) as exc_info:
            await store.load_deck("d1", "user-1")
        assert any("question" in v for v in exc_info.value.violations)

    def test_create_store_backends(self) -> None:
        assert isinstance(create_store(Settings(store_backend="memory")), InMemoryDeckStore)
        assert isinstance(create_store(Settings(store_backend="postgres")), PostgresDeckStore)


class TestTranslateErrors:
    """Tests for driver error translation in the postgres backend."""

    def test_unique_violation_is_conflict(self) -> None:
        with pytest.raises(ConflictError), _translate_errors("create_deck"):
            raise pg_errors.UniqueViolation("duplicate key")

    def test_operational_error_is_transient(self) -> None:
        with pytest.raises(TransientStoreError), _translate_errors("get_deck"):
            raise psycopg.OperationalError("server closed the connection")

    def test_other_errors_are_database_errors(self) -> None:
        with pytest.raises(DatabaseError) as exc_info, _translate_errors("scan_decks"):
            raise psycopg.ProgrammingError("syntax error")
        assert not isinstance(exc_info.value, TransientStoreError)


class TestRetryAsync:
    """Tests for retry_async."""

    async def test_returns_first_success(self) -> None:
        calls = 0

        async def _op() -> str:
            nonlocal calls
            calls += 1
            return "ok"

        result = await retry_async(
            _op, attempts=3, base_delay=0.0, retry_on=(TransientStoreError,), label="op"
        )
        assert result == "ok"
        assert calls == 1

    async def test_other_exceptions_not_retried(self) -> None:
        calls = 0

        async def _op() -> None:
            nonlocal calls
            calls += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await retry_async(
                _op, attempts=3, base_delay=0.0, retry_on=(TransientStoreError,), label="op"
            )
        assert calls == 1

    async def test_attempts_must_be_positive(self) -> None:
        async def _op() -> None:
            return None

        with pytest.raises(ValueError):
            await retry_async(_op, attempts=0, base_delay=0.0, retry_on=(), label="op")
