"""Tests for the API endpoints."""

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from apps.api.main import app
from packages.common.config import Settings
from packages.common.exceptions import TransientStoreError
from packages.content.generator import TemplateContentGenerator
from packages.protection.service import DataProtection
from packages.store.client import StoreClient
from packages.store.memory import InMemoryDeckStore
from tests.factories import make_card, make_deck

BIOLOGY = (
    "Photosynthesis is the process plants use to make food. "
    "Osmosis is the movement of water across a membrane."
)


@pytest.fixture
def api_protection(
    monkeypatch: pytest.MonkeyPatch,
    store: StoreClient,
    settings: Settings,
) -> DataProtection:
    """Point the API at an in-memory store and its own protection layer."""
    protection = DataProtection(store, settings)

    async def _close() -> None:
        await protection.close()

    monkeypatch.setattr("apps.api.main.get_store_client", lambda: store)
    monkeypatch.setattr("apps.api.main.get_data_protection", lambda: protection)
    monkeypatch.setattr(
        "apps.api.main.get_content_generator", lambda settings=None: TemplateContentGenerator()
    )
    monkeypatch.setattr("apps.api.main.close_data_protection", _close)
    return protection


@pytest.fixture
def client(api_protection: DataProtection) -> Generator[TestClient]:
    """Create test client."""
    with TestClient(app) as test_client:
        yield test_client


def create_deck(client: TestClient, user_id: str = "user-1", **extra: Any) -> dict[str, Any]:
    response = client.post(
        "/decks",
        json={"user_id": user_id, "course_id": "course-1", "title": "Biology", **extra},
    )
    assert response.status_code == 201
    return response.json()["data"]


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        """Test /health returns healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"

    def test_health_returns_services_config(self, client: TestClient) -> None:
        """Test /health includes services configuration."""
        data = client.get("/health").json()
        assert "store" in data["services"]
        assert "content" in data["services"]

    def test_request_id_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"

    def test_request_id_generated(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.headers["X-Request-Id"]


class TestReadyEndpoint:
    """Tests for /ready endpoint."""

    def test_ready_with_reachable_store(self, client: TestClient) -> None:
        data = client.get("/ready").json()
        assert data["status"] == "ready"
        assert data["checks"] == {"store": "ok"}


class TestDeckEndpoints:
    """Tests for deck CRUD endpoints."""

    def test_create_deck(self, client: TestClient) -> None:
        response = client.post(
            "/decks",
            json={"user_id": "user-1", "course_id": "course-1", "title": "Biology"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Deck created successfully"
        assert body["data"]["title"] == "Biology"
        assert body["data"]["cards"] == []

    def test_create_deck_missing_fields(self, client: TestClient) -> None:
        response = client.post("/decks", json={"user_id": "user-1"})
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid request"
        assert body["error"]["type"] == "ValidationError"

    def test_create_deck_for_other_user(self, client: TestClient) -> None:
        response = client.post(
            "/decks",
            json={"user_id": "user-1", "course_id": "c", "title": "T"},
            headers={"X-User-Id": "user-2"},
        )
        assert response.status_code == 403
        assert response.json()["error"]["type"] == "AuthorizationError"

    def test_list_and_get(self, client: TestClient) -> None:
        deck = create_deck(client)

        listed = client.get("/decks/user-1").json()["data"]
        assert [d["deck_id"] for d in listed] == [deck["deck_id"]]

        fetched = client.get(f"/decks/user-1/{deck['deck_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["data"]["deck_id"] == deck["deck_id"]

    def test_get_missing_deck(self, client: TestClient) -> None:
        response = client.get("/decks/user-1/missing")
        assert response.status_code == 404
        assert response.json()["error"]["type"] == "NotFoundError"

    def test_placeholder_user_id(self, client: TestClient) -> None:
        response = client.get("/decks/undefined/some-deck")
        assert response.status_code == 400

    def test_delete_deck(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.delete(f"/decks/user-1/{deck['deck_id']}")
        assert response.status_code == 200
        assert client.get(f"/decks/user-1/{deck['deck_id']}").status_code == 404

    def test_deck_status(self, client: TestClient) -> None:
        deck = create_deck(client)
        client.post(
            f"/decks/user-1/{deck['deck_id']}/cards",
            json={"question": "Q?", "answer": "A"},
        )
        data = client.get(f"/decks/user-1/{deck['deck_id']}/status").json()["data"]
        assert data["total_cards"] == 1
        assert data["new_cards"] == 1
        assert data["due_cards"] == 0

    def test_corrupted_deck_reports_violations(
        self,
        client: TestClient,
        memory_store: InMemoryDeckStore,
    ) -> None:
        deck = create_deck(client)
        memory_store._documents[(deck["deck_id"], "user-1")]["cards"] = "broken"

        response = client.get(f"/decks/user-1/{deck['deck_id']}")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["type"] == "DataIntegrityError"
        assert body["error"]["violations"]


class TestCardEndpoints:
    """Tests for card endpoints."""

    def test_add_update_delete(self, client: TestClient) -> None:
        deck = create_deck(client)
        base = f"/decks/user-1/{deck['deck_id']}/cards"

        added = client.post(base, json={"question": "What is DNA?", "answer": "Genes"})
        assert added.status_code == 201
        card_id = added.json()["data"]["card_id"]

        updated = client.put(f"{base}/{card_id}", json={"difficulty_level": 4})
        assert updated.status_code == 200
        assert updated.json()["data"]["difficulty_level"] == 4

        deleted = client.delete(f"{base}/{card_id}")
        assert deleted.status_code == 200
        assert client.delete(f"{base}/{card_id}").status_code == 404

    def test_duplicate_card(self, client: TestClient) -> None:
        deck = create_deck(client)
        base = f"/decks/user-1/{deck['deck_id']}/cards"
        client.post(base, json={"question": "What is DNA?", "answer": "Genes"})

        response = client.post(base, json={"question": "what is dna?", "answer": "genes"})

        assert response.status_code == 409
        assert response.json()["error"]["type"] == "ConflictError"

    def test_blank_question_rejected(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.post(
            f"/decks/user-1/{deck['deck_id']}/cards",
            json={"question": "   ", "answer": "A"},
        )
        assert response.status_code == 400

    def test_batch_add(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.post(
            f"/decks/user-1/{deck['deck_id']}/cards/batch",
            json={
                "cards": [
                    {"question": "Q1", "answer": "A1"},
                    {"question": "Q1", "answer": "A1"},
                    {"question": "Q2", "answer": "A2"},
                ]
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["added_count"] == 2
        assert data["skipped_duplicates"] == 1


class TestReviewEndpoint:
    """Tests for POST /decks/{user_id}/{deck_id}/cards/{card_id}/review."""

    @pytest.fixture
    def card_url(self, client: TestClient) -> str:
        deck = create_deck(client)
        added = client.post(
            f"/decks/user-1/{deck['deck_id']}/cards",
            json={"question": "What is DNA?", "answer": "Genes"},
        )
        card_id = added.json()["data"]["card_id"]
        return f"/decks/user-1/{deck['deck_id']}/cards/{card_id}/review"

    def test_submit_review(self, client: TestClient, card_url: str) -> None:
        response = client.post(card_url, json={"rating": 3, "thinking_time": 2.5})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["is_correct"] is True
        assert data["repetition_count"] == 1
        assert data["interval_days"] == 1.0

    @pytest.mark.parametrize("rating", [0, 5])
    def test_invalid_rating(self, client: TestClient, card_url: str, rating: int) -> None:
        response = client.post(card_url, json={"rating": rating})
        assert response.status_code == 400
        assert "Invalid rating" in response.json()["message"]

    def test_missing_rating(self, client: TestClient, card_url: str) -> None:
        assert client.post(card_url, json={}).status_code == 400

    def test_wrong_requester(self, client: TestClient, card_url: str) -> None:
        response = client.post(card_url, json={"rating": 3}, headers={"X-User-Id": "user-2"})
        assert response.status_code == 403

    def test_unknown_card(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.post(
            f"/decks/user-1/{deck['deck_id']}/cards/nope/review", json={"rating": 3}
        )
        assert response.status_code == 404

    def test_store_outage(
        self,
        client: TestClient,
        card_url: str,
        memory_store: InMemoryDeckStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def _fail(*args: Any, **kwargs: Any) -> None:
            raise TransientStoreError("connection reset")

        monkeypatch.setattr(memory_store, "update", _fail)

        response = client.post(card_url, json={"rating": 3})

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["type"] == "StoreUnavailable"
        assert "connection reset" not in body["message"]


class TestDueCardsEndpoint:
    """Tests for GET /decks/{user_id}/due-cards."""

    def test_due_cards(self, client: TestClient, memory_store: InMemoryDeckStore) -> None:
        deck = make_deck(cards=[make_card(card_id="c1"), make_card(card_id="c2", question="Q")])
        memory_store._documents[(deck.deck_id, deck.user_id)] = deck.to_document()

        response = client.get("/decks/user-1/due-cards", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_due"] == 2
        assert len(data["due_cards"]) == 1
        assert data["due_cards"][0]["deck_title"] == "Geography"

    def test_limit_out_of_range(self, client: TestClient) -> None:
        response = client.get("/decks/user-1/due-cards", params={"limit": 501})
        assert response.status_code == 400


class TestGenerationEndpoints:
    """Tests for deck generation and alternatives."""

    def test_generate_deck(self, client: TestClient) -> None:
        response = client.post(
            "/decks/generate",
            json={
                "user_id": "user-1",
                "course_id": "bio",
                "title": "Biology",
                "chapters": [{"chapter_id": "ch1", "title": "Plants", "content": BIOLOGY}],
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["cards_generated"] == 2
        assert len(data["deck"]["cards"]) == 2

    def test_alternatives(self, client: TestClient) -> None:
        response = client.post(
            "/decks/alternatives",
            json={
                "user_id": "user-1",
                "question": "Mitosis",
                "answer": "Cell division",
                "count": 2,
            },
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["alternatives"]) == 2
        assert data["original_question"] == "Mitosis"


class TestBackupEndpoints:
    """Tests for backup history and restore."""

    def test_history_and_restore(self, client: TestClient) -> None:
        deck = create_deck(client)
        base = f"/decks/user-1/{deck['deck_id']}"
        card = client.post(f"{base}/cards", json={"question": "Q", "answer": "A"}).json()["data"]
        client.delete(f"{base}/cards/{card['card_id']}")

        history = client.get(f"{base}/backups").json()["data"]
        assert [record["operation"] for record in history] == ["delete_card", "add_card"]
        assert history[0]["card_count"] == 1

        restored = client.post(
            f"{base}/backups/restore", json={"timestamp": history[0]["timestamp"]}
        )
        assert restored.status_code == 200
        assert [c["card_id"] for c in restored.json()["data"]["cards"]] == [card["card_id"]]

    def test_restore_unknown_backup(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.post(
            f"/decks/user-1/{deck['deck_id']}/backups/restore",
            json={"timestamp": "2020-01-01T00:00:00+00:00"},
        )
        assert response.status_code == 404

    def test_restore_bad_timestamp(self, client: TestClient) -> None:
        deck = create_deck(client)
        response = client.post(
            f"/decks/user-1/{deck['deck_id']}/backups/restore", json={"timestamp": "yesterday"}
        )
        assert response.status_code == 400


class TestIntegrityEndpoints:
    """Tests for /integrity endpoints."""

    def test_health_summary(self, client: TestClient) -> None:
        create_deck(client)
        response = client.get("/integrity/health", params={"user_id": "user-1"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "healthy"
        assert data["total_decks"] == 1

    def test_repair(self, client: TestClient, memory_store: InMemoryDeckStore) -> None:
        deck = create_deck(client)
        memory_store._documents[(deck["deck_id"], "user-1")]["total_reviews"] = -4

        response = client.post("/integrity/repair", json={"user_id": "user-1"})

        assert response.status_code == 200
        assert response.json()["data"]["repaired_decks"] == 1
        assert client.get("/integrity/health").json()["data"]["status"] == "healthy"

    def test_repair_other_user_forbidden(self, client: TestClient) -> None:
        response = client.post(
            "/integrity/repair", json={"user_id": "user-1"}, headers={"X-User-Id": "user-2"}
        )
        assert response.status_code == 403

    def test_caller_without_user_id_is_scoped_to_self(
        self,
        client: TestClient,
        memory_store: InMemoryDeckStore,
    ) -> None:
        create_deck(client)
        other = create_deck(client, user_id="user-2")
        memory_store._documents[(other["deck_id"], "user-2")]["total_reviews"] = -4
        headers = {"X-User-Id": "user-1"}

        health = client.get("/integrity/health", headers=headers).json()["data"]
        repair = client.post("/integrity/repair", json={}, headers=headers).json()["data"]

        assert health["total_decks"] == 1
        assert health["status"] == "healthy"
        assert all(r["user_id"] == "user-1" for r in health["backups"]["recent"])
        assert repair["repaired_decks"] == 0
        assert memory_store._documents[(other["deck_id"], "user-2")]["total_reviews"] == -4


class TestUnexpectedErrors:
    """Unhandled exceptions become a generic 500."""

    def test_internal_error(
        self,
        api_protection: DataProtection,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def _broken() -> StoreClient:
            raise RuntimeError("secret detail")

        monkeypatch.setattr("apps.api.main.get_store_client", _broken)

        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.get("/decks/user-1/due-cards")

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error"
        assert "secret detail" not in str(body)
