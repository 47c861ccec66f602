"""Tests for the memory-deck CLI against the in-memory store."""

import pytest
from typer.testing import CliRunner

from apps.cli import app
from packages.common.config import Settings
from packages.store.client import StoreClient
from packages.store.memory import InMemoryDeckStore
from tests.factories import make_card, make_deck

runner = CliRunner()


@pytest.fixture
def cli_store(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> InMemoryDeckStore:
    backend = InMemoryDeckStore()
    client = StoreClient(backend, settings)
    monkeypatch.setattr("packages.store.client.get_store_client", lambda *args: client)
    monkeypatch.setattr("apps.cli._setup_logging", lambda: None)
    return backend


class TestDueCommand:
    """Tests for `memory-deck due`."""

    def test_lists_due_cards(self, cli_store: InMemoryDeckStore) -> None:
        deck = make_deck(deck_id="d1", cards=[make_card(card_id="c1")])
        cli_store._documents[("d1", "user-1")] = deck.to_document()

        result = runner.invoke(app, ["due", "user-1"])

        assert result.exit_code == 0
        assert "Due cards (1 of 1)" in result.output
        assert "Geography" in result.output

    def test_nothing_due(self, cli_store: InMemoryDeckStore) -> None:
        result = runner.invoke(app, ["due", "user-1"])

        assert result.exit_code == 0
        assert "Nothing due" in result.output

    def test_invalid_limit(self, cli_store: InMemoryDeckStore) -> None:
        result = runner.invoke(app, ["due", "user-1", "--limit", "0"])

        assert result.exit_code == 1
        assert "limit" in result.output


class TestVersionCommand:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "memory-deck" in result.output
