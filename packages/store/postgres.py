"""PostgreSQL card store: one JSONB document per (deck_id, user_id) row."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import PoolTimeout

from packages.common.config import Settings, get_settings
from packages.common.database import check_connection, get_connection
from packages.common.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from packages.store.base import DeckFilter


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map driver exceptions onto the application hierarchy."""
    try:
        yield
    except pg_errors.UniqueViolation as exc:
        raise ConflictError(f"{operation}: deck already exists") from exc
    except (psycopg.OperationalError, PoolTimeout) as exc:
        raise TransientStoreError(f"{operation} failed: {exc}") from exc
    except psycopg.Error as exc:
        raise DatabaseError(f"{operation} failed: {exc}") from exc


class PostgresDeckStore:
    """Deck documents persisted in the ``decks`` table."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def get(self, deck_id: str, user_id: str) -> dict[str, Any] | None:
        with _translate_errors("get_deck"):
            async with get_connection(self.settings) as conn:
                result = await conn.execute(
                    "SELECT document FROM decks WHERE deck_id = %s AND user_id = %s",
                    (deck_id, user_id),
                )
                row = await result.fetchone()
        return dict(row["document"]) if row else None

    async def scan(self, deck_filter: DeckFilter) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if deck_filter.user_id is not None:
            clauses.append("user_id = %s")
            params.append(deck_filter.user_id)
        if deck_filter.course_id is not None:
            clauses.append("course_id = %s")
            params.append(deck_filter.course_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with _translate_errors("scan_decks"):
            async with get_connection(self.settings) as conn:
                result = await conn.execute(
                    f"SELECT document FROM decks {where} ORDER BY created_at",  # noqa: S608
                    params,
                )
                rows = await result.fetchall()
        return [dict(row["document"]) for row in rows]

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        deck_id = document.get("deck_id")
        user_id = document.get("user_id")
        if not isinstance(deck_id, str) or not isinstance(user_id, str):
            raise ValidationError("Deck document requires string deck_id and user_id")

        with _translate_errors("create_deck"):
            async with get_connection(self.settings) as conn:
                await conn.execute(
                    """
                    INSERT INTO decks (deck_id, user_id, course_id, document)
                    VALUES (%s, %s, %s, %s::jsonb)
                    """,
                    (deck_id, user_id, document.get("course_id"), json.dumps(document)),
                )
        return document

    async def update(self, deck_id: str, user_id: str, fields: dict[str, Any]) -> None:
        payload = json.dumps(fields)
        with _translate_errors("update_deck"):
            async with get_connection(self.settings) as conn:
                result = await conn.execute(
                    """
                    UPDATE decks
                    SET document = document || %(fields)s::jsonb,
                        course_id = COALESCE(%(fields)s::jsonb ->> 'course_id', course_id),
                        updated_at = NOW()
                    WHERE deck_id = %(deck_id)s AND user_id = %(user_id)s
                    """,
                    {"fields": payload, "deck_id": deck_id, "user_id": user_id},
                )
                updated = result.rowcount or 0
        if updated == 0:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})

    async def delete(self, deck_id: str, user_id: str) -> None:
        with _translate_errors("delete_deck"):
            async with get_connection(self.settings) as conn:
                result = await conn.execute(
                    "DELETE FROM decks WHERE deck_id = %s AND user_id = %s",
                    (deck_id, user_id),
                )
                deleted = result.rowcount or 0
        if deleted == 0:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})

    async def ping(self) -> bool:
        return await check_connection(self.settings)
