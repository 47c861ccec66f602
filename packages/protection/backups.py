"""Bounded in-process ring of deck pre-images."""

from __future__ import annotations

import copy
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from packages.common.exceptions import NotFoundError
from packages.common.logging import get_logger
from packages.srs.models import utcnow

logger = get_logger(module=__name__)

DEFAULT_CAPACITY = 100
DEFAULT_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class BackupRecord:
    """Snapshot of a deck document taken just before a mutation."""

    user_id: str
    deck_id: str
    operation: str
    timestamp: datetime
    payload: dict[str, Any]

    def summary(self) -> dict[str, Any]:
        """Metadata without the (possibly large) payload."""
        cards = self.payload.get("cards")
        return {
            "user_id": self.user_id,
            "deck_id": self.deck_id,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
            "card_count": len(cards) if isinstance(cards, list) else 0,
        }


class BackupRing:
    """FIFO buffer of :class:`BackupRecord`, shared across all users.

    Process-local: contents are lost on restart.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.clock = clock
        self._records: deque[BackupRecord] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._records)

    def capture(
        self,
        user_id: str,
        deck_id: str,
        operation: str,
        payload: dict[str, Any],
    ) -> BackupRecord:
        """Store a deep copy of ``payload``, evicting the oldest record at capacity."""
        record = BackupRecord(
            user_id=user_id,
            deck_id=deck_id,
            operation=operation,
            timestamp=self.clock(),
            payload=copy.deepcopy(payload),
        )
        self._records.append(record)
        logger.debug(
            "backup_captured",
            user_id=user_id,
            deck_id=deck_id,
            operation=operation,
            size=len(self._records),
        )
        return record

    def history(
        self,
        user_id: str,
        deck_id: str | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[BackupRecord]:
        """Most recent first."""
        matches = [
            record
            for record in reversed(self._records)
            if record.user_id == user_id and (deck_id is None or record.deck_id == deck_id)
        ]
        return matches[:limit]

    def recent(self, limit: int = 5) -> list[BackupRecord]:
        return list(reversed(self._records))[:limit]

    def restore(self, user_id: str, deck_id: str, timestamp: datetime) -> dict[str, Any]:
        """Return a copy of the payload captured at exactly ``timestamp``.

        Raises:
            NotFoundError: No backup for that deck at that time.
        """
        for record in reversed(self._records):
            if (
                record.user_id == user_id
                and record.deck_id == deck_id
                and record.timestamp == timestamp
            ):
                return copy.deepcopy(record.payload)
        raise NotFoundError(
            "Backup not found",
            context={"user_id": user_id, "deck_id": deck_id, "timestamp": timestamp.isoformat()},
        )
