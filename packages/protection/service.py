"""Data protection facade: backups, background monitoring and health summary."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from packages.common.config import Settings, get_settings
from packages.common.logging import get_logger
from packages.integrity.checker import IntegrityChecker
from packages.protection.backups import BackupRing
from packages.protection.monitor import IntegrityMonitor
from packages.srs.models import utcnow
from packages.store.client import StoreClient, get_store_client

logger = get_logger(module=__name__)

HEALTH_RECENT_BACKUPS = 5


class DataProtection:
    """Owns the backup ring, the integrity checker and the background monitor."""

    def __init__(
        self,
        store: StoreClient,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.backups = BackupRing(self.settings.backup_capacity, clock=clock)
        self.checker = IntegrityChecker(
            store,
            backups=self.backups,
            stats_tolerance=self.settings.integrity_stats_tolerance,
            clock=clock,
        )
        self.monitor = IntegrityMonitor(store, self.checker)

    async def health_summary(self, user_id: str | None = None) -> dict[str, Any]:
        """Integrity totals plus the most recent backups, both limited to ``user_id`` when given."""
        report = await self.checker.check(user_id)
        if user_id is None:
            recent = self.backups.recent(HEALTH_RECENT_BACKUPS)
        else:
            recent = self.backups.history(user_id, limit=HEALTH_RECENT_BACKUPS)
        return {
            "status": "healthy" if report.is_healthy else "degraded",
            "total_decks": report.total_decks,
            "total_cards": report.total_cards,
            "issue_count": report.issue_count,
            "recommendations": report.recommendations,
            "report": report.to_dict(),
            "backups": {
                "stored": len(self.backups),
                "capacity": self.backups.capacity,
                "recent": [record.summary() for record in recent],
            },
        }

    async def close(self) -> None:
        await self.monitor.drain()


_protection: DataProtection | None = None


def get_data_protection(settings: Settings | None = None) -> DataProtection:
    """Get cached protection layer bound to the cached store client."""
    global _protection
    if _protection is None:
        settings = settings or get_settings()
        _protection = DataProtection(get_store_client(settings), settings)
    return _protection


async def close_data_protection() -> None:
    """Drain background work and drop the cached instance."""
    global _protection
    if _protection is not None:
        await _protection.close()
        _protection = None
