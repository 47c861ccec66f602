"""Fire-and-forget integrity work scheduled after successful writes."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from packages.common.logging import get_logger

if TYPE_CHECKING:
    from packages.integrity.checker import IntegrityChecker
    from packages.store.client import StoreClient

logger = get_logger(module=__name__)


class IntegrityMonitor:
    """Runs read-back verification and per-user integrity checks as asyncio tasks.

    Findings are logged, never raised: the write they follow has already
    succeeded. Task references are kept until completion; call :meth:`drain`
    at shutdown.
    """

    def __init__(self, store: StoreClient, checker: IntegrityChecker) -> None:
        self.store = store
        self.checker = checker
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_integrity_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    def submit(self, user_id: str) -> asyncio.Task[None]:
        """Schedule an integrity check of one user's decks."""
        return self._spawn(self._check_user(user_id), f"integrity-check:{user_id}")

    def after_write(
        self,
        user_id: str,
        deck_id: str,
        expected: dict[str, Any],
    ) -> None:
        """Schedule read-back verification of ``expected`` fields and a user check."""
        self._spawn(
            self._verify_write(user_id, deck_id, expected),
            f"verify-write:{deck_id}",
        )
        self.submit(user_id)

    async def _check_user(self, user_id: str) -> None:
        report = await self.checker.check(user_id)
        if report.issue_count:
            logger.warning(
                "integrity_issues_detected",
                user_id=user_id,
                issue_count=report.issue_count,
                corrupted_decks=[issue.deck_id for issue in report.corrupted_decks],
                recommendations=report.recommendations,
            )

    async def _verify_write(self, user_id: str, deck_id: str, expected: dict[str, Any]) -> None:
        document = await self.store.get_document(deck_id, user_id)
        if document is None:
            logger.warning("write_verification_missing_deck", user_id=user_id, deck_id=deck_id)
            return
        mismatched = sorted(key for key, value in expected.items() if document.get(key) != value)
        if mismatched:
            logger.warning(
                "write_verification_mismatch",
                user_id=user_id,
                deck_id=deck_id,
                fields=mismatched,
            )
        else:
            logger.debug("write_verified", user_id=user_id, deck_id=deck_id)

    async def drain(self) -> None:
        """Wait for every scheduled task, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
