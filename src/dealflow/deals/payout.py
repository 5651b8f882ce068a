"""Deferred payout settlement, one cancelable task per deal.

After a draft is approved the influencer payout completes on its own after a
short settlement delay. Each pending settlement is an asyncio task keyed by
deal id so it can be cancelled (deal cancelled, fix requested) or fired
immediately (tests, manual trigger) instead of waiting on the wall clock.

Scheduling while a settlement is already pending for the deal is a no-op, so
re-entering the approved state never queues a second payout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

SettlementCallback = Callable[[], Awaitable[None]]


class PayoutScheduler:
    """Keeps at most one pending settlement task per deal id.

    Args:
        delay: Seconds to wait before the settlement callback runs.
    """

    def __init__(self, delay: float = 0.3) -> None:
        self._delay = delay
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._callbacks: dict[str, SettlementCallback] = {}

    @property
    def delay(self) -> float:
        return self._delay

    def is_pending(self, deal_id: str) -> bool:
        task = self._tasks.get(deal_id)
        return task is not None and not task.done()

    def pending(self) -> list[str]:
        return [deal_id for deal_id in self._tasks if self.is_pending(deal_id)]

    def schedule(self, deal_id: str, callback: SettlementCallback) -> bool:
        """Schedule ``callback`` to run after the delay.

        Must be called from within a running event loop.

        Returns:
            True if a new task was scheduled, False if one was already pending.
        """
        if self.is_pending(deal_id):
            logger.debug("payout.already_pending", deal_id=deal_id)
            return False

        loop = asyncio.get_running_loop()
        self._callbacks[deal_id] = callback
        self._tasks[deal_id] = loop.create_task(
            self._run_later(deal_id, callback), name=f"payout:{deal_id}"
        )
        logger.info("payout.scheduled", deal_id=deal_id, delay=self._delay)
        return True

    def cancel(self, deal_id: str) -> bool:
        """Cancel the pending settlement for ``deal_id``.

        Returns:
            True if a pending task was cancelled.
        """
        task = self._tasks.pop(deal_id, None)
        self._callbacks.pop(deal_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("payout.cancelled", deal_id=deal_id)
        return True

    async def fire(self, deal_id: str) -> bool:
        """Run the pending settlement now instead of waiting for the delay.

        Returns:
            True if a pending settlement was found and run.
        """
        callback = self._callbacks.get(deal_id)
        if callback is None or not self.is_pending(deal_id):
            return False
        self.cancel(deal_id)
        await self._execute(deal_id, callback)
        return True

    async def shutdown(self) -> None:
        """Cancel every pending settlement and wait for the tasks to finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for deal_id in list(self._tasks):
            self.cancel(deal_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_later(self, deal_id: str, callback: SettlementCallback) -> None:
        try:
            await asyncio.sleep(self._delay)
            await self._execute(deal_id, callback)
        finally:
            if self._tasks.get(deal_id) is asyncio.current_task():
                self._tasks.pop(deal_id, None)
                self._callbacks.pop(deal_id, None)

    async def _execute(self, deal_id: str, callback: SettlementCallback) -> None:
        try:
            await callback()
            logger.info("payout.settled", deal_id=deal_id)
        except Exception:
            # Settlement runs detached from any caller; log instead of raising.
            logger.error("payout.settlement_failed", deal_id=deal_id, exc_info=True)
