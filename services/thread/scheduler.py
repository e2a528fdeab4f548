"""Timers and the periodic sweep that carry out scheduled closes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from config import settings
from schemas.enums import PendingCloseOutcome

if TYPE_CHECKING:
    from services.thread.relay import RelayEngine

logger = logging.getLogger(__name__)


class CloseScheduler:
    def __init__(
        self,
        engine: "RelayEngine",
        *,
        log_channel_id: Optional[str] = settings.LOG_CHANNEL_ID,
        interval: float = settings.CLOSE_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.engine = engine
        self.log_channel_id = log_channel_id
        self.interval = interval
        self._timers: dict[str, asyncio.Task] = {}

    def arm(self, thread_id: str, at: datetime) -> asyncio.Task:
        """Fire a close check at ``at``. Re-arming replaces the previous timer."""
        self.disarm(thread_id)
        task = asyncio.create_task(self._fire(thread_id, at))
        self._timers[thread_id] = task
        task.add_done_callback(lambda done: self._forget(thread_id, done))
        return task

    def disarm(self, thread_id: str) -> bool:
        task = self._timers.pop(thread_id, None)
        if task is None or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def _forget(self, thread_id: str, task: asyncio.Task) -> None:
        if self._timers.get(thread_id) is task:
            del self._timers[thread_id]

    @property
    def armed(self) -> List[str]:
        return list(self._timers)

    async def _fire(self, thread_id: str, at: datetime) -> None:
        delay = (at - datetime.now(timezone.utc)).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await self.close_if_due(thread_id, expected_at=at)
        except Exception:
            logger.exception("Scheduled close of thread %s failed", thread_id)

    async def close_if_due(
        self,
        thread_id: str,
        *,
        expected_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        outcome = await self.engine.lifecycle.evaluate_pending_close(
            thread_id, activity=False, expected_at=expected_at, now=now
        )
        if outcome is not PendingCloseOutcome.CLOSED:
            return False
        await self._log_close(thread_id)
        return True

    async def _log_close(self, thread_id: str) -> None:
        if not self.log_channel_id:
            return
        thread = await self.engine.store.get_thread(thread_id)
        text = (
            f"Thread with {thread.user_name} ({thread.user_id}) was closed as scheduled "
            f"by {thread.closed_by_name}. Logs: {self.engine.get_log_url(thread.id)}"
        )
        try:
            await self.engine.dispatcher.send_direct(self.log_channel_id, text)
        except Exception as exc:
            logger.warning("Could not post close log for thread %s: %s", thread_id, exc)

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Close every thread whose schedule is due. Returns the closed ids."""
        now = now or datetime.now(timezone.utc)
        closed: List[str] = []
        for thread in await self.engine.store.list_due_scheduled_closes(now):
            try:
                if await self.close_if_due(thread.id, now=now):
                    closed.append(thread.id)
            except Exception:
                logger.exception("Scheduled close of thread %s failed", thread.id)
        if closed:
            logger.info("Closed %d scheduled thread(s)", len(closed))
        return closed

    async def run(self, interval: Optional[float] = None) -> None:
        interval = self.interval if interval is None else interval
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("Scheduled close sweep failed")
            await asyncio.sleep(interval)

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
