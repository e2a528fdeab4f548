"""Thread lifecycle: Open, Suspended and the terminal Closed state.

While a thread is Open it may carry a pending close. New activity either
cancels it (when it is due within the guard window) or leaves it in place
and reminds whoever scheduled it. The timer trigger and the activity trigger
share ``evaluate_pending_close`` so both see the same state under the
thread's lock.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from config import settings
from errors import InvalidTransitionError, RelayChannelGoneError, ThreadNotFoundError
from infrastructure.database.models.threads import Thread, as_utc
from infrastructure.database.repositories import ThreadRepository
from infrastructure.gateway.gateway import PlatformUser
from schemas.enums import PendingCloseOutcome, ThreadStatus
from schemas.relay import PlainText
from schemas.thread import ThreadResponse
from services.thread.dispatch import ThreadDispatcher
from services.thread.store import ThreadStore

logger = logging.getLogger(__name__)

CLOSING_NOTICE = "Closing thread..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def scheduled_closer(thread: Thread) -> PlatformUser | None:
    if not thread.scheduled_close_id:
        return None
    return PlatformUser(
        id=thread.scheduled_close_id,
        username=thread.scheduled_close_name or "",
        discriminator=thread.scheduled_close_discriminator or "0",
    )


class LifecycleManager:
    def __init__(
        self,
        store: ThreadStore,
        dispatcher: ThreadDispatcher,
        *,
        guard_seconds: float = settings.CLOSE_GUARD_SECONDS,
        notice_ttl: float = settings.NOTICE_TTL_SECONDS,
        command_prefix: str = settings.COMMAND_PREFIX,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.guard_seconds = guard_seconds
        self.notice_ttl = notice_ttl
        self.command_prefix = command_prefix

    async def _load_for_update(self, repo: ThreadRepository, thread_id: str) -> Thread:
        thread = await repo.get_thread(thread_id, for_update=True)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    async def schedule_close(self, thread_id: str, at: datetime, requested_by: PlatformUser) -> Thread:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await self._load_for_update(repo, thread_id)
            if thread.status != ThreadStatus.OPEN:
                raise InvalidTransitionError(
                    thread_id, ThreadStatus(thread.status).name, "scheduled close"
                )
            await repo.set_scheduled_close(thread, at, requested_by)

        logger.info("Thread %s scheduled to close at %s by %s", thread_id, at.isoformat(), requested_by.tag)
        return thread

    async def cancel_scheduled_close(self, thread_id: str) -> bool:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await self._load_for_update(repo, thread_id)
            if not thread.has_scheduled_close:
                return False
            await repo.clear_scheduled_close(thread)

        logger.info("Cancelled scheduled close of thread %s", thread_id)
        return True

    async def suspend(self, thread_id: str) -> Thread:
        return await self._transition(thread_id, ThreadStatus.OPEN, ThreadStatus.SUSPENDED)

    async def unsuspend(self, thread_id: str) -> Thread:
        return await self._transition(thread_id, ThreadStatus.SUSPENDED, ThreadStatus.OPEN)

    async def _transition(self, thread_id: str, source: ThreadStatus, target: ThreadStatus) -> Thread:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await self._load_for_update(repo, thread_id)
            if thread.status != source:
                raise InvalidTransitionError(thread_id, ThreadStatus(thread.status).name, target.name)
            await repo.set_status(thread, target)
        return thread

    async def close(
        self,
        thread_id: str,
        closer: Optional[PlatformUser] = None,
        silent: bool = False,
    ) -> bool:
        """Close the thread. Returns False when it was already closed."""
        return await self._close(thread_id, closer, silent=silent)

    async def handle_channel_gone(self, thread_id: str) -> bool:
        logger.info("Auto-closing thread %s because the channel no longer exists", thread_id)
        return await self._close(thread_id, self.dispatcher.gateway.self_user, silent=True)

    async def _close(
        self,
        thread_id: str,
        closer: Optional[PlatformUser],
        *,
        silent: bool,
        due_by: Optional[datetime] = None,
        expected_at: Optional[datetime] = None,
    ) -> bool:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await self._load_for_update(repo, thread_id)
            if thread.closed:
                return False

            if due_by is not None:
                scheduled_at = as_utc(thread.scheduled_close_at)
                if thread.status != ThreadStatus.OPEN or scheduled_at is None or scheduled_at > due_by:
                    return False
                if expected_at is not None and scheduled_at != as_utc(expected_at):
                    return False

            if not silent:
                logger.info("Closing thread %s", thread_id)
                try:
                    await self.dispatcher.send_to_channel(thread, CLOSING_NOTICE)
                except RelayChannelGoneError:
                    logger.info("Relay channel of thread %s already gone while closing", thread_id)

            if closer is None:
                closer = scheduled_closer(thread) or self.dispatcher.gateway.self_user

            await repo.mark_closed(thread, closer, _utcnow())

        await self.store.publish(
            "threadClose",
            {"thread": ThreadResponse.model_validate(thread).model_dump(mode="json")},
        )

        if thread.channel_id:
            logger.info("Deleting channel %s", thread.channel_id)
            await self.dispatcher.delete_channel(thread.channel_id, "Thread closed")

        return True

    async def evaluate_pending_close(
        self,
        thread_id: str,
        *,
        activity: bool,
        expected_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PendingCloseOutcome:
        """Apply the pending-close rule for one trigger.

        ``activity=True`` is new traffic on the thread; ``activity=False`` is a
        timer or sweep asking whether the close is due.
        """
        now = now or _utcnow()

        if not activity:
            closed = await self._close(thread_id, None, silent=False, due_by=now, expected_at=expected_at)
            return PendingCloseOutcome.CLOSED if closed else PendingCloseOutcome.NONE

        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await self._load_for_update(repo, thread_id)
            if thread.status != ThreadStatus.OPEN or not thread.has_scheduled_close:
                return PendingCloseOutcome.NONE

            requester_id = thread.scheduled_close_id
            remaining = (as_utc(thread.scheduled_close_at) - now).total_seconds()
            if remaining <= self.guard_seconds:
                await repo.clear_scheduled_close(thread)
                outcome = PendingCloseOutcome.CANCELLED
            else:
                outcome = PendingCloseOutcome.REMINDED

        if outcome is PendingCloseOutcome.CANCELLED:
            logger.info("Cancelled scheduled close of thread %s due to new activity", thread_id)
            text = f"<@!{requester_id}> Thread that was scheduled to be closed got a new reply. Cancelling."
        else:
            text = (
                f"<@!{requester_id}> The thread was updated, use "
                f"`{self.command_prefix}close cancel` if you would like to cancel."
            )
        await self._announce(thread, text)
        return outcome

    async def _announce(self, thread: Thread, text: str) -> None:
        try:
            message = await self.dispatcher.post_system(thread, PlainText(text))
        except RelayChannelGoneError:
            await self.handle_channel_gone(thread.id)
            return
        self.dispatcher.delete_later(message, self.notice_ttl)
