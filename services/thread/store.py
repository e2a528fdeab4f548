from __future__ import annotations

import logging
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import StoreFailureError, ThreadNotFoundError
from infrastructure.context import ThreadScope
from infrastructure.database.database import session_scope
from infrastructure.database.models.threads import Thread, ThreadMessage
from infrastructure.database.repositories import ThreadMessageRepository, ThreadRepository
from infrastructure.events import EventSink, NullEventSink
from infrastructure.gateway.gateway import PlatformUser
from schemas.enums import ThreadMessageType
from schemas.thread import ThreadMessageResponse
from services.thread.locks import ThreadLockRegistry

logger = logging.getLogger(__name__)


class ThreadStore:
    """Units of work against the thread tables.

    ``transaction(thread_id)`` serializes on the thread's lock; without an id
    it is a plain session. Any SQLAlchemy error leaves as ``StoreFailureError``.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]] = session_scope,
        *,
        locks: Optional[ThreadLockRegistry] = None,
        events: Optional[EventSink] = None,
    ) -> None:
        self._session_factory = session_factory
        self.locks = locks or ThreadLockRegistry()
        self.events = events or NullEventSink()

    @asynccontextmanager
    async def transaction(self, thread_id: Optional[str] = None) -> AsyncIterator[AsyncSession]:
        guard = self.locks.hold(thread_id) if thread_id else nullcontext()
        async with guard:
            try:
                async with self._session_factory() as db:
                    yield db
            except SQLAlchemyError as exc:
                logger.error("Thread store failure (thread=%s): %s", thread_id, exc)
                raise StoreFailureError(str(exc)) from exc

    async def get_thread(self, thread_id: str) -> Thread:
        async with self.transaction() as db:
            thread = await ThreadRepository(db).get_thread(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    async def create_thread(self, user: PlatformUser, channel_id: Optional[str]) -> Thread:
        # One open thread per user: the lookup and the insert share a critical section.
        async with self.locks.hold(f"user:{user.id}"):
            async with self.transaction() as db:
                return await ThreadRepository(db).create_thread(user, channel_id)

    async def get_open_thread_for_user(self, user_id: str) -> Thread | None:
        async with self.transaction() as db:
            return await ThreadRepository(db).get_open_thread_for_user(user_id)

    async def get_active_thread_by_channel(self, channel_id: str) -> Thread | None:
        async with self.transaction() as db:
            return await ThreadRepository(db).get_active_thread_by_channel(channel_id)

    async def count_closed_threads(self, user_id: str) -> int:
        async with self.transaction() as db:
            return await ThreadRepository(db).count_closed_threads_by_user(user_id)

    async def list_due_scheduled_closes(self, now: datetime) -> List[Thread]:
        async with self.transaction() as db:
            return await ThreadRepository(db).list_due_scheduled_closes(now)

    async def append_message(
        self,
        thread: Thread,
        message_type: ThreadMessageType,
        *,
        user_id: Optional[str],
        user_name: str,
        body: str,
        is_anonymous: bool = False,
        dm_message_id: Optional[str] = None,
        thread_message_id: Optional[str] = None,
    ) -> ThreadMessage:
        async with self.transaction(thread.id) as db:
            entry = await ThreadMessageRepository(db, ThreadScope.of(thread)).append(
                message_type,
                user_id=user_id,
                user_name=user_name,
                body=body,
                is_anonymous=is_anonymous,
                dm_message_id=dm_message_id,
                thread_message_id=thread_message_id,
            )

        await self.publish(
            "newMessage",
            {"message": ThreadMessageResponse.model_validate(entry).model_dump(mode="json")},
        )
        return entry

    async def transcript(self, thread_id: str) -> List[ThreadMessage]:
        thread = await self.get_thread(thread_id)
        async with self.transaction() as db:
            return await ThreadMessageRepository(db, ThreadScope.of(thread)).list_messages()

    async def find_by_dm_message(self, thread_id: str, dm_message_id: str) -> ThreadMessage | None:
        thread = await self.get_thread(thread_id)
        async with self.transaction() as db:
            return await ThreadMessageRepository(db, ThreadScope.of(thread)).get_by_dm_message_id(dm_message_id)

    async def find_by_thread_message(self, thread_id: str, thread_message_id: str) -> ThreadMessage | None:
        thread = await self.get_thread(thread_id)
        async with self.transaction() as db:
            return await ThreadMessageRepository(db, ThreadScope.of(thread)).get_by_thread_message_id(
                thread_message_id
            )

    async def update_chat_message(
        self,
        thread: Thread,
        dm_message_id: str,
        *,
        body: str,
        thread_message_id: str,
    ) -> bool:
        async with self.transaction(thread.id) as db:
            updated = await ThreadMessageRepository(db, ThreadScope.of(thread)).update_chat_message(
                dm_message_id,
                body=body,
                thread_message_id=thread_message_id,
            )
        return updated > 0

    async def publish(self, event: str, data: dict) -> None:
        try:
            await self.events.publish(event, data)
        except Exception:
            logger.warning("Event sink rejected %s event", event, exc_info=True)
