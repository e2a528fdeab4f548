from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.context import ThreadScope
from infrastructure.database.models.threads import ThreadMessage, as_utc
from schemas.enums import ThreadMessageType


class ThreadMessageRepository:
    """Append-only access to one thread's transcript."""

    def __init__(self, db: AsyncSession, scope: ThreadScope) -> None:
        self.db = db
        self.scope = scope

    async def append(
        self,
        message_type: ThreadMessageType,
        *,
        user_id: Optional[str],
        user_name: str,
        body: str,
        is_anonymous: bool = False,
        dm_message_id: Optional[str] = None,
        thread_message_id: Optional[str] = None,
    ) -> ThreadMessage:
        created_at = datetime.now(timezone.utc)
        latest = await self._latest_created_at()
        # Keep (created_at, id) monotonic even if the wall clock steps back
        if latest is not None and latest > created_at:
            created_at = latest

        entry = ThreadMessage(
            thread_id=self.scope.thread_id,
            message_type=int(message_type),
            user_id=user_id,
            user_name=user_name,
            body=body,
            is_anonymous=is_anonymous,
            dm_message_id=dm_message_id,
            thread_message_id=thread_message_id,
            created_at=created_at,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_messages(self) -> List[ThreadMessage]:
        stmt = (
            select(ThreadMessage)
            .where(ThreadMessage.thread_id == self.scope.thread_id)
            .order_by(ThreadMessage.created_at.asc(), ThreadMessage.id.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_by_dm_message_id(self, dm_message_id: str) -> ThreadMessage | None:
        stmt = select(ThreadMessage).where(
            ThreadMessage.thread_id == self.scope.thread_id,
            ThreadMessage.dm_message_id == dm_message_id,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_by_thread_message_id(self, thread_message_id: str) -> ThreadMessage | None:
        stmt = select(ThreadMessage).where(
            ThreadMessage.thread_id == self.scope.thread_id,
            ThreadMessage.thread_message_id == thread_message_id,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def update_chat_message(
        self,
        dm_message_id: str,
        *,
        body: str,
        thread_message_id: str,
    ) -> int:
        """Correct an edited staff chat row. Other message types are never touched."""
        stmt = (
            update(ThreadMessage)
            .where(
                ThreadMessage.thread_id == self.scope.thread_id,
                ThreadMessage.dm_message_id == dm_message_id,
                ThreadMessage.message_type == int(ThreadMessageType.CHAT),
            )
            .values(body=body, thread_message_id=thread_message_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    async def _latest_created_at(self) -> datetime | None:
        stmt = (
            select(ThreadMessage.created_at)
            .where(ThreadMessage.thread_id == self.scope.thread_id)
            .order_by(ThreadMessage.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return as_utc(result.scalar_one_or_none())


__all__ = ["ThreadMessageRepository"]
