from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.threads import Thread, as_utc
from infrastructure.gateway.gateway import PlatformUser
from schemas.enums import ThreadStatus


class ThreadRepository:
    """Repository helpers for relay threads.

    Mutators change the loaded row and flush; the caller's unit of work
    commits. Read-modify-write helpers expect the row to have been loaded
    inside the thread's critical section.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_thread(self, thread_id: str, *, for_update: bool = False) -> Thread | None:
        stmt = select(Thread).where(Thread.id == thread_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_thread_for_user(self, user_id: str) -> Thread | None:
        stmt = (
            select(Thread)
            .where(Thread.user_id == user_id, Thread.status == int(ThreadStatus.OPEN))
            .order_by(Thread.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_thread_by_channel(self, channel_id: str) -> Thread | None:
        stmt = select(Thread).where(Thread.channel_id == channel_id, ~Thread.closed)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def count_closed_threads_by_user(self, user_id: str) -> int:
        stmt = select(func.count(Thread.id)).where(Thread.user_id == user_id, Thread.closed)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def list_due_scheduled_closes(self, now: datetime) -> List[Thread]:
        stmt = (
            select(Thread)
            .where(
                Thread.status == int(ThreadStatus.OPEN),
                Thread.scheduled_close_at.is_not(None),
                Thread.scheduled_close_at <= now,
            )
            .order_by(Thread.scheduled_close_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_thread(
        self,
        user: PlatformUser,
        channel_id: Optional[str],
    ) -> Thread:
        existing = await self.get_open_thread_for_user(user.id)
        if existing:
            return existing

        thread = Thread(
            status=int(ThreadStatus.OPEN),
            user_id=user.id,
            user_name=user.tag,
            channel_id=channel_id,
        )
        self.db.add(thread)
        await self.db.flush()
        return thread

    async def set_status(self, thread: Thread, status: ThreadStatus) -> Thread:
        thread.status = int(status)
        await self.db.flush()
        return thread

    async def set_scheduled_close(self, thread: Thread, at: datetime, requested_by: PlatformUser) -> Thread:
        thread.scheduled_close_at = as_utc(at)
        thread.scheduled_close_id = requested_by.id
        thread.scheduled_close_name = requested_by.username
        thread.scheduled_close_discriminator = requested_by.discriminator
        await self.db.flush()
        return thread

    async def clear_scheduled_close(self, thread: Thread) -> Thread:
        thread.scheduled_close_at = None
        thread.scheduled_close_id = None
        thread.scheduled_close_name = None
        thread.scheduled_close_discriminator = None
        await self.db.flush()
        return thread

    async def mark_closed(self, thread: Thread, closer: PlatformUser, closed_at: datetime) -> Thread:
        thread.status = int(ThreadStatus.CLOSED)
        thread.closed_at = as_utc(closed_at)
        thread.closed_by_id = closer.id
        thread.closed_by_name = closer.tag
        thread.alert_users = None
        thread.staff_role_overrides = None
        await self.clear_scheduled_close(thread)
        return thread

    async def set_alert(self, thread: Thread, user_id: str, enabled: bool) -> List[str]:
        alerts = thread.alert_user_ids()
        if enabled and user_id not in alerts:
            alerts.append(user_id)
        elif not enabled and user_id in alerts:
            alerts.remove(user_id)

        thread.alert_users = ", ".join(alerts) if alerts else None
        await self.db.flush()
        return alerts

    async def set_role_override(self, thread: Thread, user_id: str, role_id: str) -> dict[str, str]:
        overrides = thread.role_overrides()
        overrides[user_id] = role_id
        thread.staff_role_overrides = json.dumps(overrides)
        await self.db.flush()
        return overrides

    async def delete_role_override(self, thread: Thread, user_id: str) -> bool:
        overrides = thread.role_overrides()
        if user_id not in overrides:
            return False

        del overrides[user_id]
        thread.staff_role_overrides = json.dumps(overrides) if overrides else None
        await self.db.flush()
        return True


__all__ = ["ThreadRepository"]
