from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from infrastructure.database.models.threads import Thread


@dataclass
class ThreadScope:
    thread_id: str
    channel_id: Optional[str]
    user_id: str

    @classmethod
    def of(cls, thread: "Thread") -> "ThreadScope":
        return cls(thread_id=thread.id, channel_id=thread.channel_id, user_id=thread.user_id)


@dataclass
class RequestContextBundle:
    db: "AsyncSession"
    scope: ThreadScope
