from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.ext.hybrid import hybrid_property

from infrastructure.database.database import Base
from schemas.enums import ThreadStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Thread(Base):
    __tablename__ = "threads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(Integer, nullable=False, default=int(ThreadStatus.OPEN), index=True)
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    channel_id = Column(String(64), nullable=True, index=True)

    scheduled_close_at = Column(DateTime(timezone=True), nullable=True, index=True)
    scheduled_close_id = Column(String(64), nullable=True)
    scheduled_close_name = Column(String(255), nullable=True)
    scheduled_close_discriminator = Column(String(16), nullable=True)

    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_id = Column(String(64), nullable=True)
    closed_by_name = Column(String(255), nullable=True)

    alert_users = Column(Text, nullable=True)
    staff_role_overrides = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    @hybrid_property
    def closed(self) -> bool:
        return self.status == ThreadStatus.CLOSED

    @closed.inplace.expression
    @classmethod
    def _closed_expression(cls):
        return cls.status == int(ThreadStatus.CLOSED)

    @property
    def has_scheduled_close(self) -> bool:
        return self.scheduled_close_at is not None

    def alert_user_ids(self) -> list[str]:
        if not self.alert_users:
            return []
        return [user_id for user_id in self.alert_users.split(", ") if user_id]

    @property
    def watchers(self) -> list[str]:
        return self.alert_user_ids()

    def role_overrides(self) -> dict[str, str]:
        if not self.staff_role_overrides:
            return {}
        return json.loads(self.staff_role_overrides)

    def get_staff_role_override(self, user_id: str) -> str | None:
        return self.role_overrides().get(user_id)


class ThreadMessage(Base):
    __tablename__ = "thread_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(36), ForeignKey("threads.id", ondelete="RESTRICT"), nullable=False, index=True)
    message_type = Column(Integer, nullable=False)
    user_id = Column(String(64), nullable=True)
    user_name = Column(String(255), nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    is_anonymous = Column(Boolean, nullable=False, default=False)
    dm_message_id = Column(String(64), nullable=True, index=True)
    thread_message_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_thread_messages_thread_order", "thread_id", "created_at", "id"),
    )
