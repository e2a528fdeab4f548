from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.enums import ThreadMessageType, ThreadStatus


class ThreadMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    thread_id: str
    message_type: ThreadMessageType
    user_id: Optional[str] = None
    user_name: str = ""
    body: str = ""
    is_anonymous: bool = False
    dm_message_id: Optional[str] = None
    thread_message_id: Optional[str] = None
    created_at: datetime


class ThreadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ThreadStatus
    closed: bool
    user_id: str
    user_name: str
    channel_id: Optional[str] = None
    scheduled_close_at: Optional[datetime] = None
    scheduled_close_id: Optional[str] = None
    scheduled_close_name: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by_name: Optional[str] = None
    alert_users: List[str] = Field(default_factory=list, validation_alias="watchers")
    created_at: datetime


class ThreadTranscriptResponse(BaseModel):
    thread: ThreadResponse
    log_url: str
    messages: List[ThreadMessageResponse] = Field(default_factory=list)
