from .enums import PendingCloseOutcome, RelayStatus, ThreadMessageType, ThreadStatus
from .relay import (
    ComposedMessage,
    DisplayIdentity,
    PlainText,
    RelayResult,
    RichContent,
    SystemContent,
    as_system_content,
)
from .thread import ThreadMessageResponse, ThreadResponse, ThreadTranscriptResponse

__all__ = [
    "ThreadStatus",
    "ThreadMessageType",
    "RelayStatus",
    "PendingCloseOutcome",
    "PlainText",
    "RichContent",
    "SystemContent",
    "as_system_content",
    "DisplayIdentity",
    "ComposedMessage",
    "RelayResult",
    "ThreadMessageResponse",
    "ThreadResponse",
    "ThreadTranscriptResponse",
]
