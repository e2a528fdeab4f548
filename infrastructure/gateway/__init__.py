from .attachments import AttachmentStore
from .gateway import (
    Attachment,
    InboundMessage,
    Member,
    OutgoingFile,
    PlatformGateway,
    PlatformUser,
    Role,
    SentMessage,
)

__all__ = [
    "Attachment",
    "AttachmentStore",
    "InboundMessage",
    "Member",
    "OutgoingFile",
    "PlatformGateway",
    "PlatformUser",
    "Role",
    "SentMessage",
]
