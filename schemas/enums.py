from enum import IntEnum, Enum


class ThreadStatus(IntEnum):
    OPEN = 1
    CLOSED = 2
    SUSPENDED = 3


class ThreadMessageType(IntEnum):
    SYSTEM = 1
    CHAT = 2
    FROM_USER = 3
    TO_USER = 4
    LEGACY = 5
    COMMAND = 6


class RelayStatus(str, Enum):
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"
    CHANNEL_GONE = "channel_gone"


class PendingCloseOutcome(str, Enum):
    NONE = "none"
    CANCELLED = "cancelled"
    REMINDED = "reminded"
    CLOSED = "closed"
