"""Typed exceptions raised by the relay engine and its collaborators.

Gateway implementations raise ``DeliveryUnreachableError`` and
``RelayChannelGoneError``; the engine decides how each one affects the
thread. ``StoreFailureError`` always reaches the caller.

Usage:
    try:
        await engine.relay_outbound(thread_id, member, text)
    except StoreFailureError as e:
        logger.error("Transcript write failed: %s", e)
"""


class ThreadRelayError(Exception):
    """Base exception for all relay engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class DeliveryUnreachableError(ThreadRelayError):
    """The direct-message side could not be opened, sent to, or timed out."""

    def __init__(self, user_id: str, reason: str | None = None) -> None:
        super().__init__(
            reason
            or "Could not open DMs with the user. They may have blocked the bot "
            "or set their privacy settings higher."
        )
        self.user_id = user_id


class RelayChannelGoneError(ThreadRelayError):
    """The shared relay channel no longer exists."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Relay channel '{channel_id}' not found")
        self.channel_id = channel_id


class StoreFailureError(ThreadRelayError):
    """A persistence error. Never swallowed."""


class TransientNoticeError(ThreadRelayError):
    """Deleting an ephemeral notice or a closed thread's channel failed."""


class ThreadNotFoundError(ThreadRelayError):
    """Thread id does not exist. Maps to HTTP 404."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread '{thread_id}' not found")
        self.thread_id = thread_id


class ThreadClosedError(ThreadRelayError):
    """Relay attempted on a thread that is already closed."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread '{thread_id}' is closed")
        self.thread_id = thread_id


class InvalidTransitionError(ThreadRelayError):
    """Lifecycle transition not allowed from the thread's current status."""

    def __init__(self, thread_id: str, current: str, requested: str) -> None:
        super().__init__(f"Thread '{thread_id}' cannot go from {current} to {requested}")
        self.thread_id = thread_id
        self.current = current
        self.requested = requested
