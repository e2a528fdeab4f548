"""Error taxonomy for the thread relay engine."""

from errors.domain import (
    DeliveryUnreachableError,
    InvalidTransitionError,
    RelayChannelGoneError,
    StoreFailureError,
    ThreadClosedError,
    ThreadNotFoundError,
    ThreadRelayError,
    TransientNoticeError,
)

__all__ = [
    "ThreadRelayError",
    "DeliveryUnreachableError",
    "RelayChannelGoneError",
    "StoreFailureError",
    "TransientNoticeError",
    "ThreadNotFoundError",
    "ThreadClosedError",
    "InvalidTransitionError",
]
