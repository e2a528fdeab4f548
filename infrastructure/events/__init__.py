from .broadcaster import EventSink, NullEventSink, ThreadEventBroadcaster, event_broadcaster

__all__ = [
    "EventSink",
    "NullEventSink",
    "ThreadEventBroadcaster",
    "event_broadcaster",
]
