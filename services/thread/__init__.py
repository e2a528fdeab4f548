from .relay import RelayEngine, build_relay_engine
from .scheduler import CloseScheduler
from .store import ThreadStore

__all__ = ["RelayEngine", "CloseScheduler", "ThreadStore", "build_relay_engine"]
