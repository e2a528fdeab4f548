from .thread_repository import ThreadRepository
from .thread_message_repository import ThreadMessageRepository

__all__ = [
    "ThreadRepository",
    "ThreadMessageRepository",
]
