from . import threads  # noqa: F401

__all__ = [
    "threads",
]
