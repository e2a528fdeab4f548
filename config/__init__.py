"""
Convenience imports for configuration.

Allows callers to simply do ``from config import settings``.
"""

from . import settings

__all__ = ["settings"]
