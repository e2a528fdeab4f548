from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ThreadLockRegistry:
    """One asyncio.Lock per key, normally a thread id.

    Every read-modify-write on a thread row and every transcript append runs
    under its thread's lock. Different threads never contend. Thread
    creation holds a `user:<id>` key instead. A lock is
    dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, thread_id: str) -> AsyncIterator[None]:
        slot = self._slots.get(thread_id)
        if slot is None:
            slot = self._slots[thread_id] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[thread_id]

    def __len__(self) -> int:
        return len(self._slots)
