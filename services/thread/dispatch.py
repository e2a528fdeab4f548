from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Sequence, TypeVar

from config import settings
from errors import DeliveryUnreachableError, TransientNoticeError
from infrastructure.database.models.threads import Thread
from infrastructure.gateway.gateway import OutgoingFile, PlatformGateway, SentMessage
from schemas.enums import ThreadMessageType
from schemas.relay import SystemContent
from services.thread.store import ThreadStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ThreadDispatcher:
    """Gateway calls for one thread's two sides, each bounded by a timeout.

    Channel-gone errors are raised to the caller, which decides whether the
    thread must be auto-closed.
    """

    def __init__(
        self,
        gateway: PlatformGateway,
        store: ThreadStore,
        *,
        send_timeout: float = settings.SEND_TIMEOUT_SECONDS,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.send_timeout = send_timeout
        self._background: set[asyncio.Task] = set()

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self.send_timeout)

    async def send_to_user(
        self,
        thread: Thread,
        content: str,
        files: Sequence[OutgoingFile] = (),
        embed: Optional[dict[str, Any]] = None,
    ) -> SentMessage:
        try:
            dm_channel_id = await self._bounded(self.gateway.open_direct_channel(thread.user_id))
            if not dm_channel_id:
                raise DeliveryUnreachableError(thread.user_id)
            return await self._bounded(self.gateway.send(dm_channel_id, content, files, embed))
        except asyncio.TimeoutError as exc:
            raise DeliveryUnreachableError(
                thread.user_id,
                f"Timed out after {self.send_timeout:g}s while messaging the user.",
            ) from exc

    async def send_direct(self, channel_id: str, content: str) -> SentMessage:
        return await self._bounded(self.gateway.send(channel_id, content))

    async def send_to_channel(
        self,
        thread: Thread,
        content: str,
        files: Sequence[OutgoingFile] = (),
        embed: Optional[dict[str, Any]] = None,
    ) -> SentMessage:
        return await self._bounded(self.gateway.send(thread.channel_id, content, files, embed))

    async def post_system(self, thread: Thread, content: SystemContent) -> SentMessage:
        """Send a system notice to the relay channel and log it."""
        embed = getattr(content, "embed", None)
        message = await self.send_to_channel(thread, content.render(), embed=embed)
        await self.store.append_message(
            thread,
            ThreadMessageType.SYSTEM,
            user_id=None,
            user_name="",
            body=content.log_body(),
            dm_message_id=message.id,
            thread_message_id=message.id,
        )
        return message

    def delete_later(self, message: SentMessage, delay: float) -> asyncio.Task:
        task = asyncio.create_task(self._delete_after(message, delay))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _delete_after(self, message: SentMessage, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._bounded(self.gateway.delete_message(message.channel_id, message.id))
        except Exception as exc:
            error = TransientNoticeError(f"Could not delete notice {message.id}: {exc}")
            logger.info("%s", error)

    async def delete_channel(self, channel_id: str, reason: str) -> None:
        try:
            await self._bounded(self.gateway.delete_channel(channel_id, reason))
        except Exception as exc:
            error = TransientNoticeError(f"Could not delete channel {channel_id}: {exc}")
            logger.warning("%s", error)

    async def drain(self) -> None:
        """Wait for pending notice deletions."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
