"""Relay engine: the public contract of a thread.

Every outbound send goes to the user's DM first and to the relay channel
second. A DM that cannot be delivered leaves no relay-side copy and no
transcript row; a relay channel that has vanished after the DM went out
closes the thread and leaves the DM in place.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union

from config import settings
from errors import DeliveryUnreachableError, RelayChannelGoneError, ThreadClosedError
from infrastructure.database.models.threads import Thread, ThreadMessage, as_utc
from infrastructure.events import EventSink, event_broadcaster
from infrastructure.gateway.attachments import AttachmentStore
from infrastructure.gateway.gateway import (
    Attachment,
    InboundMessage,
    Member,
    PlatformGateway,
    PlatformUser,
    SentMessage,
)
from schemas.enums import PendingCloseOutcome, RelayStatus, ThreadMessageType
from schemas.relay import (
    ComposedMessage,
    DisplayIdentity,
    RelayResult,
    RichContent,
    SystemContent,
    as_system_content,
)
from services.thread.alerts import AlertEvaluator
from services.thread.composer import MessageComposer
from services.thread.dispatch import ThreadDispatcher
from services.thread.formatting import format_duration
from services.thread.identity import IdentityResolver
from services.thread.lifecycle import LifecycleManager
from services.thread.scheduler import CloseScheduler
from services.thread.store import ThreadStore

logger = logging.getLogger(__name__)

AUTO_CLOSED_NOTICE = (
    "The current thread was automatically closed due to an internal error. "
    "Please send another message to open a new thread."
)
DEFAULT_INFO_COLOR = 0x337FD5


class RelayEngine:
    """Owns thread state and relays messages between a user and the staff."""

    def __init__(
        self,
        gateway: PlatformGateway,
        attachment_store: AttachmentStore,
        *,
        store: Optional[ThreadStore] = None,
        events: Optional[EventSink] = None,
        timestamps: bool = settings.THREAD_TIMESTAMPS,
        use_nicknames: bool = settings.USE_NICKNAMES,
        staff_role_ids: Optional[Sequence[str]] = None,
        relay_small_attachments: bool = settings.RELAY_SMALL_ATTACHMENTS_AS_ATTACHMENTS,
        small_attachment_limit: int = settings.SMALL_ATTACHMENT_LIMIT,
        guard_seconds: float = settings.CLOSE_GUARD_SECONDS,
        notice_ttl: float = settings.NOTICE_TTL_SECONDS,
        send_timeout: float = settings.SEND_TIMEOUT_SECONDS,
        command_prefix: str = settings.COMMAND_PREFIX,
        self_url: str = settings.SELF_URL,
        log_channel_id: Optional[str] = settings.LOG_CHANNEL_ID,
        sweep_interval: float = settings.CLOSE_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.store = store or ThreadStore(events=events)
        self.dispatcher = ThreadDispatcher(gateway, self.store, send_timeout=send_timeout)
        self.identity = IdentityResolver(self.store, staff_role_ids=staff_role_ids, use_nicknames=use_nicknames)
        self.composer = MessageComposer(
            attachment_store,
            timestamps=timestamps,
            relay_small_attachments=relay_small_attachments,
            small_attachment_limit=small_attachment_limit,
        )
        self.lifecycle = LifecycleManager(
            self.store,
            self.dispatcher,
            guard_seconds=guard_seconds,
            notice_ttl=notice_ttl,
            command_prefix=command_prefix,
        )
        self.alerts = AlertEvaluator(self.store, self.dispatcher)
        self.self_url = self_url.rstrip("/")
        self.notice_ttl = notice_ttl
        self.scheduler = CloseScheduler(self, log_channel_id=log_channel_id, interval=sweep_interval)

    # Threads

    async def open_thread(self, user: PlatformUser, channel_id: str) -> Thread:
        """Return the user's open thread, creating one bound to ``channel_id`` if none exists."""
        thread = await self.store.create_thread(user, channel_id)
        logger.info("Thread %s open for %s in channel %s", thread.id, user.tag, thread.channel_id)
        return thread

    async def get_thread(self, thread_id: str) -> Thread:
        return await self.store.get_thread(thread_id)

    async def find_open_thread(self, user_id: str) -> Thread | None:
        return await self.store.get_open_thread_for_user(user_id)

    async def find_thread_by_channel(self, channel_id: str) -> Thread | None:
        return await self.store.get_active_thread_by_channel(channel_id)

    def get_log_url(self, thread_id: str) -> str:
        return f"{self.self_url}/#thread/{thread_id}"

    async def _require_relayable(self, thread_id: str) -> Thread:
        thread = await self.store.get_thread(thread_id)
        if thread.closed:
            raise ThreadClosedError(thread_id)
        return thread

    # Relay

    async def relay_outbound(
        self,
        thread_id: str,
        operator: Member,
        text: str,
        attachments: Sequence[Attachment] = (),
        anonymous: bool = False,
    ) -> RelayResult:
        thread = await self._require_relayable(thread_id)
        identity = self.identity.resolve_display(operator, thread, anonymous)
        composed = await self.composer.compose_outbound(identity, text, attachments)
        return await self._deliver_outbound(thread, operator, identity, composed, anonymous)

    async def relay_command_help(
        self,
        thread_id: str,
        operator: Member,
        payload: Union[str, SystemContent],
        command_name: str,
        anonymous: bool = False,
    ) -> RelayResult:
        """Send a pre-built help message to the user; the log only records the marker."""
        thread = await self._require_relayable(thread_id)
        identity = self.identity.resolve_display(operator, thread, anonymous)
        composed = self.composer.compose_command_help(identity, command_name)
        content = as_system_content(payload)
        composed.dm_text = content.render()
        return await self._deliver_outbound(
            thread,
            operator,
            identity,
            composed,
            anonymous,
            dm_embed=getattr(content, "embed", None),
        )

    async def _deliver_outbound(
        self,
        thread: Thread,
        operator: Member,
        identity: DisplayIdentity,
        composed: ComposedMessage,
        anonymous: bool,
        dm_embed: Optional[dict] = None,
    ) -> RelayResult:
        try:
            dm_message = await self.dispatcher.send_to_user(
                thread, composed.dm_text, composed.dm_files, embed=dm_embed
            )
        except DeliveryUnreachableError as exc:
            logger.info("Reply to %s in thread %s not delivered: %s", thread.user_id, thread.id, exc)
            await self.post_non_log_message(thread.id, f"Error while replying to user: {exc}")
            return RelayResult(RelayStatus.UNDELIVERED, error=exc)

        try:
            channel_message = await self.dispatcher.send_to_channel(
                thread, composed.channel_text, composed.channel_files
            )
        except RelayChannelGoneError as exc:
            await self.lifecycle.handle_channel_gone(thread.id)
            return RelayResult(RelayStatus.CHANNEL_GONE, dm_message=dm_message, error=exc)

        entry = await self.store.append_message(
            thread,
            ThreadMessageType.TO_USER,
            user_id=operator.id,
            user_name=identity.log_name,
            body=composed.log_body,
            is_anonymous=anonymous,
            dm_message_id=dm_message.id,
            thread_message_id=channel_message.id,
        )
        await self.lifecycle.evaluate_pending_close(thread.id, activity=True)
        return RelayResult(
            RelayStatus.DELIVERED,
            dm_message=dm_message,
            channel_message=channel_message,
            entry_id=entry.id,
        )

    async def relay_inbound(self, thread_id: str, message: InboundMessage) -> RelayResult:
        thread = await self._require_relayable(thread_id)
        composed = await self.composer.compose_inbound(message)

        try:
            channel_message = await self.dispatcher.send_to_channel(
                thread, composed.channel_text, composed.channel_files
            )
        except RelayChannelGoneError as exc:
            await self.lifecycle.handle_channel_gone(thread.id)
            try:
                await self.dispatcher.send_direct(message.channel_id, AUTO_CLOSED_NOTICE)
            except DeliveryUnreachableError:
                logger.info("Could not tell %s that thread %s was auto-closed", thread.user_id, thread.id)
            return RelayResult(RelayStatus.CHANNEL_GONE, error=exc)

        entry = await self.store.append_message(
            thread,
            ThreadMessageType.FROM_USER,
            user_id=thread.user_id,
            user_name=message.author.tag,
            body=composed.log_body,
            dm_message_id=message.id,
            thread_message_id=channel_message.id,
        )

        try:
            await self.alerts.notify_new_message(thread)
        except RelayChannelGoneError:
            await self.lifecycle.handle_channel_gone(thread.id)
            return RelayResult(RelayStatus.CHANNEL_GONE, channel_message=channel_message, entry_id=entry.id)

        await self.lifecycle.evaluate_pending_close(thread.id, activity=True)
        return RelayResult(
            RelayStatus.DELIVERED,
            channel_message=channel_message,
            entry_id=entry.id,
        )

    # System notices

    async def post_system_notice(
        self,
        thread_id: str,
        content: Union[str, SystemContent],
    ) -> SentMessage | None:
        """Relay-channel only notice, logged as a System row.

        Returns None when the relay channel is gone; the thread is closed then.
        """
        thread = await self.store.get_thread(thread_id)
        try:
            return await self.dispatcher.post_system(thread, as_system_content(content))
        except RelayChannelGoneError:
            await self.lifecycle.handle_channel_gone(thread.id)
            return None

    async def post_transient_notice(
        self,
        thread_id: str,
        content: Union[str, SystemContent],
        ttl: Optional[float] = None,
    ) -> SentMessage | None:
        message = await self.post_system_notice(thread_id, content)
        if message is not None:
            self.dispatcher.delete_later(message, self.notice_ttl if ttl is None else ttl)
        return message

    async def post_non_log_message(self, thread_id: str, content: str) -> SentMessage | None:
        thread = await self.store.get_thread(thread_id)
        try:
            return await self.dispatcher.send_to_channel(thread, content)
        except RelayChannelGoneError:
            await self.lifecycle.handle_channel_gone(thread.id)
            return None

    async def post_thread_info(
        self,
        thread_id: str,
        user: PlatformUser,
        member: Optional[Member] = None,
        *,
        now: Optional[datetime] = None,
    ) -> SentMessage | None:
        now = now or datetime.now(timezone.utc)
        closed_count = await self.store.count_closed_threads(user.id)

        account_age = format_duration(now - as_utc(user.created_at)) if user.created_at else "UNAVAILABLE"
        member_for = format_duration(now - as_utc(member.joined_at)) if member and member.joined_at else "UNAVAILABLE"
        roles = member.roles() if member else []
        role_list = (", ".join(role.name for role in roles) or "NONE") if member else "UNAVAILABLE"
        colored = [role for role in roles if role.color]
        nickname = f" ({member.nick})" if member and member.nick else ""

        embed = {
            "fields": [
                {"name": "User", "value": f"{user.tag}{nickname}", "inline": True},
                {"name": "Account age", "value": account_age, "inline": True},
                {"name": "Member for", "value": member_for, "inline": True},
                {"name": "Thread ID", "value": thread_id, "inline": True},
                {"name": "Logs", "value": str(closed_count), "inline": True},
                {"name": f"Roles ({len(roles)})", "value": role_list, "inline": False},
            ],
            "footer": {"text": user.id},
            "timestamp": now.isoformat(),
            "color": colored[0].color if colored else DEFAULT_INFO_COLOR,
        }
        return await self.post_system_notice(thread_id, RichContent(content=user.mention, embed=embed))

    # Staff chatter inside the relay channel

    async def save_chat_message(self, thread_id: str, message: InboundMessage) -> ThreadMessage:
        return await self._save_incidental(thread_id, message, ThreadMessageType.CHAT)

    async def save_command_message(self, thread_id: str, message: InboundMessage) -> ThreadMessage:
        return await self._save_incidental(thread_id, message, ThreadMessageType.COMMAND)

    async def _save_incidental(
        self,
        thread_id: str,
        message: InboundMessage,
        message_type: ThreadMessageType,
    ) -> ThreadMessage:
        thread = await self.store.get_thread(thread_id)
        return await self.store.append_message(
            thread,
            message_type,
            user_id=message.author.id,
            user_name=message.author.tag,
            body=message.content,
            dm_message_id=message.id,
            thread_message_id=message.id,
        )

    async def update_chat_message(
        self,
        thread_id: str,
        message: InboundMessage,
        channel_message: SentMessage,
    ) -> bool:
        thread = await self.store.get_thread(thread_id)
        return await self.store.update_chat_message(
            thread,
            message.id,
            body=message.content,
            thread_message_id=channel_message.id,
        )

    async def find_by_dm_message(self, thread_id: str, dm_message_id: str) -> ThreadMessage | None:
        return await self.store.find_by_dm_message(thread_id, dm_message_id)

    async def find_by_thread_message(self, thread_id: str, thread_message_id: str) -> ThreadMessage | None:
        return await self.store.find_by_thread_message(thread_id, thread_message_id)

    async def get_transcript(self, thread_id: str) -> List[ThreadMessage]:
        return await self.store.transcript(thread_id)

    # Lifecycle

    async def schedule_close(
        self,
        thread_id: str,
        at: datetime,
        requested_by: PlatformUser,
        *,
        arm_timer: bool = True,
    ) -> Thread:
        thread = await self.lifecycle.schedule_close(thread_id, at, requested_by)
        if arm_timer:
            self.scheduler.arm(thread_id, at)
        return thread

    async def cancel_scheduled_close(self, thread_id: str) -> bool:
        self.scheduler.disarm(thread_id)
        return await self.lifecycle.cancel_scheduled_close(thread_id)

    async def evaluate_pending_close(self, thread_id: str, *, activity: bool, **kwargs) -> PendingCloseOutcome:
        return await self.lifecycle.evaluate_pending_close(thread_id, activity=activity, **kwargs)

    async def close(self, thread_id: str, closer: Optional[PlatformUser] = None, silent: bool = False) -> bool:
        self.scheduler.disarm(thread_id)
        return await self.lifecycle.close(thread_id, closer, silent=silent)

    async def suspend(self, thread_id: str) -> Thread:
        return await self.lifecycle.suspend(thread_id)

    async def unsuspend(self, thread_id: str) -> Thread:
        return await self.lifecycle.unsuspend(thread_id)

    # Watchers and role overrides

    async def set_alert(self, thread_id: str, user_id: str, enabled: bool) -> List[str]:
        return await self.alerts.set_alert(thread_id, user_id, enabled)

    async def set_staff_role_override(self, thread_id: str, operator_id: str, role_id: str) -> None:
        await self.identity.set_override(thread_id, operator_id, role_id)

    async def delete_staff_role_override(self, thread_id: str, operator_id: str) -> bool:
        return await self.identity.delete_override(thread_id, operator_id)

    async def get_staff_role_override(self, thread_id: str, operator_id: str) -> str | None:
        return await self.identity.get_override(thread_id, operator_id)

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.dispatcher.drain()


def build_relay_engine(gateway: PlatformGateway, attachment_store: AttachmentStore, **options) -> RelayEngine:
    """Build an engine that publishes to the broadcaster behind ``/api/threads/events/stream``."""
    options.setdefault("events", event_broadcaster)
    return RelayEngine(gateway, attachment_store, **options)
