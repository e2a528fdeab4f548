from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from config import settings
from infrastructure.gateway.attachments import AttachmentStore
from infrastructure.gateway.gateway import Attachment, InboundMessage
from schemas.relay import ComposedMessage, DisplayIdentity
from services.thread.formatting import EMBED_PLACEHOLDER, format_attachment, get_timestamp


class MessageComposer:
    """Renders one relay event for the user's DM, the relay channel and the transcript."""

    def __init__(
        self,
        attachment_store: AttachmentStore,
        *,
        timestamps: bool = settings.THREAD_TIMESTAMPS,
        relay_small_attachments: bool = settings.RELAY_SMALL_ATTACHMENTS_AS_ATTACHMENTS,
        small_attachment_limit: int = settings.SMALL_ATTACHMENT_LIMIT,
    ) -> None:
        self.attachment_store = attachment_store
        self.timestamps = timestamps
        self.relay_small_attachments = relay_small_attachments
        self.small_attachment_limit = small_attachment_limit

    async def compose_outbound(
        self,
        identity: DisplayIdentity,
        text: str,
        attachments: Sequence[Attachment] = (),
        *,
        at: Optional[datetime] = None,
    ) -> ComposedMessage:
        channel_text = f"**{identity.log_name}:** {text}"
        if self.timestamps:
            channel_text = f"[{get_timestamp(at)}] » {channel_text}"

        composed = ComposedMessage(
            dm_text=f"**{identity.display_name}:** {text}",
            channel_text=channel_text,
            log_body=text,
        )
        for attachment in attachments:
            composed.dm_files.append(await self.attachment_store.to_file(attachment))
        await self._attach(composed, attachments)
        return composed

    async def compose_inbound(self, message: InboundMessage) -> ComposedMessage:
        content = message.content
        if not content.strip() and message.embeds:
            content = EMBED_PLACEHOLDER

        speaker = message.author.tag
        channel_text = f"**{speaker}:** {content}"
        if self.timestamps:
            channel_text = f"[{get_timestamp(message.timestamp)}] « {channel_text}"

        composed = ComposedMessage(
            dm_text=f"**{speaker}:** {content}",
            channel_text=channel_text,
            log_body=content,
        )
        await self._attach(composed, message.attachments)
        return composed

    def compose_command_help(
        self,
        identity: DisplayIdentity,
        command_name: str,
        *,
        at: Optional[datetime] = None,
    ) -> ComposedMessage:
        marker = f"[Command Help: {command_name}]"
        channel_text = f"**{identity.log_name}:** {marker}"
        if self.timestamps:
            channel_text = f"[{get_timestamp(at)}] » {channel_text}"
        return ComposedMessage(
            dm_text=f"**{identity.display_name}:** {marker}",
            channel_text=channel_text,
            log_body=marker,
        )

    async def _attach(self, composed: ComposedMessage, attachments: Sequence[Attachment]) -> None:
        for attachment in attachments:
            url = await self.attachment_store.save(attachment)
            formatted = "\n\n" + format_attachment(attachment, url)
            # Logs always contain the link
            composed.log_body += formatted

            if self._relays_as_file(attachment):
                composed.channel_files.append(await self.attachment_store.to_file(attachment))
            else:
                composed.channel_text += formatted

    def _relays_as_file(self, attachment: Attachment) -> bool:
        return self.relay_small_attachments and attachment.size <= self.small_attachment_limit

