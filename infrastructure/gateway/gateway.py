from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence


@dataclass(slots=True)
class PlatformUser:
    """A chat platform account: a remote user, an operator, or the bot itself."""

    id: str
    username: str
    discriminator: str = "0"
    created_at: Optional[datetime] = None

    @property
    def tag(self) -> str:
        return f"{self.username}#{self.discriminator}"

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"


@dataclass(slots=True)
class Role:
    id: str
    name: str
    position: int = 0
    color: int = 0


@dataclass(slots=True)
class Member:
    """An operator as seen from the staff guild, with the guild's current roles."""

    user: PlatformUser
    role_ids: list[str] = field(default_factory=list)
    guild_roles: dict[str, Role] = field(default_factory=dict)
    nick: Optional[str] = None
    joined_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.user.id

    def roles(self) -> list[Role]:
        """Member's roles that still exist in the guild, highest position first."""
        found = [self.guild_roles[role_id] for role_id in self.role_ids if role_id in self.guild_roles]
        return sorted(found, key=lambda role: role.position, reverse=True)


@dataclass(slots=True)
class Attachment:
    id: str
    filename: str
    size: int
    url: Optional[str] = None


@dataclass(slots=True)
class OutgoingFile:
    filename: str
    data: bytes


@dataclass(slots=True)
class SentMessage:
    id: str
    channel_id: str


@dataclass(slots=True)
class InboundMessage:
    """A message received from the platform (DM from a user or staff chat)."""

    id: str
    channel_id: str
    author: PlatformUser
    content: str = ""
    timestamp: Optional[datetime] = None
    attachments: list[Attachment] = field(default_factory=list)
    embeds: list[dict[str, Any]] = field(default_factory=list)


class PlatformGateway(Protocol):
    """Connection to the chat platform.

    ``send`` raises ``RelayChannelGoneError`` when the channel no longer exists
    and ``DeliveryUnreachableError`` when a user cannot be messaged. Any other
    exception is a transport error and propagates unchanged.
    """

    @property
    def self_user(self) -> PlatformUser:
        """The bot account, used as the actor for automatic closes."""

    async def open_direct_channel(self, user_id: str) -> Optional[str]:
        """Return the DM channel id for the user, or None if DMs are closed."""

    async def send(
        self,
        channel_id: str,
        content: str,
        files: Sequence[OutgoingFile] = (),
        embed: Optional[dict[str, Any]] = None,
    ) -> SentMessage:
        """Post a message to a channel."""

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        """Delete a previously sent message."""

    async def delete_channel(self, channel_id: str, reason: Optional[str] = None) -> None:
        """Delete a channel."""
