from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from infrastructure.gateway.gateway import OutgoingFile, Role, SentMessage
from schemas.enums import RelayStatus


@dataclass(frozen=True)
class PlainText:
    text: str

    def render(self) -> str:
        return self.text

    def log_body(self) -> str:
        return self.text


@dataclass(frozen=True)
class RichContent:
    """Message text accompanied by a structured embed."""

    content: str
    embed: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        return self.content

    def log_body(self) -> str:
        return f"{self.content} <embed>".strip()


SystemContent = Union[PlainText, RichContent]


def as_system_content(value: Union[str, PlainText, RichContent]) -> SystemContent:
    if isinstance(value, (PlainText, RichContent)):
        return value
    return PlainText(value)


@dataclass(slots=True)
class DisplayIdentity:
    display_name: str
    log_name: str
    role: Optional[Role] = None


@dataclass(slots=True)
class ComposedMessage:
    """The three renditions of one relay event."""

    dm_text: str
    channel_text: str
    log_body: str
    dm_files: list[OutgoingFile] = field(default_factory=list)
    channel_files: list[OutgoingFile] = field(default_factory=list)


@dataclass(slots=True)
class RelayResult:
    status: RelayStatus
    dm_message: Optional[SentMessage] = None
    channel_message: Optional[SentMessage] = None
    entry_id: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def delivered(self) -> bool:
        return self.status is RelayStatus.DELIVERED
