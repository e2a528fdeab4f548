from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from infrastructure.gateway.gateway import Attachment

EMBED_PLACEHOLDER = "<message contains embeds>"

_DURATION_UNITS = (
    ("year", 365 * 24 * 3600),
    ("month", 30 * 24 * 3600),
    ("week", 7 * 24 * 3600),
    ("day", 24 * 3600),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def get_timestamp(at: Optional[datetime] = None) -> str:
    """HH:MM in UTC."""
    moment = at or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%H:%M")


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_attachment(attachment: Attachment, url: str) -> str:
    return f"**Attachment:** {attachment.filename} ({format_file_size(attachment.size)})\n{url}"


def join_mentions(user_ids: Iterable[str]) -> str:
    """``<@a>``, ``<@a> and <@b>``, ``<@a>, <@b> and <@c>``."""
    mentions = [f"<@{user_id}>" for user_id in user_ids]
    if len(mentions) <= 1:
        return "".join(mentions)
    return ", ".join(mentions[:-1]) + " and " + mentions[-1]


def format_duration(delta: timedelta, largest: int = 2) -> str:
    remaining = max(int(delta.total_seconds()), 0)
    parts: list[str] = []
    for name, seconds in _DURATION_UNITS:
        amount, remaining = divmod(remaining, seconds)
        if amount:
            parts.append(f"{amount} {name}{'' if amount == 1 else 's'}")
        if len(parts) == largest:
            break
    return ", ".join(parts) or "0 seconds"
