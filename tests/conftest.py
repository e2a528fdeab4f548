import itertools
import os
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time, so the database must be chosen first.
_DB_DIR = Path(tempfile.mkdtemp(prefix="thread-relay-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'relay.db'}"
os.environ.setdefault("SELF_URL", "https://logs.example")

from errors import RelayChannelGoneError  # noqa: E402
from infrastructure.database.database import create_tables, drop_tables, engine  # noqa: E402
from infrastructure.gateway.gateway import (  # noqa: E402
    Attachment,
    Member,
    OutgoingFile,
    PlatformUser,
    Role,
    SentMessage,
)
from services.thread import RelayEngine  # noqa: E402

BOT = PlatformUser(id="bot", username="Relay", discriminator="0001")
USER = PlatformUser(
    id="u-1",
    username="alice",
    discriminator="1234",
    created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
)
MOD = PlatformUser(id="m-1", username="mod", discriminator="0042")
GUILD_ROLES = {
    "r-admin": Role(id="r-admin", name="Admin", position=10, color=0xFF0000),
    "r-mod": Role(id="r-mod", name="Moderator", position=5),
    "r-member": Role(id="r-member", name="Member", position=1),
}


@dataclass
class _Sent:
    channel_id: str
    content: str
    files: list
    embed: Optional[dict[str, Any]]
    message: SentMessage


@dataclass
class _FakeGateway:
    closed_dms: set = field(default_factory=set)
    gone_channels: set = field(default_factory=set)
    fail_channel_delete: bool = False
    sent: list = field(default_factory=list)
    deleted_messages: list = field(default_factory=list)
    deleted_channels: list = field(default_factory=list)

    def __post_init__(self) -> None:
        self._ids = itertools.count(1000)

    @property
    def self_user(self) -> PlatformUser:
        return BOT

    async def open_direct_channel(self, user_id: str) -> Optional[str]:
        if user_id in self.closed_dms:
            return None
        return f"dm-{user_id}"

    async def send(self, channel_id, content, files=(), embed=None) -> SentMessage:
        if channel_id in self.gone_channels:
            raise RelayChannelGoneError(channel_id)
        message = SentMessage(id=str(next(self._ids)), channel_id=channel_id)
        self.sent.append(_Sent(channel_id, content, list(files), embed, message))
        return message

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        self.deleted_messages.append((channel_id, message_id))

    async def delete_channel(self, channel_id: str, reason: Optional[str] = None) -> None:
        if self.fail_channel_delete:
            raise RuntimeError("missing permissions")
        self.deleted_channels.append(channel_id)
        self.gone_channels.add(channel_id)

    def sent_to(self, channel_id: str) -> list:
        return [record for record in self.sent if record.channel_id == channel_id]

    def contents(self, channel_id: str) -> list:
        return [record.content for record in self.sent_to(channel_id)]


class _FakeAttachmentStore:
    def __init__(self) -> None:
        self.saved: list = []

    async def save(self, attachment: Attachment) -> str:
        self.saved.append(attachment.id)
        return f"https://files.example/{attachment.id}/{attachment.filename}"

    async def to_file(self, attachment: Attachment) -> OutgoingFile:
        return OutgoingFile(filename=attachment.filename, data=b"x" * min(attachment.size, 16))


def make_member(role_ids=("r-mod", "r-admin"), nick: Optional[str] = "Moddy", user: PlatformUser = MOD) -> Member:
    return Member(user=user, role_ids=list(role_ids), guild_roles=dict(GUILD_ROLES), nick=nick)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def gateway():
    return _FakeGateway()


@pytest.fixture
def attachment_store():
    return _FakeAttachmentStore()


@pytest.fixture
def member():
    return make_member()


@pytest.fixture
async def fresh_db(anyio_backend):
    await drop_tables()
    await create_tables()
    yield
    await engine.dispose()


@pytest.fixture
async def relay(fresh_db, gateway, attachment_store):
    relay_engine = RelayEngine(
        gateway,
        attachment_store,
        timestamps=False,
        use_nicknames=False,
        staff_role_ids=[],
        relay_small_attachments=False,
        guard_seconds=30,
        notice_ttl=0,
        send_timeout=1,
        command_prefix="!",
        self_url="https://logs.example/",
        log_channel_id="log-channel",
    )
    yield relay_engine
    await relay_engine.aclose()


@pytest.fixture
async def thread(relay):
    return await relay.open_thread(USER, "relay-1")


@pytest.fixture
def remote_user():
    return USER


@pytest.fixture
def moderator():
    return MOD


@pytest.fixture
def bot_user():
    return BOT


@pytest.fixture
def member_factory():
    return make_member
