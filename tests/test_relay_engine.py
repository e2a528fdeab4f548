import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import select

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from errors import ThreadClosedError, ThreadNotFoundError
from infrastructure.database.database import session_scope
from infrastructure.database.models.threads import Thread
from infrastructure.events import ThreadEventBroadcaster, event_broadcaster
from infrastructure.gateway.gateway import Attachment, InboundMessage, PlatformUser, SentMessage
from schemas.enums import RelayStatus, ThreadMessageType, ThreadStatus
from schemas.relay import RichContent
from services.thread import RelayEngine, build_relay_engine
from services.thread.relay import AUTO_CLOSED_NOTICE


def _inbound(user, content="hi", message_id="dm-msg-1", **kwargs):
    return InboundMessage(id=message_id, channel_id=f"dm-{user.id}", author=user, content=content, **kwargs)


def _relayed(message):
    return SentMessage(id=message.id, channel_id=message.channel_id)


@pytest.mark.anyio
async def test_reply_reaches_user_then_channel_then_log(relay, thread, gateway, member):
    result = await relay.relay_outbound(thread.id, member, "hello there")

    assert result.status is RelayStatus.DELIVERED
    assert result.delivered
    assert gateway.contents("dm-u-1") == ["**(mod) Admin:** hello there"]
    assert gateway.contents("relay-1") == ["**(mod) Admin:** hello there"]
    # DM goes out before the relay channel copy
    assert [record.channel_id for record in gateway.sent] == ["dm-u-1", "relay-1"]

    transcript = await relay.get_transcript(thread.id)
    assert len(transcript) == 1
    entry = transcript[0]
    assert entry.id == result.entry_id
    assert entry.message_type == ThreadMessageType.TO_USER
    assert entry.user_id == "m-1"
    assert entry.user_name == "(mod) Admin"
    assert entry.body == "hello there"
    assert entry.dm_message_id == result.dm_message.id
    assert entry.thread_message_id == result.channel_message.id


@pytest.mark.anyio
async def test_anonymous_reply_keeps_the_operator_in_the_log(relay, thread, gateway, member):
    await relay.relay_outbound(thread.id, member, "psst", anonymous=True)

    assert gateway.contents("dm-u-1") == ["**Admin:** psst"]
    assert gateway.contents("relay-1") == ["**(mod) Admin:** psst"]
    entry = (await relay.get_transcript(thread.id))[0]
    assert entry.is_anonymous is True
    assert entry.user_name == "(mod) Admin"


@pytest.mark.anyio
async def test_reply_attachments(relay, thread, gateway, member):
    attachment = Attachment(id="a-1", filename="shot.png", size=2048)

    await relay.relay_outbound(thread.id, member, "see", [attachment])

    dm = gateway.sent_to("dm-u-1")[0]
    assert [f.filename for f in dm.files] == ["shot.png"]
    assert "https://files.example/a-1/shot.png" in gateway.contents("relay-1")[0]
    entry = (await relay.get_transcript(thread.id))[0]
    assert entry.body.endswith("**Attachment:** shot.png (2.0 KB)\nhttps://files.example/a-1/shot.png")


@pytest.mark.anyio
async def test_unreachable_user_leaves_no_transcript_row(relay, thread, gateway, member):
    gateway.closed_dms.add("u-1")

    result = await relay.relay_outbound(thread.id, member, "hello?")

    assert result.status is RelayStatus.UNDELIVERED
    assert result.dm_message is None
    assert gateway.sent_to("dm-u-1") == []
    notices = gateway.contents("relay-1")
    assert len(notices) == 1
    assert notices[0].startswith("Error while replying to user: Could not open DMs with the user.")
    assert await relay.get_transcript(thread.id) == []


@pytest.mark.anyio
async def test_dm_timeout_counts_as_undelivered(relay, thread, gateway, member, monkeypatch):
    async def hanging_open(user_id):
        await asyncio.sleep(5)
        return f"dm-{user_id}"

    monkeypatch.setattr(gateway, "open_direct_channel", hanging_open)

    result = await relay.relay_outbound(thread.id, member, "are you there?")

    assert result.status is RelayStatus.UNDELIVERED
    assert result.dm_message is None
    assert gateway.sent_to("dm-u-1") == []
    notices = gateway.contents("relay-1")
    assert len(notices) == 1
    assert notices[0].startswith("Error while replying to user: Timed out after 1s")
    assert await relay.get_transcript(thread.id) == []


@pytest.mark.anyio
async def test_concurrent_opens_for_one_user_share_a_thread(relay, remote_user):
    first, second = await asyncio.gather(
        relay.open_thread(remote_user, "relay-a"),
        relay.open_thread(remote_user, "relay-b"),
    )

    assert first.id == second.id
    assert (await relay.find_open_thread(remote_user.id)).id == first.id
    async with session_scope() as db:
        rows = (await db.execute(select(Thread).where(Thread.user_id == remote_user.id))).scalars().all()
    assert [row.id for row in rows] == [first.id]
    assert len(relay.store.locks) == 0


@pytest.mark.anyio
async def test_deleted_channel_closes_thread_but_keeps_the_dm(relay, thread, gateway, member, bot_user):
    gateway.gone_channels.add("relay-1")

    result = await relay.relay_outbound(thread.id, member, "are you there")

    assert result.status is RelayStatus.CHANNEL_GONE
    assert result.dm_message is not None
    assert gateway.contents("dm-u-1") == ["**(mod) Admin:** are you there"]
    assert await relay.get_transcript(thread.id) == []

    closed = await relay.get_thread(thread.id)
    assert closed.status == ThreadStatus.CLOSED
    assert closed.closed_by_id == bot_user.id
    assert await relay.find_open_thread("u-1") is None


@pytest.mark.anyio
async def test_inbound_message_is_logged_and_pings_watchers(relay, thread, gateway, remote_user):
    await relay.set_alert(thread.id, "m-2", True)
    await relay.set_alert(thread.id, "m-3", True)

    result = await relay.relay_inbound(thread.id, _inbound(remote_user, "I need help"))

    assert result.status is RelayStatus.DELIVERED
    assert gateway.contents("relay-1") == [
        "**alice#1234:** I need help",
        "<@m-2> and <@m-3>, there is a new message from **alice#1234**!",
    ]
    transcript = await relay.get_transcript(thread.id)
    assert [entry.message_type for entry in transcript] == [ThreadMessageType.FROM_USER, ThreadMessageType.SYSTEM]
    assert transcript[0].user_id == "u-1"
    assert transcript[0].user_name == "alice#1234"
    assert transcript[0].dm_message_id == "dm-msg-1"


@pytest.mark.anyio
async def test_inbound_into_deleted_channel_tells_the_user(relay, thread, gateway, remote_user):
    gateway.gone_channels.add("relay-1")

    result = await relay.relay_inbound(thread.id, _inbound(remote_user))

    assert result.status is RelayStatus.CHANNEL_GONE
    assert gateway.contents("dm-u-1") == [AUTO_CLOSED_NOTICE]
    assert await relay.get_transcript(thread.id) == []
    assert (await relay.get_thread(thread.id)).closed


@pytest.mark.anyio
async def test_transcript_follows_call_order(relay, thread, member, remote_user):
    await relay.relay_inbound(thread.id, _inbound(remote_user, "one", "dm-msg-1"))
    await relay.relay_outbound(thread.id, member, "two")
    await relay.relay_inbound(thread.id, _inbound(remote_user, "three", "dm-msg-3"))
    await relay.post_system_notice(thread.id, "four")

    transcript = await relay.get_transcript(thread.id)
    assert [entry.body for entry in transcript] == ["one", "two", "three", "four"]
    ids = [entry.id for entry in transcript]
    assert ids == sorted(ids)


@pytest.mark.anyio
async def test_closed_thread_refuses_relays(relay, thread, member, remote_user):
    await relay.close(thread.id, silent=True)

    with pytest.raises(ThreadClosedError):
        await relay.relay_outbound(thread.id, member, "late reply")
    with pytest.raises(ThreadClosedError):
        await relay.relay_inbound(thread.id, _inbound(remote_user))


@pytest.mark.anyio
async def test_unknown_thread(relay, member):
    with pytest.raises(ThreadNotFoundError):
        await relay.relay_outbound("missing", member, "hello")


@pytest.mark.anyio
async def test_command_help_sends_payload_and_logs_marker(relay, thread, gateway, member):
    payload = RichContent(content="", embed={"title": "close", "description": "Close the thread"})

    result = await relay.relay_command_help(thread.id, member, payload, "close")

    assert result.delivered
    dm = gateway.sent_to("dm-u-1")[0]
    assert dm.embed == {"title": "close", "description": "Close the thread"}
    assert gateway.contents("relay-1") == ["**(mod) Admin:** [Command Help: close]"]
    entry = (await relay.get_transcript(thread.id))[0]
    assert entry.message_type == ThreadMessageType.TO_USER
    assert entry.body == "[Command Help: close]"


@pytest.mark.anyio
async def test_staff_chat_is_logged_and_corrected(relay, thread, moderator):
    chat = InboundMessage(id="c-1", channel_id="relay-1", author=moderator, content="internal")
    command = InboundMessage(id="c-2", channel_id="relay-1", author=moderator, content="!logs")

    await relay.save_chat_message(thread.id, chat)
    await relay.save_command_message(thread.id, command)

    edited = InboundMessage(id="c-1", channel_id="relay-1", author=moderator, content="internal, edited")
    assert await relay.update_chat_message(thread.id, edited, _relayed(chat)) is True
    assert await relay.update_chat_message(thread.id, command, _relayed(command)) is False

    entry = await relay.find_by_dm_message(thread.id, "c-1")
    assert entry.body == "internal, edited"
    assert entry.message_type == ThreadMessageType.CHAT
    assert (await relay.find_by_thread_message(thread.id, "c-2")).message_type == ThreadMessageType.COMMAND


@pytest.mark.anyio
async def test_non_log_message_and_transient_notice(relay, thread, gateway):
    await relay.post_non_log_message(thread.id, "just so you know")
    notice = await relay.post_transient_notice(thread.id, "temporary", ttl=0)
    await relay.dispatcher.drain()

    assert gateway.contents("relay-1") == ["just so you know", "temporary"]
    assert gateway.deleted_messages == [("relay-1", notice.id)]
    assert [entry.body for entry in await relay.get_transcript(thread.id)] == ["temporary"]


@pytest.mark.anyio
async def test_thread_info_notice(relay, thread, gateway, remote_user, member):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    member.joined_at = now - timedelta(days=10)

    await relay.post_thread_info(thread.id, remote_user, member, now=now)

    record = gateway.sent_to("relay-1")[0]
    assert record.content == "<@u-1>"
    fields = {field["name"]: field["value"] for field in record.embed["fields"]}
    assert fields["User"] == "alice#1234 (Moddy)"
    assert fields["Account age"] == "4 years, 1 day"
    assert fields["Member for"] == "1 week, 3 days"
    assert fields["Thread ID"] == thread.id
    assert fields["Logs"] == "0"
    assert fields["Roles (2)"] == "Admin, Moderator"
    assert record.embed["color"] == 0xFF0000
    entry = (await relay.get_transcript(thread.id))[0]
    assert entry.body == "<@u-1> <embed>"


@pytest.mark.anyio
async def test_log_url(relay, thread):
    assert relay.get_log_url(thread.id) == f"https://logs.example/#thread/{thread.id}"


@pytest.mark.anyio
async def test_events_are_published_for_appends_and_close(fresh_db, gateway, attachment_store, member):
    broadcaster = ThreadEventBroadcaster()
    subscriber_id, queue = broadcaster.subscribe()
    relay = RelayEngine(gateway, attachment_store, events=broadcaster, staff_role_ids=[], timestamps=False)
    try:
        thread = await relay.open_thread(PlatformUser(id="u-9", username="zed"), "relay-9")
        await relay.relay_outbound(thread.id, member, "hey")
        await relay.close(thread.id, silent=True)

        first = queue.get_nowait()
        assert first["event"] == "newMessage"
        assert first["data"]["message"]["body"] == "hey"
        second = queue.get_nowait()
        assert second["event"] == "threadClose"
        assert second["data"]["thread"]["id"] == thread.id
        assert second["data"]["thread"]["closed"] is True
        assert queue.empty()
    finally:
        broadcaster.unsubscribe(subscriber_id)
        await relay.aclose()


@pytest.mark.anyio
async def test_built_engine_publishes_to_the_shared_stream(fresh_db, gateway, attachment_store, member):
    subscriber_id, queue = event_broadcaster.subscribe()
    relay = build_relay_engine(gateway, attachment_store, staff_role_ids=[], timestamps=False)
    try:
        thread = await relay.open_thread(PlatformUser(id="u-8", username="yan"), "relay-8")
        await relay.relay_outbound(thread.id, member, "over the stream")

        event = queue.get_nowait()
        assert event["event"] == "newMessage"
        assert event["data"]["message"]["body"] == "over the stream"
    finally:
        event_broadcaster.unsubscribe(subscriber_id)
        await relay.aclose()
