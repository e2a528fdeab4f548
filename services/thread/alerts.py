from __future__ import annotations

from typing import Iterable, List, Optional

from errors import ThreadNotFoundError
from infrastructure.database.models.threads import Thread
from infrastructure.database.repositories import ThreadRepository
from infrastructure.gateway.gateway import SentMessage
from schemas.relay import PlainText
from services.thread.dispatch import ThreadDispatcher
from services.thread.formatting import join_mentions
from services.thread.store import ThreadStore


def format_alert_mentions(watchers: Iterable[str], exclude_id: Optional[str] = None) -> str:
    return join_mentions(user_id for user_id in watchers if user_id != exclude_id)


class AlertEvaluator:
    """Watchers who get pinged when the user writes in."""

    def __init__(self, store: ThreadStore, dispatcher: ThreadDispatcher) -> None:
        self.store = store
        self.dispatcher = dispatcher

    async def set_alert(self, thread_id: str, user_id: str, enabled: bool) -> List[str]:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await repo.get_thread(thread_id, for_update=True)
            if thread is None:
                raise ThreadNotFoundError(thread_id)
            return await repo.set_alert(thread, user_id, enabled)

    async def get_alerts(self, thread_id: str) -> List[str]:
        thread = await self.store.get_thread(thread_id)
        return thread.alert_user_ids()

    def build_notice(self, thread: Thread) -> str | None:
        mentions = format_alert_mentions(thread.alert_user_ids(), thread.scheduled_close_id)
        if not mentions:
            return None
        return f"{mentions}, there is a new message from **{thread.user_name}**!"

    async def notify_new_message(self, thread: Thread) -> SentMessage | None:
        """Ping the watchers. Raises ``RelayChannelGoneError`` like any channel send."""
        notice = self.build_notice(thread)
        if notice is None:
            return None
        return await self.dispatcher.post_system(thread, PlainText(notice))
