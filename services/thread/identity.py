from __future__ import annotations

import logging
from typing import Optional, Sequence

from config import settings
from errors import ThreadNotFoundError
from infrastructure.database.models.threads import Thread
from infrastructure.database.repositories import ThreadRepository
from infrastructure.gateway.gateway import Member, Role
from schemas.relay import DisplayIdentity
from services.thread.store import ThreadStore

logger = logging.getLogger(__name__)

DEFAULT_ROLE_LABEL = "Staff"


class IdentityResolver:
    """Works out how an operator is shown to the user and in the transcript."""

    def __init__(
        self,
        store: ThreadStore,
        *,
        staff_role_ids: Optional[Sequence[str]] = None,
        use_nicknames: bool = settings.USE_NICKNAMES,
    ) -> None:
        self.store = store
        self.staff_role_ids = set(settings.STAFF_ROLE_IDS if staff_role_ids is None else staff_role_ids)
        self.use_nicknames = use_nicknames

    def default_main_role(self, member: Member) -> Role | None:
        for role in member.roles():
            if not self.staff_role_ids or role.id in self.staff_role_ids:
                return role
        return None

    def main_role(self, member: Member, thread: Thread) -> Role | None:
        override_id = thread.get_staff_role_override(member.id)
        if override_id:
            override = member.guild_roles.get(override_id)
            if override:
                return override
            logger.debug("Ignoring stale role override %s for %s", override_id, member.id)
        return self.default_main_role(member)

    def resolve_display(self, member: Member, thread: Thread, anonymous: bool = False) -> DisplayIdentity:
        role = self.main_role(member, thread)
        role_name = role.name if role else DEFAULT_ROLE_LABEL

        if anonymous:
            return DisplayIdentity(
                display_name=role_name,
                log_name=f"({member.user.username}) {role_name}",
                role=role,
            )

        name = member.user.username
        if self.use_nicknames and member.nick:
            name = member.nick
        display_name = f"({name}) {role.name}" if role else name
        return DisplayIdentity(display_name=display_name, log_name=display_name, role=role)

    async def set_override(self, thread_id: str, operator_id: str, role_id: str) -> dict[str, str]:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await repo.get_thread(thread_id, for_update=True)
            if thread is None:
                raise ThreadNotFoundError(thread_id)
            return await repo.set_role_override(thread, operator_id, role_id)

    async def delete_override(self, thread_id: str, operator_id: str) -> bool:
        async with self.store.transaction(thread_id) as db:
            repo = ThreadRepository(db)
            thread = await repo.get_thread(thread_id, for_update=True)
            if thread is None:
                raise ThreadNotFoundError(thread_id)
            return await repo.delete_role_override(thread, operator_id)

    async def get_override(self, thread_id: str, operator_id: str) -> str | None:
        thread = await self.store.get_thread(thread_id)
        return thread.get_staff_role_override(operator_id)
