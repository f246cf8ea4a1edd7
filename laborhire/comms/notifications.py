"""Unread message badge for the signed-in profile."""

import logging
from typing import Optional

from laborhire.platform.base import Backend, BackendError, Binding, ChangeEvent, eq
from laborhire.realtime import ChangeBus
from laborhire.session import SessionContext

logger = logging.getLogger(__name__)


class UnreadCounter:
    """Counts unread messages addressed to the user.

    Seeded with a count query, then adjusted from realtime: +1 per new
    message, -1 when a message flips to read. Never goes below zero.
    """

    def __init__(self, backend: Backend, session: SessionContext, bus: ChangeBus):
        self.backend = backend
        self.session = session
        self.bus = bus
        self.count = 0
        self.loading = True
        self._profile_id: Optional[str] = None

    @property
    def channel(self) -> str:
        return f"message-notifications-{self._profile_id}"

    async def start(self) -> int:
        self._profile_id = self.session.require_profile().id
        await self.refetch()
        receiver = eq("receiver_id", self._profile_id)
        await self.bus.listen(
            self.channel,
            [Binding("messages", "INSERT", receiver), Binding("messages", "UPDATE", receiver)],
            self.handle_change,
        )
        return self.count

    async def stop(self) -> None:
        if self._profile_id is not None:
            await self.bus.close(self.channel)

    async def refetch(self) -> int:
        if self._profile_id is None:
            self.count = 0
            return self.count
        try:
            self.count = await self.backend.count(
                "messages", [eq("receiver_id", self._profile_id), eq("is_read", False)]
            )
        except BackendError as e:
            logger.error(f"Error fetching unread count | profile_id={self._profile_id} | error={e.message}")
        finally:
            self.loading = False
        return self.count

    def handle_change(self, event: ChangeEvent) -> None:
        if event.event_type == "INSERT":
            self.count += 1
        elif event.event_type == "UPDATE":
            if event.new.get("is_read") and not event.old.get("is_read"):
                self.count = max(0, self.count - 1)
