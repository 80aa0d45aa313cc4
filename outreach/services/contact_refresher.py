"""
Keeps a view of one user's contact lists current.

Refreshes when the Contact Store announces a change and on a fixed poll
interval, which picks up writes made by other sessions. `on_change` only
fires when the lists differ from the last snapshot delivered.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from outreach.config import settings
from outreach.infrastructure.events import (
    ContactsUpdated,
    EventBus,
    Subscription,
    Topic,
    event_bus,
)
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.contact_domain import UserContacts
from outreach.services.contact_store import ContactStore

logger = get_logger(__name__)


class ContactListRefresher:
    def __init__(
        self,
        store: ContactStore,
        user_id: str | None,
        on_change: Callable[[UserContacts], Any],
        bus: EventBus | None = None,
        interval_s: float | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.on_change = on_change
        self.bus = bus or event_bus
        self.interval_s = settings.CONTACT_POLL_INTERVAL_S if interval_s is None else interval_s

        self._last_snapshot: dict | None = None
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Deliver the current lists, then subscribe and start polling."""
        if self.is_running:
            return
        await self.refresh()
        self._subscription = self.bus.subscribe(Topic.CONTACTS_UPDATED, self._on_contacts_updated)
        self._task = asyncio.create_task(self._poll())
        logger.debug("Contact refresher started", user_id=self.user_id, interval_s=self.interval_s)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Contact refresher stopped", user_id=self.user_id)

    async def refresh(self) -> bool:
        """Re-read the lists. Returns True when `on_change` was called."""
        async with self._lock:
            contacts = await self.store.get_user_contacts(self.user_id)
            snapshot = contacts.to_document()
            if snapshot == self._last_snapshot:
                return False
            self._last_snapshot = snapshot

            result = self.on_change(contacts)
            if inspect.isawaitable(result):
                await result
            return True

    async def _on_contacts_updated(self, event: ContactsUpdated | None) -> None:
        if event is not None and event.user_id != self.user_id:
            return
        await self.refresh()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.refresh()
            except Exception as e:
                logger.error(
                    "Contact refresh failed",
                    user_id=self.user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
