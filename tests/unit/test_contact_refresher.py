import pytest

from outreach.infrastructure.events import Topic
from outreach.services.contact_refresher import ContactListRefresher

USER = "user-123"


@pytest.mark.asyncio
async def test_refresher_delivers_initial_state_and_changes(contact_store, bus):
    snapshots = []
    refresher = ContactListRefresher(
        contact_store,
        USER,
        lambda contacts: snapshots.append(contacts.keys("shortlist")),
        bus=bus,
        interval_s=3600,
    )

    await refresher.start()
    await contact_store.add_to_shortlist(USER, {"email": "a@x.com"})
    await bus.drain()

    assert snapshots == [[], ["a@x.com"]]
    await refresher.stop()


@pytest.mark.asyncio
async def test_refresher_skips_unchanged_snapshots(contact_store, bus):
    calls = []
    refresher = ContactListRefresher(contact_store, USER, calls.append, bus=bus, interval_s=3600)

    await refresher.start()
    assert await refresher.refresh() is False
    await contact_store.add_to_shortlist(USER, {"email": "a@x.com"})
    await contact_store.add_to_shortlist(USER, {"email": "a@x.com"})
    await bus.drain()

    assert len(calls) == 2
    await refresher.stop()


@pytest.mark.asyncio
async def test_refresher_ignores_other_users(contact_store, bus):
    calls = []
    refresher = ContactListRefresher(contact_store, USER, calls.append, bus=bus, interval_s=3600)

    await refresher.start()
    await contact_store.add_to_shortlist("someone-else", {"email": "a@x.com"})
    await bus.drain()

    assert len(calls) == 1
    await refresher.stop()


@pytest.mark.asyncio
async def test_stop_disposes_subscription_and_task(contact_store, bus):
    refresher = ContactListRefresher(contact_store, USER, lambda contacts: None, bus=bus)

    await refresher.start()
    assert refresher.is_running
    assert bus.subscriber_count(Topic.CONTACTS_UPDATED) == 1

    await refresher.stop()

    assert refresher.is_running is False
    assert bus.subscriber_count(Topic.CONTACTS_UPDATED) == 0


@pytest.mark.asyncio
async def test_async_on_change_is_awaited(contact_store, bus):
    seen = []

    async def on_change(contacts):
        seen.append(contacts.counts())

    refresher = ContactListRefresher(contact_store, USER, on_change, bus=bus, interval_s=3600)

    await refresher.start()
    await refresher.stop()

    assert seen == [{"shortlist": 0, "sent": 0, "trash": 0}]
