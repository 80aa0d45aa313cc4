import pytest

from outreach.db.gateway import (
    DocumentPermissionError,
    DocumentStoreError,
    InMemoryDocumentGateway,
)
from outreach.errors import ErrorKind
from outreach.models.domain.contact_domain import UserContacts
from outreach.models.domain.user_document import build_user_skeleton
from outreach.services.contact_store import ContactStore

USER = "user-123"


def _doc_with(shortlist=None, sent=None, trash=None, updated_at=None):
    doc = build_user_skeleton(email="owner@example.com")
    doc["contacts"] = {"shortlist": shortlist or [], "sent": sent or [], "trash": trash or []}
    if updated_at:
        doc["updatedAt"] = updated_at
    return doc


def _store(documents, local_store, bus):
    gateway = InMemoryDocumentGateway(documents)
    return gateway, ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)


@pytest.mark.asyncio
async def test_add_to_shortlist_on_empty_document(local_store, bus, contact_events):
    old_stamp = "2000-01-01T00:00:00+00:00"
    gateway, store = _store({USER: _doc_with(updated_at=old_stamp)}, local_store, bus)

    added = await store.add_to_shortlist(USER, {"email": "a@b.com", "name": "A"})

    doc = gateway.snapshot(USER)
    assert added is True
    assert doc["contacts"]["shortlist"] == [{"email": "a@b.com", "name": "A"}]
    assert doc["updatedAt"] != old_stamp
    assert len(contact_events) == 1
    assert contact_events[0].operation == "add_to_shortlist"
    assert contact_events[0].keys == ["a@b.com"]


@pytest.mark.asyncio
async def test_add_to_shortlist_creates_missing_document(contact_store, gateway):
    added = await contact_store.add_to_shortlist(USER, {"value": "new@example.com"})

    doc = gateway.snapshot(USER)
    assert added is True
    assert doc["contacts"]["shortlist"] == [{"value": "new@example.com"}]
    assert doc["templates"] == []
    assert doc["emailDrafts"] == {}


@pytest.mark.asyncio
async def test_add_to_shortlist_twice_is_noop(contact_store, gateway, contact_events):
    contact = {"email": "a@b.com", "name": "A"}

    first = await contact_store.add_to_shortlist(USER, contact)
    second = await contact_store.add_to_shortlist(USER, contact)

    assert first is True
    assert second is False
    assert len(gateway.snapshot(USER)["contacts"]["shortlist"]) == 1
    assert len(contact_events) == 1


@pytest.mark.asyncio
async def test_add_to_shortlist_matches_keys_case_insensitively(contact_store, gateway):
    await contact_store.add_to_shortlist(USER, {"email": "A@B.com"})

    assert await contact_store.add_to_shortlist(USER, {"email": " a@b.com "}) is False
    assert len(gateway.snapshot(USER)["contacts"]["shortlist"]) == 1


@pytest.mark.asyncio
async def test_add_to_shortlist_rejects_contact_without_email(contact_store, gateway):
    assert await contact_store.add_to_shortlist(USER, {"name": "Nobody"}) is False
    assert await contact_store.add_to_shortlist(USER, None) is False
    assert gateway.snapshot(USER) is None


@pytest.mark.asyncio
async def test_add_to_shortlist_ignores_contact_in_another_list(local_store, bus):
    gateway, store = _store({USER: _doc_with(trash=[{"email": "t@x.com"}])}, local_store, bus)

    assert await store.add_to_shortlist(USER, {"email": "t@x.com"}) is False
    assert gateway.snapshot(USER)["contacts"]["shortlist"] == []


@pytest.mark.asyncio
async def test_move_to_trash_from_shortlist(local_store, bus):
    gateway, store = _store({USER: _doc_with(shortlist=[{"email": "x@y"}])}, local_store, bus)

    result = await store.move_to_trash(USER, {"email": "x@y"})

    contacts = gateway.snapshot(USER)["contacts"]
    assert result.ok and result.changed
    assert contacts["shortlist"] == []
    assert contacts["trash"] == [{"email": "x@y"}]
    assert result.reversal.entries[0].prior_list == "shortlist"


@pytest.mark.asyncio
async def test_move_to_trash_then_restore_round_trip(local_store, bus):
    original = [{"email": "a@b.com", "name": "A", "template": "Finance"}]
    gateway, store = _store({USER: _doc_with(shortlist=original)}, local_store, bus)

    await store.move_to_trash(USER, {"email": "a@b.com"})
    await store.restore_from_trash(USER, {"email": "a@b.com"})

    contacts = gateway.snapshot(USER)["contacts"]
    assert contacts["shortlist"] == original
    assert contacts["trash"] == []


@pytest.mark.asyncio
async def test_move_to_sent_pulls_key_out_of_every_list(local_store, bus):
    gateway, store = _store({USER: _doc_with(trash=[{"email": "s@x.com"}])}, local_store, bus)

    result = await store.move_to_sent(USER, {"email": "s@x.com"})

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert result.ok
    assert contacts.keys("sent") == ["s@x.com"]
    assert contacts.keys("trash") == []
    assert contacts.is_disjoint()


@pytest.mark.asyncio
async def test_move_to_sent_appends_unknown_contact(contact_store, gateway):
    result = await contact_store.move_to_sent(USER, {"email": "fresh@x.com", "name": "F"})

    assert result.ok and result.changed
    assert gateway.snapshot(USER)["contacts"]["sent"] == [{"email": "fresh@x.com", "name": "F"}]
    assert result.reversal.entries[0].prior_list is None


@pytest.mark.asyncio
async def test_move_already_in_target_is_unchanged(local_store, bus, contact_events):
    _, store = _store({USER: _doc_with(sent=[{"email": "s@x.com"}])}, local_store, bus)

    result = await store.move_to_sent(USER, {"email": "s@x.com"})

    assert result.ok is True
    assert result.changed is False
    assert contact_events == []


@pytest.mark.asyncio
async def test_remove_from_shortlist(local_store, bus):
    gateway, store = _store(
        {USER: _doc_with(shortlist=[{"email": "a@x.com"}, {"email": "b@x.com"}])},
        local_store,
        bus,
    )

    result = await store.remove_from_shortlist(USER, "A@x.com")

    assert result.changed
    assert gateway.snapshot(USER)["contacts"]["shortlist"] == [{"email": "b@x.com"}]


@pytest.mark.asyncio
async def test_change_template_touches_shortlist_entry_only(local_store, bus):
    gateway, store = _store(
        {USER: _doc_with(shortlist=[{"email": "a@x.com"}], sent=[{"email": "b@x.com"}])},
        local_store,
        bus,
    )

    changed = await store.change_template(USER, {"email": "a@x.com"}, "Finance")
    ignored = await store.change_template(USER, "b@x.com", "Finance")

    contacts = gateway.snapshot(USER)["contacts"]
    assert changed.changed is True
    assert ignored.changed is False
    assert contacts["shortlist"] == [{"email": "a@x.com", "template": "Finance"}]
    assert contacts["sent"] == [{"email": "b@x.com"}]


@pytest.mark.asyncio
async def test_bulk_trash_emits_single_notification(local_store, bus, contact_events):
    gateway, store = _store(
        {
            USER: _doc_with(
                shortlist=[{"email": "a@x.com"}, {"email": "b@x.com"}],
                sent=[{"email": "c@x.com"}],
            )
        },
        local_store,
        bus,
    )

    result = await store.bulk_trash(USER, ["a@x.com", "c@x.com", "missing@x.com"])

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert result.ok
    assert contacts.keys("shortlist") == ["b@x.com"]
    assert contacts.keys("sent") == []
    assert contacts.keys("trash") == ["a@x.com", "c@x.com"]
    assert len(contact_events) == 1
    assert contact_events[0].keys == ["a@x.com", "c@x.com"]


@pytest.mark.asyncio
async def test_bulk_send_leaves_sent_and_pulls_from_trash(local_store, bus):
    gateway, store = _store(
        {
            USER: _doc_with(
                shortlist=[{"email": "a@x.com"}],
                sent=[{"email": "b@x.com"}],
                trash=[{"email": "c@x.com"}],
            )
        },
        local_store,
        bus,
    )

    result = await store.bulk_send(USER, ["a@x.com", "b@x.com", "c@x.com"])

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert sorted(result.reversal.keys) == ["a@x.com", "c@x.com"]
    assert contacts.keys("sent") == ["b@x.com", "a@x.com", "c@x.com"]
    assert contacts.keys("shortlist") == []
    assert contacts.keys("trash") == []


@pytest.mark.asyncio
async def test_bulk_restore_only_moves_trash(local_store, bus):
    gateway, store = _store(
        {USER: _doc_with(sent=[{"email": "s@x.com"}], trash=[{"email": "t@x.com"}])},
        local_store,
        bus,
    )

    await store.bulk_restore(USER, ["s@x.com", "t@x.com"])

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert contacts.keys("shortlist") == ["t@x.com"]
    assert contacts.keys("sent") == ["s@x.com"]


@pytest.mark.asyncio
async def test_bulk_delete_permanent_ignores_other_lists(local_store, bus):
    gateway, store = _store(
        {USER: _doc_with(shortlist=[{"email": "a@x.com"}], trash=[{"email": "a2@x.com"}])},
        local_store,
        bus,
    )

    result = await store.bulk_delete_permanent(USER, ["a@x.com", "a2@x.com"])

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert result.reversal.keys == ["a2@x.com"]
    assert contacts.keys("shortlist") == ["a@x.com"]
    assert contacts.keys("trash") == []


@pytest.mark.asyncio
async def test_apply_reversal_undoes_bulk_trash_without_duplicates(local_store, bus):
    before = {
        "shortlist": [{"email": "a@x.com", "name": "A"}, {"email": "b@x.com"}],
        "sent": [{"email": "c@x.com"}],
        "trash": [],
    }
    gateway, store = _store({USER: _doc_with(**before)}, local_store, bus)

    result = await store.bulk_trash(USER, ["a@x.com", "c@x.com"])
    undo = await store.apply_reversal(USER, result.reversal)
    again = await store.apply_reversal(USER, result.reversal)

    contacts = UserContacts.from_document(gateway.snapshot(USER)["contacts"])
    assert undo.changed is True
    assert again.changed is False
    assert sorted(contacts.keys("shortlist")) == ["a@x.com", "b@x.com"]
    assert contacts.keys("sent") == ["c@x.com"]
    assert contacts.keys("trash") == []
    assert {"email": "a@x.com", "name": "A"} in contacts.shortlist
    assert contacts.is_disjoint()


@pytest.mark.asyncio
async def test_apply_reversal_removes_contact_that_was_added(contact_store, gateway):
    result = await contact_store.move_to_sent(USER, {"email": "n@x.com"})

    await contact_store.apply_reversal(USER, result.reversal)

    assert gateway.snapshot(USER)["contacts"]["sent"] == []


@pytest.mark.asyncio
async def test_get_user_contacts_initializes_missing_document(contact_store, gateway):
    contacts = await contact_store.get_user_contacts(USER)

    assert contacts.counts() == {"shortlist": 0, "sent": 0, "trash": 0}
    assert gateway.snapshot(USER) is not None


@pytest.mark.asyncio
async def test_get_user_contacts_does_not_read_local_when_remote_is_reachable(
    contact_store, local_store
):
    await local_store.set_contacts(UserContacts(shortlist=[{"email": "other-user@x.com"}]))

    contacts = await contact_store.get_user_contacts(USER)

    assert contacts.shortlist == []


@pytest.mark.asyncio
async def test_get_user_contacts_falls_back_to_local_on_read_failure(
    local_store, bus, failing_gateway
):
    await local_store.set_contacts(UserContacts(shortlist=[{"email": "cached@x.com"}]))
    gateway = failing_gateway(read_error=DocumentStoreError("unreachable"))
    store = ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)

    contacts = await store.get_user_contacts(USER)

    assert contacts.keys("shortlist") == ["cached@x.com"]


@pytest.mark.asyncio
async def test_get_user_contacts_permission_denied_returns_empty(
    local_store, bus, failing_gateway
):
    await local_store.set_contacts(UserContacts(shortlist=[{"email": "cached@x.com"}]))
    gateway = failing_gateway(read_error=DocumentPermissionError())
    store = ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)

    contacts = await store.get_user_contacts(USER)

    assert contacts.counts() == {"shortlist": 0, "sent": 0, "trash": 0}


@pytest.mark.asyncio
async def test_write_failure_keeps_optimistic_state_and_writes_local(
    local_store, bus, contact_events, failing_gateway
):
    gateway = failing_gateway({USER: _doc_with()}, write_error=DocumentStoreError("timeout"))
    store = ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)

    result = await store.move_to_sent(USER, {"email": "a@x.com"})

    assert result.ok is False
    assert result.error_kind is ErrorKind.NETWORK
    assert store.cached_contacts(USER).keys("sent") == ["a@x.com"]
    assert (await local_store.get_contacts()).keys("sent") == ["a@x.com"]
    assert gateway.snapshot(USER)["contacts"]["sent"] == []
    assert contact_events == []


@pytest.mark.asyncio
async def test_permission_failure_leaves_state_unchanged(local_store, bus, failing_gateway):
    gateway = failing_gateway(
        {USER: _doc_with(shortlist=[{"email": "a@x.com"}])},
        write_error=DocumentPermissionError(),
    )
    store = ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)
    await store.get_user_contacts(USER)

    result = await store.move_to_trash(USER, {"email": "a@x.com"})

    assert result.ok is False
    assert result.error_kind is ErrorKind.PERMISSION
    assert store.cached_contacts(USER).keys("shortlist") == ["a@x.com"]
    assert await local_store.has_contacts() is False


@pytest.mark.asyncio
async def test_signed_out_user_uses_local_fallback(contact_store, local_store, contact_events):
    added = await contact_store.add_to_shortlist(None, {"email": "guest@x.com"})

    assert added is True
    assert (await local_store.get_contacts()).keys("shortlist") == ["guest@x.com"]
    assert (await contact_store.get_user_contacts(None)).keys("shortlist") == ["guest@x.com"]
    assert contact_events[0].user_id is None


@pytest.mark.asyncio
async def test_verify_writes_reads_back_after_delay(local_store, bus):
    gateway = InMemoryDocumentGateway({USER: _doc_with()})
    store = ContactStore(gateway, local=local_store, bus=bus, verify_writes=True, verify_delay_s=0)

    result = await store.move_to_sent(USER, {"email": "a@x.com"})

    assert result.ok is True
    assert gateway.snapshot(USER)["contacts"]["sent"] == [{"email": "a@x.com"}]


@pytest.mark.asyncio
async def test_malformed_contact_is_rejected_without_raising(contact_store, gateway, contact_events):
    enriched = {"email": "a@acme.com", "company": {"name": "Acme", "domain": "acme.com"}}

    added = await contact_store.add_to_shortlist(USER, enriched)
    trashed = await contact_store.move_to_trash(USER, enriched)
    retagged = await contact_store.change_template(USER, enriched, "Tech")

    assert added is False
    assert trashed.ok is False
    assert trashed.error_kind is ErrorKind.VALIDATION
    assert retagged.error_kind is ErrorKind.VALIDATION
    assert gateway.snapshot(USER) is None
    assert contact_events == []
