import pytest

from outreach.db.gateway import DocumentStoreError, InMemoryDocumentGateway
from outreach.models.domain.user_document import build_user_skeleton
from outreach.services.user_document_service import UserDocumentService

USER = "user-123"


@pytest.mark.asyncio
async def test_create_profile_for_new_user(gateway):
    service = UserDocumentService(gateway)

    await service.create_or_update_user_profile(
        USER, email="u@example.com", display_name="U", email_verified=True
    )

    doc = gateway.snapshot(USER)
    assert doc["email"] == "u@example.com"
    assert doc["displayName"] == "U"
    assert doc["emailVerified"] is True
    assert doc["contacts"] == {"shortlist": [], "sent": [], "trash": []}
    assert doc["profile"]["email"] == "u@example.com"


@pytest.mark.asyncio
async def test_create_profile_preserves_existing_data():
    existing = build_user_skeleton(email="old@example.com", display_name="Old")
    existing["createdAt"] = "2020-01-01T00:00:00+00:00"
    existing["contacts"]["shortlist"] = [{"email": "keep@x.com"}]
    existing["templates"] = [{"id": 7, "name": "Mine", "subject": "", "content": ""}]
    existing["emailDrafts"] = {"keep@x.com": {"subject": "S", "body": "B"}}
    gateway = InMemoryDocumentGateway({USER: existing})
    service = UserDocumentService(gateway)

    await service.create_or_update_user_profile(USER, email="new@example.com", display_name="New")

    doc = gateway.snapshot(USER)
    assert doc["displayName"] == "New"
    assert doc["email"] == "new@example.com"
    assert doc["createdAt"] == "2020-01-01T00:00:00+00:00"
    assert doc["contacts"]["shortlist"] == [{"email": "keep@x.com"}]
    assert doc["templates"][0]["name"] == "Mine"
    assert doc["emailDrafts"]["keep@x.com"]["subject"] == "S"


@pytest.mark.asyncio
async def test_update_profile_leaves_other_fields(gateway):
    service = UserDocumentService(gateway)
    await service.create_or_update_user_profile(USER, email="u@example.com")

    await service.update_user_profile(USER, {"name": "Sam", "school": "State U"})

    profile = await service.get_user_profile(USER)
    doc = gateway.snapshot(USER)
    assert profile.name == "Sam"
    assert profile.school == "State U"
    assert doc["email"] == "u@example.com"


@pytest.mark.asyncio
async def test_templates_round_trip(gateway):
    service = UserDocumentService(gateway)
    await service.create_or_update_user_profile(USER)

    await service.update_user_templates(USER, [{"id": 1, "name": "Finance", "content": "Hi"}])

    templates = await service.get_user_templates(USER)
    assert [t.name for t in templates] == ["Finance"]
    assert await service.get_user_templates(None) == []


@pytest.mark.asyncio
async def test_gmail_connection_state(gateway):
    service = UserDocumentService(gateway)

    await service.set_gmail_connection_state(USER, True, "me@gmail.com")
    assert await service.get_gmail_connection_state(USER) == {
        "connected": True,
        "email": "me@gmail.com",
    }

    await service.set_gmail_connection_state(USER, False, "me@gmail.com")
    assert await service.get_gmail_connection_state(USER) == {"connected": False, "email": ""}


@pytest.mark.asyncio
async def test_record_search_behavior_keeps_last_fifty(gateway):
    service = UserDocumentService(gateway)

    for i in range(52):
        assert await service.record_user_behavior(USER, "search", {"query": f"q{i}", "results": i})

    behavior = gateway.snapshot(USER)["behavior"]
    assert len(behavior["searchHistory"]) == 50
    assert behavior["searchHistory"][0]["query"] == "q2"
    assert behavior["searchHistory"][-1]["query"] == "q51"
    assert behavior["lastActivity"]


@pytest.mark.asyncio
async def test_record_accept_and_reject(gateway):
    service = UserDocumentService(gateway)

    await service.record_user_behavior(USER, "accept", {"contact": {"email": "a@x.com"}})
    await service.record_user_behavior(USER, "reject", {"contact": {"email": "r@x.com"}})

    behavior = gateway.snapshot(USER)["behavior"]
    assert behavior["acceptedContacts"][0]["contact"] == {"email": "a@x.com"}
    assert behavior["rejectedContacts"][0]["contact"] == {"email": "r@x.com"}


@pytest.mark.asyncio
async def test_record_behavior_never_raises(failing_gateway):
    service = UserDocumentService(failing_gateway(read_error=DocumentStoreError("down")))

    assert await service.record_user_behavior(USER, "search", {"query": "q"}) is False
    assert await service.record_user_behavior(None, "search", {"query": "q"}) is False
    assert await service.record_user_behavior(USER, "unknown", {}) is False
