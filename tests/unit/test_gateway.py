import pytest

from outreach.db.gateway import (
    DocumentNotFoundError,
    InMemoryDocumentGateway,
    apply_dotted,
    deep_merge,
    ensure_user_document,
)
from outreach.errors import ErrorKind


def test_apply_dotted_replaces_leaf_and_keeps_siblings():
    doc = {"contacts": {"shortlist": [1], "sent": [2], "trash": [3]}, "email": "e"}

    updated = apply_dotted(doc, {"contacts.shortlist": [], "profile.name": "Sam"})

    assert updated["contacts"] == {"shortlist": [], "sent": [2], "trash": [3]}
    assert updated["profile"] == {"name": "Sam"}
    assert doc["contacts"]["shortlist"] == [1]


def test_deep_merge_merges_nested_dicts_only():
    base = {"profile": {"name": "A", "school": "X"}, "templates": [1, 2]}

    merged = deep_merge(base, {"profile": {"name": "B"}, "templates": [3]})

    assert merged == {"profile": {"name": "B", "school": "X"}, "templates": [3]}


@pytest.mark.asyncio
async def test_update_missing_document_raises_store_miss():
    gateway = InMemoryDocumentGateway()

    with pytest.raises(DocumentNotFoundError) as exc:
        await gateway.update_doc("u1", {"email": "x"})

    assert exc.value.kind is ErrorKind.STORE_MISS


@pytest.mark.asyncio
async def test_writes_stamp_updated_at():
    gateway = InMemoryDocumentGateway()

    stamp = await gateway.set_doc("u1", {"email": "a"})
    second = await gateway.set_doc("u1", {"displayName": "A"}, merge=True)

    doc = await gateway.get_doc("u1")
    assert stamp
    assert doc["updatedAt"] == second
    assert doc["email"] == "a"
    assert doc["displayName"] == "A"


@pytest.mark.asyncio
async def test_set_without_merge_replaces_document():
    gateway = InMemoryDocumentGateway({"u1": {"email": "a", "templates": [1]}})

    await gateway.set_doc("u1", {"email": "b"})

    doc = await gateway.get_doc("u1")
    assert "templates" not in doc
    assert doc["email"] == "b"


@pytest.mark.asyncio
async def test_reads_are_copies():
    gateway = InMemoryDocumentGateway({"u1": {"contacts": {"shortlist": []}}})

    doc = await gateway.get_doc("u1")
    doc["contacts"]["shortlist"].append({"email": "x"})

    assert gateway.snapshot("u1")["contacts"]["shortlist"] == []


@pytest.mark.asyncio
async def test_ensure_user_document_creates_skeleton_once():
    gateway = InMemoryDocumentGateway()

    created = await ensure_user_document(gateway, "u1")
    await gateway.update_doc("u1", {"contacts.shortlist": [{"email": "a@x.com"}]})
    existing = await ensure_user_document(gateway, "u1")

    assert created["contacts"] == {"shortlist": [], "sent": [], "trash": []}
    assert existing["contacts"]["shortlist"] == [{"email": "a@x.com"}]
