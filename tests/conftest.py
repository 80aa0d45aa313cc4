import asyncio

import httpx
import pytest
import pytest_asyncio

from outreach.db.gateway import DocumentStoreError, InMemoryDocumentGateway
from outreach.infrastructure.events import EventBus, Topic
from outreach.services.contact_store import ContactStore
from outreach.services.local_fallback import LocalFallbackStore
from outreach.services.transport import Transport

BACKEND_URL = "http://backend.test"


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FailingGateway(InMemoryDocumentGateway):
    """In-memory gateway whose reads and/or writes raise a chosen error."""

    def __init__(self, documents=None, read_error=None, write_error=None):
        super().__init__(documents)
        self.read_error: DocumentStoreError | None = read_error
        self.write_error: DocumentStoreError | None = write_error

    async def get_doc(self, user_id):
        if self.read_error is not None:
            raise self.read_error
        return await super().get_doc(user_id)

    async def set_doc(self, user_id, doc, merge=False):
        if self.write_error is not None:
            raise self.write_error
        return await super().set_doc(user_id, doc, merge=merge)

    async def update_doc(self, user_id, partial):
        if self.write_error is not None:
            raise self.write_error
        return await super().update_doc(user_id, partial)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def local_store(fake_redis):
    return LocalFallbackStore(client=fake_redis, namespace="test")


@pytest.fixture
def gateway():
    return InMemoryDocumentGateway()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def toasts(bus):
    received = []
    bus.subscribe(Topic.APP_TOAST, received.append)
    return received


@pytest.fixture
def contact_events(bus):
    received = []
    bus.subscribe(Topic.CONTACTS_UPDATED, received.append)
    return received


@pytest.fixture
def contact_store(gateway, local_store, bus):
    return ContactStore(gateway, local=local_store, bus=bus, verify_writes=False)


@pytest.fixture
def failing_gateway():
    """Factory: `failing_gateway(documents, read_error=..., write_error=...)`."""
    return FailingGateway


class StallingStream(httpx.AsyncByteStream):
    """Yields the given chunks, then blocks until the reader gives up."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def stalling_transport():
    """Factory returning (Transport, StallingStream) for an SSE response that never ends."""

    def _make(chunks: list[bytes]):
        stream = StallingStream(chunks)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-type": "text/event-stream"}, stream=stream
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return Transport(base_url=BACKEND_URL, client=client), stream

    return _make


@pytest.fixture
def backend_url():
    return BACKEND_URL


@pytest_asyncio.fixture
async def transport():
    transport = Transport(base_url=BACKEND_URL)
    yield transport
    await transport.close()
