"""
Authenticated HTTP/SSE transport to the outreach backend.
Attaches a bearer token when a user is signed in, maps failures to error
kinds, and lets callers abort a request or stream through a CancelHandle.
"""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from outreach.auth.token_provider import AnonymousAuthProvider, AuthProvider
from outreach.config import settings
from outreach.errors import ErrorKind, OutreachError
from outreach.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"


class TransportError(OutreachError):
    """Backend request failure (network, http-status or cancelled)."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.NETWORK,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message, kind, recoverable=kind is not ErrorKind.HTTP_STATUS)
        self.status_code = status_code
        self.response_data = response_data or {}


def cancelled_error() -> TransportError:
    return TransportError("Request cancelled", kind=ErrorKind.CANCELLED)


class CancelHandle:
    """External cancellation token shared between a controller and the transport."""

    def __init__(self):
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
        self._clear_timer()

    async def wait(self) -> None:
        await self._event.wait()

    def release(self) -> None:
        """Drop the timeout timer once the request it guarded has finished."""
        self._clear_timer()

    def cancel_after(self, seconds: float) -> None:
        """Timeout wrapper: cancel automatically once `seconds` elapse."""
        self._clear_timer()
        self._timer = asyncio.get_running_loop().call_later(seconds, self.cancel)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


async def _race(awaitable, cancel: CancelHandle | None):
    """Await `awaitable` unless `cancel` fires first, in which case raise cancelled."""
    if cancel is None:
        return await awaitable
    if cancel.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise cancelled_error()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        # The caller was cancelled; the raced work goes with it
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
        await task
    raise cancelled_error()


class TransportResponse:
    """A 2xx response whose body is either one JSON value or an SSE byte stream."""

    def __init__(self, response: httpx.Response, cancel: CancelHandle | None = None):
        self._response = response
        self._cancel = cancel
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_event_stream(self) -> bool:
        return EVENT_STREAM_CONTENT_TYPE in self._response.headers.get("content-type", "")

    async def json(self) -> Any:
        try:
            body = await _race(self._response.aread(), self._cancel)
        except httpx.RequestError as e:
            raise TransportError(f"Failed to read response: {e}") from e
        finally:
            await self.aclose()

        if not body:
            return {}
        try:
            return self._response.json()
        except ValueError as e:
            logger.error("Failed to parse backend response", error=str(e))
            raise TransportError(f"Invalid response format: {e}") from e

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield raw body chunks; raises a cancelled TransportError once the handle fires."""
        iterator = self._response.aiter_bytes().__aiter__()
        try:
            while True:
                try:
                    chunk = await _race(anext(iterator, None), self._cancel)
                except httpx.RequestError as e:
                    raise TransportError(f"Stream interrupted: {e}") from e
                if chunk is None:
                    return
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()

    async def __aenter__(self) -> "TransportResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class Transport:
    """
    Client for the outreach backend.

    One httpx.AsyncClient per Transport; pass `client` to share or mock it.
    """

    def __init__(
        self,
        base_url: str | None = None,
        auth: AuthProvider | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.backend_base_url()).rstrip("/")
        self.auth = auth or AnonymousAuthProvider()
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client; reads are unbounded so long streams stay open."""
        timeout = httpx.Timeout(
            connect=settings.REQUEST_CONNECT_TIMEOUT_S, read=None, write=30.0, pool=30.0
        )
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_auth_headers(self) -> dict[str, str]:
        """Bearer header for the signed-in user; empty when there is none or minting fails."""
        user = self.auth.current_user()
        if user is None:
            logger.debug("No user signed in, sending request without auth")
            return {}

        try:
            token = await self.auth.get_id_token()
        except Exception as e:
            # Backend dev mode accepts unauthenticated requests
            logger.warning("Failed to get ID token", user_id=user.uid, error=str(e))
            return {}

        return {"Authorization": f"Bearer {token}"}

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: Any = None,
        params: dict[str, Any] | None = None,
        cancel: CancelHandle | None = None,
    ) -> TransportResponse:
        """
        Send a request and return the open response.

        Args:
            path: Backend path (joined to base_url) or absolute URL
            method: HTTP method
            headers: Extra headers
            body: JSON-serializable request body
            params: Query parameters
            cancel: Optional cancellation handle

        Returns:
            TransportResponse: open 2xx response; close it or consume it fully

        Raises:
            TransportError: network failure, non-2xx status, or cancellation
        """
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        request_headers.update(await self._get_auth_headers())

        request = self._client.build_request(
            method,
            self.url_for(path),
            headers=request_headers,
            json=body,
            params=params,
        )

        try:
            response = await _race(self._client.send(request, stream=True), cancel)
        except TransportError:
            logger.info("Backend request cancelled", method=method, path=path)
            raise
        except httpx.RequestError as e:
            logger.error("Backend request failed", method=method, path=path, error=str(e))
            raise TransportError(f"Failed to connect to server: {e}") from e

        logger.debug(
            "Backend response",
            method=method,
            path=path,
            status_code=response.status_code,
        )

        if not response.is_success:
            await self._raise_for_status(response, method, path)

        return TransportResponse(response, cancel)

    async def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        """Read the error body and raise an http-status TransportError."""
        body = b""
        try:
            body = await response.aread()
        except httpx.HTTPError:
            pass
        finally:
            await response.aclose()

        error_data: dict = {}
        try:
            parsed = json.loads(body) if body else {}
            if isinstance(parsed, dict):
                error_data = parsed
        except ValueError:
            error_data = {}

        error_message = error_data.get("error")
        if isinstance(error_message, dict):
            error_message = error_message.get("message")

        logger.error(
            "Backend request returned error status",
            method=method,
            path=path,
            status_code=response.status_code,
            error_message=error_message,
        )

        raise TransportError(
            str(error_message) if error_message else f"HTTP error (status {response.status_code})",
            kind=ErrorKind.HTTP_STATUS,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def request_json(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
        cancel: CancelHandle | None = None,
    ) -> Any:
        """Send a request and return the parsed JSON body."""
        response = await self.request(
            path, method=method, body=body, params=params, cancel=cancel
        )
        return await response.json()
