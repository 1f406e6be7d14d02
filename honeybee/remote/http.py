"""HTTP client for the remote event REST API."""

import asyncio
import logging
from typing import Any

import httpx

from ..exceptions import (
    Forbidden,
    HoneybeeError,
    NetworkError,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from ..models import Event
from ..session import SessionProvider
from .base import RemoteEventService

logger = logging.getLogger(__name__)

# A lost response to a POST may hide a committed row, so POSTs are sent once
RETRYABLE_METHODS = frozenset({"GET", "PUT", "DELETE"})


class HttpEventService(RemoteEventService):
    """Remote event service over the REST API.

    Every request carries the session's bearer credential and is bounded by
    a timeout, so a hung server turns into a ``NetworkError`` instead of an
    indefinitely suspended operation. Connection failures and server errors
    on idempotent requests are retried with exponential backoff; client
    errors and failed POSTs are not. A pending event whose create failed is
    picked up again by the next sync cycle.
    """

    def __init__(
        self,
        base_url: str,
        session: SessionProvider,
        timeout: float = 5.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
    ):
        """Initialize the service client.

        Args:
            base_url: API root, e.g. "http://localhost:3001/api".
            session: Provider of the bearer credential.
            timeout: Per-request timeout in seconds.
            max_retries: Retries after the first attempt for transient errors.
            retry_backoff: Initial delay between retries, doubled each time.
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or body)
        return str(body)

    def _handle_response(self, response: httpx.Response) -> Any:
        """Decode a non-5xx response or raise the matching error."""
        status = response.status_code
        if status == 204 or (200 <= status < 300 and not response.content):
            return None
        if 200 <= status < 300:
            try:
                return response.json()
            except ValueError as e:
                # e.g. a captive portal answering in HTML
                raise NetworkError(f"Unreadable response from server: {e}") from e

        message = self._error_message(response)
        if status in (400, 422):
            raise ValidationError(message)
        if status == 401:
            raise Unauthorized(message)
        if status == 403:
            raise Forbidden(message)
        if status == 404:
            raise NotFoundError(message)
        raise HoneybeeError(f"HTTP {status}: {message}")

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> Any:
        """Make an authenticated request with exponential backoff retry.

        Args:
            method: HTTP method.
            path: Path relative to the API root.
            json_data: Optional JSON body.

        Returns:
            Decoded JSON body, or None for empty responses.

        Raises:
            NetworkError: If the request could not complete.
        """
        headers = {"Authorization": f"Bearer {self._session.credential()}"}
        client = await self._get_client()
        backoff = self.retry_backoff
        attempts = self.max_retries + 1 if method in RETRYABLE_METHODS else 1
        last_error = ""

        for attempt in range(attempts):
            try:
                response = await client.request(
                    method, path, json=json_data, headers=headers
                )
            except httpx.TimeoutException:
                last_error = "request timeout"
                logger.warning(
                    f"{method} {path} timed out, attempt {attempt + 1}/{attempts}"
                )
            except httpx.TransportError as e:
                last_error = f"connection failed: {e}"
                logger.warning(
                    f"{method} {path} connection failed, attempt {attempt + 1}/{attempts}"
                )
            else:
                if response.status_code < 500:
                    return self._handle_response(response)
                last_error = f"server error {response.status_code}"
                logger.warning(
                    f"{method} {path} server error {response.status_code}, "
                    f"attempt {attempt + 1}/{attempts}"
                )

            if attempt < attempts - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise NetworkError(f"{method} {path} failed: {last_error}")

    @staticmethod
    def _expect(data: Any, kind: type, what: str) -> Any:
        """Check the decoded body has the shape the API promises."""
        if not isinstance(data, kind):
            raise NetworkError(
                f"Unexpected {what} response: expected {kind.__name__}, "
                f"got {type(data).__name__}"
            )
        return data

    async def create(self, fields: dict[str, Any]) -> Event:
        data = await self._request("POST", "/events", fields)
        return Event.from_remote(self._expect(data, dict, "create"))

    async def update(self, remote_id: int, fields: dict[str, Any]) -> Event:
        data = await self._request("PUT", f"/events/{remote_id}", fields)
        return Event.from_remote(self._expect(data, dict, "update"))

    async def delete(self, remote_id: int) -> None:
        await self._request("DELETE", f"/events/{remote_id}")

    async def sync_batch(self, events: list[Event]) -> dict[int, int]:
        submitted = {e.local_id for e in events if e.local_id is not None}
        payload = {
            "events": [
                {**e.fields(), "id": e.local_id, "created_by": e.created_by}
                for e in events
                if e.local_id is not None
            ]
        }

        data = self._expect(
            await self._request("POST", "/events/sync", payload) or {}, dict, "sync"
        )
        synced = self._expect(data.get("syncedEvents") or [], list, "sync")

        accepted: dict[int, int] = {}
        for item in synced:
            if not isinstance(item, dict):
                logger.warning(f"Ignoring malformed sync entry: {item!r}")
                continue
            try:
                local_id = int(item["localId"])
                remote_id = int(item["remoteId"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Ignoring malformed sync entry: {item!r}")
                continue
            if local_id not in submitted:
                logger.warning(f"Sync response references unknown local id {local_id}")
                continue
            accepted[local_id] = remote_id

        skipped = len(submitted) - len(accepted)
        if skipped:
            logger.info(f"Remote did not accept {skipped} of {len(submitted)} events")
        return accepted

    async def list(self) -> list[Event]:
        data = self._expect(await self._request("GET", "/events") or [], list, "list")
        return [Event.from_remote(self._expect(item, dict, "list")) for item in data]
