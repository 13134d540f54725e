"""Remote push interface and an HTTP implementation of it.

Handles network delivery of single records with retry logic. The sync
engine only depends on RemoteDestination; HttpDestination is the stock
implementation for JSON-over-HTTP endpoints.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PushError(Exception):
    """A push did not reach the destination or was rejected by it."""


@dataclass
class PushAck:
    """Acknowledgement of one pushed record."""

    sync_id: str | None = None


class RemoteDestination(ABC):
    """Abstract base for anything records can be pushed to."""

    @abstractmethod
    async def push(self, table: str, payload: dict[str, Any]) -> PushAck:
        """Deliver one serialized record.

        Args:
            table: Name of the table the record belongs to.
            payload: Output of Record.to_payload().

        Returns:
            PushAck on success.

        Raises:
            PushError: If the record was not accepted.
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


class HttpDestination(RemoteDestination):
    """Pushes records as JSON POST requests.

    Uses exponential backoff for server errors, timeouts and connection
    failures; client errors are not retried.
    """

    def __init__(
        self,
        base_url: str,
        path_template: str = "/api/{table}",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the HTTP destination.

        Args:
            base_url: Base URL of the endpoint (e.g., "https://insight.example").
            path_template: Path per table, formatted with ``table``.
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per push.
            backoff_seconds: Initial delay between attempts.
            token: Optional bearer token.
            client: Optional preconfigured httpx client.
        """
        self.base_url = base_url
        self.path_template = path_template
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, headers=self._headers
            )
        return self._client

    def _url(self, table: str) -> str:
        return f"{self.base_url.rstrip('/')}{self.path_template.format(table=table)}"

    async def push(self, table: str, payload: dict[str, Any]) -> PushAck:
        if not self.base_url:
            raise PushError("No remote URL configured")

        client = self._get_client()
        url = self._url(table)
        backoff = self.backoff_seconds
        last_error = "no attempt made"

        for attempt in range(self.max_retries):
            try:
                response = await client.post(url, json=payload, headers=self._headers)

                if response.status_code in (200, 201):
                    return self._parse_ack(response)

                if response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"Server error {response.status_code} from {url}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                else:
                    raise PushError(
                        f"HTTP {response.status_code}: {response.text}"
                    )

            except httpx.ConnectError:
                last_error = "Connection failed"
                logger.warning(
                    f"Connection to {url} failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                last_error = "Request timeout"
                logger.warning(
                    f"Request to {url} timed out, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                raise PushError(f"Request error: {e}") from e

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise PushError(f"{last_error}; max retries ({self.max_retries}) exceeded")

    @staticmethod
    def _parse_ack(response: httpx.Response) -> PushAck:
        if not response.content:
            return PushAck()
        try:
            data = response.json()
        except ValueError as e:
            raise PushError(f"Invalid acknowledgement body: {e}") from e
        if not isinstance(data, dict):
            return PushAck()
        sync_id = data.get("sync_id")
        return PushAck(sync_id=str(sync_id) if sync_id is not None else None)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
