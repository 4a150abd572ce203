"""Transport between the sync engine and the remote authority."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

import httpx

from ..errors import TransportError
from ..models import BatchOutcome, QueueItem, to_iso

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Request/response channel to the authority."""

    @abstractmethod
    async def send(
        self, batch: list[QueueItem], client_timestamp: datetime
    ) -> list[BatchOutcome]:
        """Send one batch and return the per-item outcomes.

        Raises:
            TransportError: If the batch as a whole could not be delivered
                or the response could not be understood.
        """
        pass

    @abstractmethod
    async def check_reachability(self) -> bool:
        """Probe the authority; never raises, returns False on any failure."""
        pass


class HttpTransport(Transport):
    """JSON-over-HTTP transport using httpx.

    Talks to ``POST {base_url}/batch`` and ``GET {base_url}/health``.
    """

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 30.0,
        connectivity_timeout: float = 5.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Authority API root (e.g., "http://localhost:3000/api").
            request_timeout: Timeout in seconds for batch requests.
            connectivity_timeout: Timeout in seconds for the health probe.
            http_transport: Optional httpx transport, used by tests.
        """
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.connectivity_timeout = connectivity_timeout
        self._http_transport = http_transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._http_transport)

    async def send(
        self, batch: list[QueueItem], client_timestamp: datetime
    ) -> list[BatchOutcome]:
        payload = {
            "items": [item.to_wire() for item in batch],
            "client_timestamp": to_iso(client_timestamp),
        }
        url = f"{self.base_url}/batch"

        try:
            async with self._client(self.request_timeout) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout after {self.request_timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"Connection failed: {e}") from e

        if response.status_code != 200:
            raise TransportError(f"HTTP {response.status_code}: {response.text}")

        try:
            data = response.json()
            return [BatchOutcome.from_dict(entry) for entry in data["processed_items"]]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"Malformed batch response: {e}") from e

    async def check_reachability(self) -> bool:
        try:
            async with self._client(self.connectivity_timeout) as client:
                response = await client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Authority unreachable: {e}")
            return False
