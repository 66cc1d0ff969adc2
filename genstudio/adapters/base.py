"""Base backend adapter interface."""

import time
from abc import ABC, abstractmethod

import httpx

from ..config import Settings
from ..tasks.errors import BackendTransportError
from ..tasks.models import BackendResponse, GenerationRequest
from ..tasks.registry import ModalityProfile


class BaseAdapter(ABC):
    """Base class for backend adapters.

    One call per invocation, no internal retry. Expected failure shapes
    (loading, error payloads) come back as a BackendResponse; only
    transport-level faults raise BackendTransportError.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @abstractmethod
    async def invoke(
        self, request: GenerationRequest, profile: ModalityProfile
    ) -> BackendResponse:
        """Send one generation request and normalize the response."""
        pass

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            transport=self._transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.post(url, **kwargs)
        except httpx.TransportError as e:
            raise BackendTransportError(type(e).__name__) from e

    async def invoke_with_timing(
        self, request: GenerationRequest, profile: ModalityProfile
    ) -> BackendResponse:
        """Invoke with timing measurement."""
        start = time.perf_counter()
        response = await self.invoke(request, profile)
        response.elapsed_ms = int((time.perf_counter() - start) * 1000)
        return response

    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        return True

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
