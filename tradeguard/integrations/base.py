from abc import ABC, abstractmethod

import httpx

from tradeguard.common.exceptions import ExternalServiceError
from tradeguard.common.logging import get_logger


class BaseIntegration(ABC):
    """Base class for the HTTP services the dispute engine talks to.

    Owns the per-call ``httpx.AsyncClient`` settings (base URL, timeout and an
    optional transport for tests) and maps transport failures onto
    ``ExternalServiceError`` so callers only ever see engine errors.
    """

    def __init__(
        self,
        name: str,
        timeout: float,
        base_url: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.logger = get_logger(f"integrations.{name}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def _unavailable(self, exc: httpx.HTTPError) -> ExternalServiceError:
        self.logger.error("%s call failed: %s", self.name, exc)
        return ExternalServiceError(self.name, str(exc))

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the service is reachable."""
        ...
