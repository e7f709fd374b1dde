"""
Shared async HTTP client for upstream APIs (Helius, nad.fun, price and
chart sources). Retries on rate limits only; everything else surfaces as
UpstreamError for the caller to log and skip.
"""

from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from clawledger.db.models import ChainTag
from clawledger.exceptions import RateLimitError, UpstreamError
from clawledger.utils.logging import LoggerMixin


class ApiClient(LoggerMixin):
    """Base class for httpx-backed API clients."""

    name = "api"

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        chain: Optional[ChainTag] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._timeout = timeout
        self._transport = transport
        self._chain = chain
        self._http_client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Create the underlying HTTP client."""
        if self._http_client is not None:
            return
        self._http_client = httpx.AsyncClient(
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10, keepalive_expiry=30),
        )
        self.log.debug("HTTP client initialized", client=self.name, base_url=self._base_url)

    async def close(self) -> None:
        """Close connections."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self._base_url}{endpoint}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _api_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Make a request and decode JSON, retrying on HTTP 429."""
        if not self._http_client:
            raise RuntimeError(f"{self.name} client not initialized")

        url = self._url(endpoint)
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{self.name} request failed: {e}", self._chain) from e

        if response.status_code == 429:
            self.log.warning("Upstream rate limited, retrying", client=self.name)
            raise RateLimitError(f"{self.name} rate limit exceeded", self._chain, "429")

        if response.status_code >= 400:
            self.log.error(
                "Upstream API error",
                client=self.name,
                status=response.status_code,
                body=response.text[:200],
            )
            raise UpstreamError(
                f"{self.name} API error: {response.status_code}",
                self._chain,
                str(response.status_code),
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned invalid JSON", self._chain) from e

    async def _api_object(self, method: str, endpoint: str, **kwargs) -> dict[str, Any]:
        """Like _api_request, for endpoints that answer with a JSON object."""
        data = await self._api_request(method, endpoint, **kwargs)
        if not isinstance(data, dict):
            raise UpstreamError(f"{self.name} returned {type(data).__name__}, expected an object", self._chain)
        return data

    async def _api_list(self, method: str, endpoint: str, **kwargs) -> list[Any]:
        """Like _api_request, for endpoints that answer with a JSON array."""
        data = await self._api_request(method, endpoint, **kwargs)
        if not isinstance(data, list):
            raise UpstreamError(f"{self.name} returned {type(data).__name__}, expected an array", self._chain)
        return data
