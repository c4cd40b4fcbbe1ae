"""
Supplier API Client

HTTP client for the supplier's rate-limited request/response API.
Uses httpx for async HTTP requests with tenacity retries on connection
errors, and consults the shared RateLimitGate before every call.
"""

import httpx
import structlog
from typing import Any, Dict, Optional
from tenacity import (
    AsyncRetrying,
    RetryError,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from catalog_sync.config import supplier_settings
from catalog_sync.errors.exceptions import CatalogSyncError, RateLimitedError, TransportError
from catalog_sync.models.enums import SyncType, SYNC_TYPE_ENDPOINTS
from catalog_sync.models.sync_results import ApiResponse
from catalog_sync.services.rate_limit import RateLimitGate

logger = structlog.get_logger(__name__)

INVENTORY_ENDPOINT = SYNC_TYPE_ENDPOINTS[SyncType.INVENTORY]
PRICING_ENDPOINT = SYNC_TYPE_ENDPOINTS[SyncType.PRICING]
KITS_ENDPOINT = SYNC_TYPE_ENDPOINTS[SyncType.KITS]


class SupplierApiClient:
    """
    Async HTTP client for the supplier API.

    Every call returns an ApiResponse envelope. Throttling surfaces as
    RateLimitedError (and marks the gate), network failures as
    TransportError.

    Usage:
        async with SupplierApiClient(gate=gate) as client:
            response = await client.get_details("ABC123")
            if response.success:
                ...
    """

    def __init__(
        self,
        gate: RateLimitGate,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize supplier API client.

        Args:
            gate: Shared rate-limit state
            base_url: Supplier API URL (defaults to config)
            timeout: Read timeout in seconds (defaults to config)
            max_retries: Attempts on connection errors (defaults to config)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.gate = gate
        self.base_url = (base_url or supplier_settings.api_base_url).rstrip("/")
        self.timeout = httpx.Timeout(
            connect=5.0,
            read=timeout or supplier_settings.timeout,
            write=5.0,
            pool=5.0,
        )
        self.max_retries = max_retries or supplier_settings.max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = logger.bind(channel="api", base_url=self.base_url)

    async def __aenter__(self) -> "SupplierApiClient":
        """Context manager entry - create async client."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close async client."""
        await self.close()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": "catalog-sync/1.0",
                },
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not initialized."""
        if self._client is None:
            raise CatalogSyncError(
                "SupplierApiClient not initialized. Use 'async with SupplierApiClient(...) as client:'"
            )
        return self._client

    def _credentials(self) -> Dict[str, str]:
        return {
            "accountNumber": supplier_settings.account_number,
            "securityToken": supplier_settings.security_token,
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        """POST with exponential backoff on connection errors."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.client.post(path, json={**self._credentials(), **payload})
        raise TransportError(f"No attempt made for {path}")

    async def _request(
        self,
        path: str,
        endpoint: str,
        payload: Dict[str, Any],
    ) -> ApiResponse:
        """
        Send one gated API call.

        Args:
            path: URL path relative to the base URL
            endpoint: Rate-limit gate key for this call
            payload: JSON body (credentials are added)

        Returns:
            ApiResponse envelope

        Raises:
            RateLimitedError: If the endpoint is in cooldown or the call was throttled
            TransportError: On network errors, timeouts, 5xx or undecodable bodies
        """
        if self.gate.is_limited(endpoint):
            remaining = self.gate.remaining_cooldown(endpoint)
            raise RateLimitedError(
                f"Endpoint {endpoint} is rate limited for another {remaining}s",
                endpoint=endpoint,
                retry_after_seconds=remaining,
            )

        try:
            response = await self._post(path, payload)
        except httpx.TimeoutException as e:
            self._log.error("api_request_timeout", path=path, error=str(e))
            raise TransportError(f"Timeout calling {path}: {e}") from e
        except (httpx.HTTPError, RetryError) as e:
            self._log.error("api_request_failed", path=path, error=str(e), error_type=type(e).__name__)
            raise TransportError(f"Network error calling {path}: {e}") from e

        if response.status_code == 429:
            self._raise_rate_limited(endpoint, response.headers.get("Retry-After"), "HTTP 429")

        if response.status_code == 404:
            return ApiResponse(success=False, error="Not found", status_code=404)

        if response.status_code >= 500:
            self._log.warning(
                "api_server_error",
                path=path,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise TransportError(f"Supplier API error {response.status_code} on {path}")

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}: {e}") from e

        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            return ApiResponse(
                success=False,
                error=error or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            return ApiResponse(success=True, data=body, status_code=response.status_code)

        error = body.get("error") or body.get("message")
        if not body.get("success", True) and error and _mentions_rate_limit(error):
            self._raise_rate_limited(endpoint, body.get("retryAfter"), error)

        return ApiResponse(
            success=bool(body.get("success", True)),
            data=body.get("data"),
            error=error if not body.get("success", True) else None,
            status_code=response.status_code,
        )

    def _raise_rate_limited(self, endpoint: str, retry_after: Any, reason: str) -> None:
        try:
            seconds = int(retry_after) if retry_after is not None else supplier_settings.default_rate_limit_seconds
        except (TypeError, ValueError):
            seconds = supplier_settings.default_rate_limit_seconds
        self.gate.mark_limited(endpoint, seconds, reason=reason)
        raise RateLimitedError(
            f"Rate limited (429) on {endpoint}, retry in {seconds}s",
            endpoint=endpoint,
            retry_after_seconds=seconds,
        )

    async def search(
        self,
        resource: SyncType,
        query: Optional[str] = None,
        page: int = 1,
        page_size: int = 500,
    ) -> ApiResponse:
        """
        Search (or list, with no query) records of one resource.

        Args:
            resource: Which dataset to page through
            query: Optional free-text filter
            page: 1-based page number
            page_size: Records per page

        Returns:
            ApiResponse whose data is a list of records
        """
        return await self._request(
            "/search",
            SYNC_TYPE_ENDPOINTS[resource],
            {"resource": resource.value, "query": query or "", "page": page, "pageSize": page_size},
        )

    async def get_details(self, vcpn: str) -> ApiResponse:
        """Fetch full details of one part."""
        return await self._request("/parts/details", INVENTORY_ENDPOINT, {"vcpn": vcpn})

    async def check_inventory(self, vcpn: str) -> ApiResponse:
        """Fetch current availability of one part."""
        return await self._request("/inventory/check", INVENTORY_ENDPOINT, {"vcpn": vcpn})

    async def get_pricing(self, vcpn: str) -> ApiResponse:
        """Fetch price tiers of one part."""
        return await self._request("/pricing", PRICING_ENDPOINT, {"vcpn": vcpn})

    async def get_kit_components(self, kit_vcpn: str) -> ApiResponse:
        """Fetch the component lines of one kit."""
        return await self._request(
            "/kits/components",
            KITS_ENDPOINT,
            {"method": "GetKitComponents", "kitVcpn": kit_vcpn},
        )

    async def test_connection(self) -> bool:
        """Check that the API answers an authenticated call."""
        try:
            response = await self.client.post("/health", json=self._credentials())
            healthy = response.status_code == 200
            self._log.info("api_connection_tested", healthy=healthy, status_code=response.status_code)
            return healthy
        except httpx.HTTPError as e:
            self._log.error("api_connection_test_failed", error=str(e))
            return False


def _mentions_rate_limit(text: str) -> bool:
    lowered = text.lower()
    return "429" in lowered or "rate limit" in lowered
