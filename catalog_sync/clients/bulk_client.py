"""
Bulk Feed Client

HTTP client for the supplier's bulk file-transfer feed. The feed serves
whole datasets (inventory, pricing, kits) and is not subject to the
API channel's per-endpoint rate limits.
"""

import httpx
import structlog
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog_sync.config import supplier_settings
from catalog_sync.errors.exceptions import CatalogSyncError, RateLimitedError, TransportError
from catalog_sync.models.enums import SyncType
from catalog_sync.models.sync_results import BulkFetchResult

logger = structlog.get_logger(__name__)


class BulkFeedClient:
    """
    Async HTTP client for the bulk feed.

    Usage:
        async with BulkFeedClient() as client:
            result = await client.fetch(SyncType.INVENTORY, force_refresh=True)
            for item in result.data:
                ...
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize bulk feed client.

        Args:
            base_url: Bulk feed URL (defaults to config)
            timeout: Read timeout in seconds (defaults to config)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or supplier_settings.bulk_base_url).rstrip("/")
        self.timeout = httpx.Timeout(
            connect=10.0,
            read=timeout or supplier_settings.bulk_timeout,
            write=10.0,
            pool=5.0,
        )
        self._transport = transport or httpx.AsyncHTTPTransport(retries=1)
        self._client: Optional[httpx.AsyncClient] = None
        self._log = logger.bind(channel="bulk", base_url=self.base_url)

    async def __aenter__(self) -> "BulkFeedClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise CatalogSyncError(
                "BulkFeedClient not initialized. Use 'async with BulkFeedClient() as client:'"
            )
        return self._client

    async def fetch(
        self,
        resource: SyncType,
        force_refresh: bool = False,
        batch_size: Optional[int] = None,
        categories: Optional[List[str]] = None,
        date_filter: Optional[datetime] = None,
    ) -> BulkFetchResult:
        """
        Download one dataset from the bulk feed.

        Args:
            resource: Dataset to download
            force_refresh: Ask the feed to regenerate its export first
            batch_size: Optional page size hint for the feed
            categories: Optional category filter
            date_filter: Only records changed since this time

        Returns:
            BulkFetchResult with the raw item dicts

        Raises:
            RateLimitedError: If the feed answers 429
            TransportError: On network errors, timeouts or non-2xx responses
        """
        path = f"/ftp-sync/{resource.value}"
        payload: Dict[str, Any] = {
            "accountNumber": supplier_settings.account_number,
            "securityToken": supplier_settings.security_token,
            "forceRefresh": force_refresh,
        }
        if batch_size:
            payload["batchSize"] = batch_size
        if categories:
            payload["categories"] = categories
        if date_filter:
            payload["dateFilter"] = date_filter.isoformat()

        log = self._log.bind(resource=resource.value, force_refresh=force_refresh)
        log.info("bulk_fetch_started", incremental=date_filter is not None)

        try:
            response = await self.client.post(path, json=payload)
        except httpx.TimeoutException as e:
            log.error("bulk_fetch_timeout", error=str(e))
            raise TransportError(f"Timeout fetching bulk {resource.value}: {e}") from e
        except httpx.HTTPError as e:
            log.error("bulk_fetch_failed", error=str(e), error_type=type(e).__name__)
            raise TransportError(f"Network error fetching bulk {resource.value}: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                f"Bulk feed rate limited (429) for {resource.value}",
                endpoint=path,
                retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if response.status_code >= 400:
            log.error("bulk_fetch_http_error", status_code=response.status_code, body=response.text[:200])
            raise TransportError(
                f"Bulk feed error {response.status_code} for {resource.value}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from bulk feed: {e}") from e

        if isinstance(body, list):
            items = body
            success, message = True, None
        else:
            success = bool(body.get("success", True))
            message = body.get("message") or body.get("error")
            data = body.get("data") or []
            items = data.get("items", []) if isinstance(data, dict) else data

        if not success:
            log.warning("bulk_fetch_unsuccessful", message=message)
            return BulkFetchResult(success=False, errors=[message or "Bulk feed reported failure"])

        items = [item for item in items if isinstance(item, dict)]
        log.info("bulk_fetch_completed", total_records=len(items))
        return BulkFetchResult(success=True, data=items, total_records=len(items))

    async def test_connection(self) -> bool:
        """Check that the bulk feed answers."""
        try:
            response = await self.client.get("/ftp-sync/status")
            healthy = response.status_code == 200
            self._log.info("bulk_connection_tested", healthy=healthy, status_code=response.status_code)
            return healthy
        except httpx.HTTPError as e:
            self._log.error("bulk_connection_test_failed", error=str(e))
            return False
