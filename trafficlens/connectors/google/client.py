"""Trafficlens — Google Analytics Data API Client.

Handles bearer authentication, retry logic, rate limiting, pagination and a
single token refresh when the provider answers 401 mid-run.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from trafficlens.config import settings
from trafficlens.models.report_models import ReportRow
from trafficlens.core.logging import get_logger

logger = get_logger("google.client")

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2  # seconds

TokenRefresher = Callable[[], Awaitable[str]]


class GoogleAPIError(Exception):
    """Raised when the Analytics Data API returns an error."""

    def __init__(self, message: str, status_code: int = 0, error_status: str = ""):
        self.status_code = status_code
        self.error_status = error_status
        super().__init__(message)


class GoogleAnalyticsClient:
    """Async HTTP client for the GA4 Data API ``runReport`` method."""

    def __init__(
        self,
        access_token: str,
        property_id: str,
        on_unauthorized: Optional[TokenRefresher] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ):
        self.access_token = access_token
        self.property_id = property_id
        self.on_unauthorized = on_unauthorized
        self.base_url = (base_url or settings.ga_data_base_url).rstrip("/")
        self.retry_base_delay = retry_base_delay
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.request_timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "GoogleAnalyticsClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        json_body: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request with retry, rate-limit and refresh-once handling."""
        client = await self._get_client()
        refreshed = False
        attempt = 0

        while attempt < MAX_RETRIES:
            attempt += 1
            headers = {"Authorization": f"Bearer {self.access_token}"}
            try:
                resp = await client.request(method, url, json=json_body, headers=headers)

                # Expired or revoked access token: refresh once and replay
                if resp.status_code == 401 and self.on_unauthorized and not refreshed:
                    logger.warning("Access token rejected (401). Refreshing and retrying once")
                    self.access_token = await self.on_unauthorized()
                    refreshed = True
                    attempt -= 1
                    continue

                # Rate limited
                if resp.status_code == 429:
                    if attempt < MAX_RETRIES:
                        wait = self.retry_base_delay * (2 ** (attempt - 1))
                        logger.warning(
                            f"Rate limited (429). Retrying in {wait}s (attempt {attempt}/{MAX_RETRIES})"
                        )
                        await asyncio.sleep(wait)
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as e:
                body = (
                    e.response.json()
                    if e.response.headers.get("content-type", "").startswith(
                        "application/json"
                    )
                    else {}
                )
                error = body.get("error", {}) if isinstance(body, dict) else {}
                error_msg = error.get("message", str(e))
                error_status = error.get("status", "")

                if attempt < MAX_RETRIES and e.response.status_code >= 500:
                    wait = self.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                raise GoogleAPIError(
                    error_msg, e.response.status_code, error_status
                ) from e

            except httpx.RequestError as e:
                if attempt < MAX_RETRIES:
                    wait = self.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(f"Request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise GoogleAPIError(
                    f"Connection failed after {MAX_RETRIES} retries: {e}"
                ) from e

        raise GoogleAPIError("Max retries exhausted")

    # ── Reports ──

    async def run_report(
        self,
        dimensions: List[str],
        metrics: List[str],
        start_date: str,
        end_date: str,
        page_size: int | None = None,
        max_pages: int = 50,
    ) -> List[ReportRow]:
        """Run a report and return every row across all pages."""
        url = f"{self.base_url}/properties/{self.property_id}:runReport"
        limit = page_size or settings.report_page_size
        rows: List[ReportRow] = []
        offset = 0

        for _ in range(max_pages):
            body = {
                "dateRanges": [{"startDate": start_date, "endDate": end_date}],
                "dimensions": [{"name": d} for d in dimensions],
                "metrics": [{"name": m} for m in metrics],
                "limit": limit,
                "offset": offset,
            }
            result = await self._request("POST", url, body)
            page = [_to_report_row(r) for r in result.get("rows") or []]
            rows.extend(page)

            row_count = int(result.get("rowCount") or 0)
            offset += len(page)
            if not page or offset >= row_count:
                break

        logger.info(f"Fetched {len(rows)} rows for {dimensions} x {metrics}")
        return rows


def _to_report_row(raw: Dict[str, Any]) -> ReportRow:
    """Flatten ``{"dimensionValues": [{"value": ..}], ...}`` into a ReportRow."""
    return ReportRow(
        dimensions=[str(v.get("value", "")) for v in raw.get("dimensionValues") or []],
        metrics=[str(v.get("value", "")) for v in raw.get("metricValues") or []],
    )
