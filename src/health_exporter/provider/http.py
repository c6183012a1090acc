"""
HTTP provider client.

Talks to a REST bridge in front of the health data provider:

    GET  /permissions                      -> {"granted": ["weight", ...]}
    GET  /records/{type}?start&end         -> {"records": [...], "next_page_token": ...}
    GET  /sessions/{record_id}/aggregate   -> {...} or 404
    POST /changes/token  {"types": [...]}  -> {"token": "..."}
    GET  /changes?token=...                -> {"changes": [...], "next_token", "has_more", "token_expired"}

Requests are retried with exponential backoff on timeouts, connection
errors, 429 and 5xx responses; an endpoint that keeps failing trips its
circuit breaker.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, TypeVar

import httpx

from health_exporter.core.errors import PermissionDeniedError, ProviderUnavailableError, TransientIOError
from health_exporter.core.resilience import CircuitBreaker, ExponentialBackoff
from health_exporter.models.provider import AggregateMetrics, ChangeBatch, ProviderRecord
from health_exporter.models.record import TrackedRecordType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HttpHealthProvider:
    """Async httpx client implementing HealthProvider and PermissionChecker."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        backoff: ExponentialBackoff | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            follow_redirects=True,
        )
        self.backoff = backoff or ExponentialBackoff(base_delay=1.0, max_delay=30.0, max_retries=3)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, timeout=300.0)
        self.stats: dict = {"total_requests": 0, "failed_requests": 0, "retries": 0}

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "HttpHealthProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ──────────────────────────────────────────────
    # HTTP Layer
    # ──────────────────────────────────────────────

    async def _request(
        self, method: str, url: str, endpoint: str, attempt: int = 0, **kwargs
    ) -> httpx.Response:
        """Send a request, retrying transient failures. 4xx responses are returned as-is."""
        if self.circuit_breaker.is_open(endpoint):
            raise ProviderUnavailableError(f"Circuit open for {endpoint}", endpoint=endpoint)

        self.stats["total_requests"] += 1

        try:
            resp = await self.client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            self.stats["failed_requests"] += 1
            if self.backoff.should_retry(attempt):
                delay = self.backoff.calculate_delay(attempt)
                logger.debug(f"{endpoint} failed ({type(e).__name__}), retry {attempt + 1} after {delay:.1f}s")
                self.stats["retries"] += 1
                await asyncio.sleep(delay)
                return await self._request(method, url, endpoint, attempt + 1, **kwargs)
            self.circuit_breaker.record_failure(endpoint)
            raise TransientIOError(
                f"{endpoint} unreachable after {attempt + 1} attempts: {e}", endpoint=endpoint
            ) from e

        if resp.status_code in (401, 403):
            raise PermissionDeniedError(f"Provider refused {endpoint} (HTTP {resp.status_code})")

        if resp.status_code == 429 or resp.status_code >= 500:
            self.stats["failed_requests"] += 1
            if self.backoff.should_retry(attempt):
                if resp.status_code == 429:
                    delay = self.backoff.retry_delay(attempt, resp.headers.get("Retry-After"))
                    logger.warning(f"Rate limited on {endpoint}. Waiting {delay:.0f}s...")
                else:
                    delay = self.backoff.calculate_delay(attempt)
                self.stats["retries"] += 1
                await asyncio.sleep(delay)
                return await self._request(method, url, endpoint, attempt + 1, **kwargs)
            self.circuit_breaker.record_failure(endpoint)
            raise ProviderUnavailableError(
                f"{endpoint} failed with HTTP {resp.status_code}",
                endpoint=endpoint,
                status_code=resp.status_code,
            )

        self.circuit_breaker.record_success(endpoint)
        return resp

    @staticmethod
    def _raise_for_client_error(resp: httpx.Response, endpoint: str) -> None:
        if resp.status_code >= 400:
            raise ProviderUnavailableError(
                f"{endpoint} rejected request with HTTP {resp.status_code}",
                endpoint=endpoint,
                status_code=resp.status_code,
            )

    @staticmethod
    def _decode(resp: httpx.Response, endpoint: str, parse: Callable[[Any], T]) -> T:
        """Parse a JSON body, reporting a malformed one as provider unavailability."""
        try:
            return parse(resp.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderUnavailableError(
                f"{endpoint} returned a malformed response ({type(e).__name__}: {e})",
                endpoint=endpoint,
                status_code=resp.status_code,
            ) from e

    # ──────────────────────────────────────────────
    # Provider Operations
    # ──────────────────────────────────────────────

    async def has_permission(self, record_types: list[TrackedRecordType]) -> bool:
        resp = await self._request("GET", "/permissions", "permissions")
        self._raise_for_client_error(resp, "permissions")
        granted = self._decode(resp, "permissions", lambda data: set(data.get("granted", [])))
        missing = [t.value for t in record_types if t.value not in granted]
        if missing:
            logger.error(f"Missing read permissions: {', '.join(missing)}")
        return not missing

    async def query(
        self, record_type: TrackedRecordType, start: datetime, end: datetime
    ) -> list[ProviderRecord]:
        records: list[ProviderRecord] = []
        params = {"start": start.isoformat(), "end": end.isoformat()}

        def parse_page(payload: dict) -> tuple[list[ProviderRecord], str | None]:
            page = []
            for raw in payload.get("records", []):
                page.append(ProviderRecord.from_dict({"category": record_type.value, **raw}))
            return page, payload.get("next_page_token")

        while True:
            resp = await self._request("GET", f"/records/{record_type.value}", "records", params=params)
            self._raise_for_client_error(resp, "records")
            page, page_token = self._decode(resp, "records", parse_page)
            records.extend(page)

            if not page_token:
                break
            params = {**params, "page_token": page_token}

        logger.debug(f"[{record_type.value}] Fetched {len(records)} records")
        return records

    async def enrich(self, record_id: str) -> AggregateMetrics | None:
        resp = await self._request("GET", f"/sessions/{record_id}/aggregate", "aggregate")
        if resp.status_code == 404:
            return None
        self._raise_for_client_error(resp, "aggregate")
        return self._decode(resp, "aggregate", lambda data: AggregateMetrics.from_dict(data) if data else None)

    async def issue_cursor(self, record_types: list[TrackedRecordType]) -> str:
        resp = await self._request(
            "POST", "/changes/token", "changes_token", json={"types": [t.value for t in record_types]}
        )
        self._raise_for_client_error(resp, "changes_token")
        token = self._decode(resp, "changes_token", lambda data: data["token"])
        if not isinstance(token, str) or not token:
            raise ProviderUnavailableError(
                f"changes_token returned an unusable token: {token!r}", endpoint="changes_token"
            )
        return token

    async def poll_changes(self, cursor: str) -> ChangeBatch:
        resp = await self._request("GET", "/changes", "changes", params={"token": cursor})
        if resp.status_code in (400, 410):
            logger.warning(f"Change cursor rejected (HTTP {resp.status_code})")
            return ChangeBatch(expired=True)
        self._raise_for_client_error(resp, "changes")
        return self._decode(resp, "changes", ChangeBatch.from_dict)
