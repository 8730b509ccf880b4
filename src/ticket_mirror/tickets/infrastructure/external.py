"""
ServiceNow Integration
======================

ServiceNow Table API client with:
- Circuit breaker to stop hammering an unavailable instance
- Exponential backoff retry on transport errors, 429 and 5xx
- Total counts from the ``X-Total-Count`` header

``ServiceNowRemoteSource`` adapts the client to the ``IRemoteSource`` port.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ticket_mirror.core.exceptions import ExternalServiceException, UpstreamUnavailableException
from ticket_mirror.shared.infrastructure.logging import get_logger, log_latency
from ticket_mirror.tickets.application.interfaces import IRemoteSource, RemotePage

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

SLA_FIELDS = "sys_id,task,sla,stage,business_percentage,has_breached,start_time,end_time"


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "ServiceNow circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class ServiceNowClient:
    """
    Thin async client for ``/api/now/table``.

    Pass ``transport`` to route requests through a custom httpx transport
    (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        instance_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        retry_after_seconds: int = 30,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._instance_url = instance_url.rstrip("/")
        self._auth = (username, password) if username and password else None
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._retry_after_seconds = retry_after_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._instance_url,
                auth=self._auth,
                timeout=self._timeout_seconds,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    async def _get(self, path: str, params: Dict[str, Any]) -> Optional[httpx.Response]:
        """
        GET with retries. Returns None on 404.

        Raises:
            UpstreamUnavailableException: circuit open or retries exhausted
            ExternalServiceException: non-retryable client error
        """
        if not self._circuit_breaker.allow_request():
            raise UpstreamUnavailableException(
                "Circuit breaker open",
                retry_after_seconds=int(self._circuit_breaker.recovery_timeout),
                details={"path": path},
            )

        last_error = "unknown error"
        retry_after = self._retry_after_seconds

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                with log_latency(logger, "servicenow_get", path=path, attempt=attempt + 1):
                    response = await client.get(path, params=params)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "ServiceNow request failed",
                    extra={"path": path, "attempt": attempt + 1, "error": last_error}
                )
            else:
                if response.status_code == 404:
                    self._circuit_breaker.record_success()
                    return None
                if response.status_code < 400:
                    self._circuit_breaker.record_success()
                    return response
                if response.status_code not in RETRYABLE_STATUS:
                    raise ExternalServiceException(
                        "ServiceNow",
                        f"HTTP {response.status_code}",
                        {"path": path, "status_code": response.status_code},
                    )
                last_error = f"HTTP {response.status_code}"
                header = response.headers.get("Retry-After")
                if header and header.isdigit():
                    retry_after = int(header)
                logger.warning(
                    "ServiceNow returned retryable status",
                    extra={"path": path, "status_code": response.status_code, "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_seconds * (2 ** attempt))

        self._circuit_breaker.record_failure()
        raise UpstreamUnavailableException(
            last_error,
            retry_after_seconds=retry_after,
            details={"path": path, "attempts": self._max_retries},
        )

    def _parse(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        """
        Decode a Table API body.

        A hibernating instance or an SSO redirect answers 200 with an HTML
        page. That counts as an outage, not as an empty result.
        """
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            self._circuit_breaker.record_failure()
            logger.warning(
                "ServiceNow returned a non-JSON body",
                extra={"path": path, "content_type": response.headers.get("Content-Type")}
            )
            raise UpstreamUnavailableException(
                "Malformed response body",
                retry_after_seconds=self._retry_after_seconds,
                details={"path": path},
            )
        return body

    async def get_record(self, table: str, sys_id: str) -> Optional[Dict[str, Any]]:
        path = f"/api/now/table/{table}/{sys_id}"
        response = await self._get(
            path,
            {"sysparm_display_value": "all", "sysparm_exclude_reference_link": "true"},
        )
        if response is None:
            return None
        return self._parse(response, path).get("result") or None

    async def query_records(
        self,
        table: str,
        query: str,
        limit: int,
        offset: int = 0,
        fields: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Records matching ``query`` and the total match count."""
        params: Dict[str, Any] = {
            "sysparm_query": query,
            "sysparm_limit": limit,
            "sysparm_offset": offset,
            "sysparm_display_value": "all",
            "sysparm_exclude_reference_link": "true",
        }
        if fields:
            params["sysparm_fields"] = fields

        path = f"/api/now/table/{table}"
        response = await self._get(path, params)
        if response is None:
            return [], 0

        records = self._parse(response, path).get("result") or []
        total_header = response.headers.get("X-Total-Count")
        total = int(total_header) if total_header and total_header.isdigit() else offset + len(records)
        return records, total

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class ServiceNowRemoteSource(IRemoteSource):
    """``IRemoteSource`` backed by the ServiceNow Table API."""

    def __init__(self, client: ServiceNowClient):
        self._client = client

    async def fetch_by_id(self, table: str, ticket_id: str) -> Optional[Dict[str, Any]]:
        return await self._client.get_record(table, ticket_id)

    async def fetch_by_filter(
        self,
        table: str,
        query: str,
        limit: int,
        offset: int = 0,
    ) -> RemotePage:
        records, total = await self._client.query_records(table, query, limit, offset)
        return RemotePage(records=records, total=total)

    async def fetch_slas(self, ticket_id: str) -> List[Dict[str, Any]]:
        records, _ = await self._client.query_records(
            "task_sla", f"task={ticket_id}", limit=100, fields=SLA_FIELDS
        )
        return records
