"""
Graph API client with pagination, throttling, retry, and safety enforcement.
Synchronous: each request is issued and awaited before the next one starts.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation

logger = logging.getLogger("m365_admin_reports.graph")


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


class GraphClient:
    """
    Microsoft Graph API client.
    Features:
      - Safety-validated requests (read-only enforcement)
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504
      - Streaming generators for large result sets
      - v1.0 and beta endpoint support
    """

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self._transport = transport
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.Client] = None

    def __enter__(self):
        self._client = httpx.Client(
            timeout=httpx.Timeout(60.0, connect=30.0),
            headers=self._default_headers(),
            transport=self._transport,
        )
        return self

    def __exit__(self, *args):
        if self._client:
            self._client.close()
            self._client = None

    def _default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "ConsistencyLevel": "eventual",  # Required for $count, $search
        }

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        endpoint = endpoint.lstrip("/")
        return f"{GRAPH_BASE_URL}/{version}/{endpoint}"

    def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> dict:
        """
        Execute a single GET request with retry/throttle handling.
        """
        url = self._build_url(endpoint, beta=beta)
        self.guardian.validate_request("GET", url)
        return self._execute_with_retry("GET", url, params=params)

    def get_object(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> Optional[dict]:
        """
        GET a single object. Returns None only when the object does not exist;
        a 403 or exhausted throttling retries raise GraphAPIError.
        """
        data = self.get(endpoint, params=params, beta=beta)
        raise_for_flags(data, self._build_url(endpoint, beta=beta))
        if data.get("_not_found"):
            return None
        return data

    def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        top: Optional[int] = None,
        skip_top: bool = False,
    ) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Use get_all_pages_stream() for very large datasets.
        Set skip_top=True for endpoints that don't support $top.
        """
        return list(self.get_all_pages_stream(endpoint, params, beta, top, skip_top=skip_top))

    def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        top: Optional[int] = None,
        skip_top: bool = False,
    ) -> Iterator[dict]:
        """
        Stream all pages of a paginated endpoint, one item at a time.
        Set skip_top=True for endpoints that don't support $top.
        """
        params = dict(params or {})
        if not skip_top:
            if top and "$top" not in params:
                params["$top"] = str(min(top, DEFAULT_PAGE_SIZE))
            elif "$top" not in params:
                params["$top"] = str(DEFAULT_PAGE_SIZE)

        url = self._build_url(endpoint, beta=beta)
        yield from self._paginate("GET", url, params=params, label=endpoint)

    def _paginate(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        label: str = "",
    ) -> Iterator[dict]:
        """Follow @odata.nextLink until exhausted, yielding each record."""
        pages = 0
        next_url: Optional[str] = url

        while next_url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request(method, next_url, json_body)
            data = self._execute_with_retry(method, next_url, params=params, json_body=json_body)

            # Surface 403 Forbidden instead of silently returning empty
            raise_for_flags(data, next_url)

            for item in data.get("value", []):
                yield item

            next_url = data.get("@odata.nextLink")
            params = None  # nextLink contains all params
            pages += 1

        if next_url:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {label or url}"
            )

    def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = INITIAL_BACKOFF_SECONDS

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
                self._request_count += 1

                if response.status_code == 200:
                    if not response.content or not response.content.strip():
                        return {"value": []}
                    try:
                        return response.json()
                    except ValueError:
                        logger.debug(f"200 response with non-JSON body from {url}")
                        return {"value": []}

                if response.status_code == 204:
                    return {}

                if response.status_code == 404:
                    logger.debug(f"404 Not Found: {url}")
                    return {"value": [], "_not_found": True}

                if response.status_code in (429, 503, 504):
                    self._throttle_count += 1
                    retry_after = float(
                        response.headers.get("Retry-After", backoff)
                    )
                    wait_time = max(retry_after, backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    time.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                if response.status_code == 403:
                    error_msg = _error_message(response, "Forbidden")
                    logger.warning(f"403 Forbidden: {url} — {error_msg}")
                    return {"value": [], "_forbidden": True, "_error_message": error_msg}

                # Other errors
                raise GraphAPIError(
                    response.status_code, _error_message(response, response.text[:200]), url
                )

            except httpx.TimeoutException:
                logger.warning(f"Timeout on {url}, attempt {attempt + 1}/{MAX_RETRIES}")
                if attempt == MAX_RETRIES:
                    raise
                time.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

            except httpx.ConnectError as e:
                logger.warning(f"Connection error on {url}: {e}")
                if attempt == MAX_RETRIES:
                    raise
                time.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        return {"value": [], "_max_retries_exceeded": True}

    def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'with' context.")

        if method == "GET":
            return self._client.get(url, params=params)
        elif method == "POST":
            return self._client.post(url, json=json_body, params=params)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def raise_for_flags(data: dict, url: str):
    """Turn the retry loop's forbidden / throttled flags into GraphAPIError."""
    if data.get("_forbidden"):
        raise GraphAPIError(
            403,
            data.get("_error_message", "Forbidden — missing API permission"),
            url,
        )
    if data.get("_max_retries_exceeded"):
        raise GraphAPIError(429, "Throttling retries exhausted", url)


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull error.message out of a Graph/Exchange error body."""
    try:
        body: Any = response.json() if response.content else {}
    except ValueError:
        return default
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if isinstance(error, dict):
        return error.get("message") or default
    return str(error) or default
