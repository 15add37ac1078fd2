"""
HTTP pipeline shared by REST connectors.

Every call goes through the same steps: wait on the :class:`RateLimiter`, build
authentication headers or query parameters, issue the request with HTTPX, map
error statuses onto the connector error taxonomy and reshape the body through
the configured dotted paths. Retries are driven by tenacity and use the
backoff strategy from the configuration; a ``Retry-After`` header is honoured
through :class:`~connector_sdk.resilience.BackoffWait`.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from logging import LoggerAdapter
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt

from ...core.errors import (
    AuthenticationError,
    ConnectionTimeoutError,
    ConnectorConnectionError,
    ConnectorError,
    PermissionDeniedError,
    QueryError,
    RateLimitError,
    ResourceNotFoundError,
)
from ...core.logging import get_logger
from ...resilience import BackoffWait, RateLimiter, RateLimits, is_retryable_exception
from ..base import Stopwatch
from .config import RESTConnectorConfig

CustomAuth = Callable[[Mapping[str, Any]], Mapping[str, str]]


def extract_path(payload: Any, path: Optional[str]) -> Any:
    """
    Follow a dotted ``path`` through nested mappings and lists.

    Numeric segments index into lists. Missing segments yield ``None``.
    """

    if not path:
        return payload
    current = payload
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Convert a ``Retry-After`` header (seconds or HTTP date) into milliseconds."""

    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0) * 1000.0
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max((moment - current).total_seconds(), 0.0) * 1000.0


@dataclass(slots=True)
class PaginationState:
    has_more: bool = False
    next_cursor: Optional[str] = None
    next_offset: Optional[int] = None
    next_page: Optional[int] = None
    total_count: Optional[int] = None
    page_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasMore": self.has_more,
            "nextCursor": self.next_cursor,
            "nextOffset": self.next_offset,
            "nextPage": self.next_page,
            "totalCount": self.total_count,
            "pageSize": self.page_size,
        }


@dataclass(slots=True)
class RESTResponse:
    """Reshaped response: ``data`` after ``data_path``, plus envelope extracts."""

    status_code: int
    data: Any = None
    raw: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    total_count: Optional[int] = None
    meta: Any = None
    error: Optional[str] = None
    pagination: PaginationState = field(default_factory=PaginationState)
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "totalCount": self.total_count, "error": self.error}


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def _as_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def error_for_response(response: httpx.Response, *, error_path: Optional[str] = None) -> ConnectorError:
    """
    Map an HTTP error status onto the taxonomy.

    401 → :class:`AuthenticationError`, 403 → :class:`PermissionDeniedError`,
    404 → :class:`ResourceNotFoundError`, 429 → :class:`RateLimitError`
    carrying ``Retry-After`` in milliseconds, 5xx →
    :class:`ConnectorConnectionError`; anything else is a :class:`QueryError`.
    """

    status = response.status_code
    reason = response.reason_phrase or ""
    message = f"HTTP {status}: {reason}".rstrip(": ")
    body = _body(response)
    detail = extract_path(body, error_path) if error_path and isinstance(body, (Mapping, list)) else None
    if detail is None and isinstance(body, str) and body:
        detail = body[:500]
    if detail:
        message = f"{message}: {detail}"
    metadata = {"status": status, "url": str(response.request.url) if response.request is not None else None}

    if status == 401:
        return AuthenticationError(message, metadata=metadata)
    if status == 403:
        return PermissionDeniedError("Access forbidden", metadata=metadata)
    if status == 404:
        return ResourceNotFoundError("Resource not found", metadata=metadata)
    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        return RateLimitError(retry_after_ms=retry_after, metadata=metadata)
    if status >= 500:
        return ConnectorConnectionError(message, status_code=status, metadata=metadata)
    return QueryError(message, code="HTTP_ERROR", status_code=status, metadata=metadata)


class RESTClient:
    """
    Synchronous, rate-limited HTTP client for one REST connector.

    Parameters
    ----------
    config:
        Validated connector configuration.
    credentials:
        Resolved credentials mapping; never logged.
    transport:
        Optional HTTPX transport, e.g. :class:`httpx.MockTransport` in tests.
    custom_auth:
        Callback producing headers for ``authentication.type == "custom"``.
    clock, sleep:
        Time source and sleeper shared by the rate limiter and retries.
    """

    def __init__(
        self,
        config: RESTConnectorConfig,
        credentials: Optional[Mapping[str, Any]] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        custom_auth: Optional[CustomAuth] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._credentials = dict(credentials or {})
        self._transport = transport
        self._custom_auth = custom_auth
        self._sleep = sleep
        limits = config.rate_limiting
        self.rate_limiter = RateLimiter(
            RateLimits(
                requests_per_second=limits.requests_per_second,
                requests_per_minute=limits.requests_per_minute,
                requests_per_hour=limits.requests_per_hour,
                requests_per_day=limits.requests_per_day,
            ),
            clock=clock,
            sleep=sleep,
        )
        self.logger: LoggerAdapter = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"base_url": config.base_url},
        )

    # Authentication ---------------------------------------------------------

    def _api_key(self) -> Optional[str]:
        return self._credentials.get("apiKey") or self._credentials.get("api_key") or self._credentials.get("key")

    def auth_headers(self) -> Dict[str, str]:
        auth = self.config.authentication
        if not self._credentials and auth.type != "custom":
            return {}
        if auth.type == "api_key" and auth.location == "header":
            key = self._api_key()
            return {auth.param_name: f"{auth.header_prefix}{key}"} if key else {}
        if auth.type == "bearer":
            token = self._credentials.get("token") or self._credentials.get("accessToken") or self._credentials.get("access_token")
            return {"Authorization": f"Bearer {token}"} if token else {}
        if auth.type == "basic":
            pair = f"{self._credentials.get('username', '')}:{self._credentials.get('password', '')}"
            return {"Authorization": "Basic " + base64.b64encode(pair.encode("utf-8")).decode("ascii")}
        if auth.type == "custom" and self._custom_auth is not None:
            return dict(self._custom_auth(self._credentials))
        return {}

    def auth_params(self) -> Dict[str, str]:
        auth = self.config.authentication
        if auth.type == "api_key" and auth.location == "query":
            key = self._api_key()
            return {auth.param_name: key} if key else {}
        return {}

    # Transport --------------------------------------------------------------

    def _default_headers(self) -> Dict[str, str]:
        request = self.config.request_config
        headers = {"Content-Type": request.content_type, "Accept": "application/json", "User-Agent": request.user_agent}
        headers.update(request.custom_headers)
        headers.update(self.auth_headers())
        return headers

    def _build_client(self, timeout_ms: Optional[int] = None) -> httpx.Client:
        timeout = (timeout_ms or self.config.request_config.timeout) / 1000.0
        return httpx.Client(
            base_url=self.config.base_url,
            timeout=timeout,
            headers=self._default_headers(),
            follow_redirects=True,
            transport=self._transport,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        error = error_for_response(response, error_path=self.config.response_transform.error_path)
        if response.status_code in self.config.request_config.retryable_status_codes:
            error.retryable = True
        raise error

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> RESTResponse:
        """Issue one logical request, retrying retryable failures."""

        method = method.upper()
        query = {key: value for key, value in dict(params or {}).items() if value is not None}
        query.update(self.auth_params())
        limits = self.config.rate_limiting
        self.logger.debug("HTTP request", extra={"method": method, "url": endpoint})

        @retry(
            retry=retry_if_exception(is_retryable_exception),
            wait=BackoffWait(
                strategy=limits.backoff_strategy,
                base_delay_ms=limits.initial_delay_ms,
                max_delay_ms=limits.max_delay_ms,
                jitter=limits.jitter,
            ),
            stop=stop_after_attempt(limits.max_retries + 1),
            sleep=self._sleep,
            reraise=True,
        )
        def _send() -> httpx.Response:
            self.rate_limiter.acquire()
            try:
                with self._build_client(timeout_ms) as client:
                    response = client.request(
                        method,
                        endpoint,
                        params=query or None,
                        json=json_body if method in ("POST", "PUT", "PATCH") else None,
                        headers=dict(headers or {}),
                    )
            except httpx.TimeoutException as exc:
                raise ConnectionTimeoutError(timeout_ms or self.config.request_config.timeout, cause=exc) from exc
            except httpx.HTTPError as exc:
                raise ConnectorConnectionError(f"HTTP error while calling {method} {endpoint}: {exc}", cause=exc) from exc
            self._raise_for_status(response)
            return response

        watch = Stopwatch()
        try:
            response = _send()
        except ConnectorError as exc:
            self.logger.warning(
                "HTTP request failed",
                extra={"method": method, "url": endpoint, "code": exc.code, "status_code": exc.metadata.get("status")},
            )
            raise
        result = self._reshape(response)
        result.elapsed_ms = watch.elapsed_ms
        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return result

    def _reshape(self, response: httpx.Response) -> RESTResponse:
        transform = self.config.response_transform
        body = _body(response)
        total = extract_path(body, transform.total_count_path) if transform.total_count_path else None
        cursor = extract_path(body, transform.next_cursor_path) if transform.next_cursor_path else None
        error = extract_path(body, transform.error_path) if transform.error_path else None
        total_count = _as_count(total)
        pagination = PaginationState(
            has_more=bool(cursor),
            next_cursor=str(cursor) if cursor else None,
            total_count=total_count,
        )
        return RESTResponse(
            status_code=response.status_code,
            data=extract_path(body, transform.data_path) if transform.data_path else body,
            raw=body,
            headers=dict(response.headers),
            total_count=total_count,
            meta=extract_path(body, transform.meta_path) if transform.meta_path else None,
            error=str(error) if error else None,
            pagination=pagination,
        )

    def get_json(self, endpoint: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET ``endpoint`` and return the raw decoded body, ignoring ``data_path``."""

        return self.request("GET", endpoint, params=params).raw


__all__ = [
    "PaginationState",
    "RESTClient",
    "RESTResponse",
    "error_for_response",
    "extract_path",
    "parse_retry_after",
]
