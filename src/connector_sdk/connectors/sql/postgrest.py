"""
PostgREST query builder and HTTP client used by the Supabase connector when
no direct Postgres connection is available.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt

from ...core.errors import ConnectionTimeoutError, ConnectorConnectionError, ConnectorError, QueryError
from ...core.logging import get_logger
from ...resilience import BackoffWait, is_retryable_exception
from ..rest.client import error_for_response

_RESERVED = re.compile(r"[,.:()\"\s]")
_CONTENT_RANGE = re.compile(r"^(?:\d+-\d+|\*)/(\d+|\*)$")


def postgrest_literal(value: Any) -> str:
    """Render a filter operand, quoting strings that contain PostgREST delimiters."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if _RESERVED.search(text):
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def parse_content_range(value: Optional[str]) -> Optional[int]:
    """Total row count from ``Content-Range: 0-24/3573``; ``None`` when unknown."""

    if not value:
        return None
    match = _CONTENT_RANGE.match(value.strip())
    if match is None or match.group(1) == "*":
        return None
    return int(match.group(1))


class PostgrestQuery:
    """
    Fluent builder for PostgREST table requests.

    Examples
    --------
    >>> PostgrestQuery("users").eq("active", True).order("created_at", descending=True).limit(10).to_params()
    [('select', '*'), ('active', 'eq.true'), ('order', 'created_at.desc'), ('limit', '10')]
    """

    def __init__(self, table: str, columns: str = "*") -> None:
        self.table = table
        self._select = columns
        self._filters: List[Tuple[str, str]] = []
        self._order: List[str] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self.range_header: Optional[str] = None

    def _filter(self, column: str, operator: str, value: Any) -> "PostgrestQuery":
        self._filters.append((column, f"{operator}.{postgrest_literal(value)}"))
        return self

    def eq(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "eq", value)

    def neq(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "neq", value)

    def gt(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "gt", value)

    def gte(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "gte", value)

    def lt(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "lt", value)

    def lte(self, column: str, value: Any) -> "PostgrestQuery":
        return self._filter(column, "lte", value)

    def like(self, column: str, pattern: str) -> "PostgrestQuery":
        return self._filter(column, "like", pattern.replace("%", "*"))

    def ilike(self, column: str, pattern: str) -> "PostgrestQuery":
        return self._filter(column, "ilike", pattern.replace("%", "*"))

    def in_(self, column: str, values: Iterable[Any]) -> "PostgrestQuery":
        rendered = ",".join(postgrest_literal(item) for item in values)
        self._filters.append((column, f"in.({rendered})"))
        return self

    def is_(self, column: str, value: Optional[bool]) -> "PostgrestQuery":
        return self._filter(column, "is", value)

    def or_(self, *conditions: str) -> "PostgrestQuery":
        self._filters.append(("or", f"({','.join(conditions)})"))
        return self

    def match(self, criteria: Mapping[str, Any]) -> "PostgrestQuery":
        """Translate a plain criteria mapping: lists become ``in``, ``None`` becomes ``is.null``."""

        for column, value in criteria.items():
            if value is None:
                self.is_(column, None)
            elif isinstance(value, (list, tuple, set)):
                self.in_(column, value)
            else:
                self.eq(column, value)
        return self

    def order(self, column: str, *, descending: bool = False, nulls_first: Optional[bool] = None) -> "PostgrestQuery":
        term = f"{column}.{'desc' if descending else 'asc'}"
        if nulls_first is not None:
            term += ".nullsfirst" if nulls_first else ".nullslast"
        self._order.append(term)
        return self

    def limit(self, count: int) -> "PostgrestQuery":
        self._limit = count
        return self

    def offset(self, count: int) -> "PostgrestQuery":
        self._offset = count
        return self

    def range(self, start: int, end: int) -> "PostgrestQuery":
        """Inclusive row window sent as a ``Range`` header."""

        self.range_header = f"{start}-{end}"
        return self

    def filter_params(self) -> List[Tuple[str, str]]:
        return list(self._filters)

    def to_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = [("select", self._select)]
        params.extend(self._filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        if self._offset is not None:
            params.append(("offset", str(self._offset)))
        return params


@dataclass(slots=True)
class PostgrestResult:
    data: List[Dict[str, Any]] = field(default_factory=list)
    count: Optional[int] = None
    status_code: int = 200


class PostgrestClient:
    """
    Minimal synchronous PostgREST client for ``<supabase_url>/rest/v1``.

    Parameters
    ----------
    url:
        Project URL, e.g. ``https://<ref>.supabase.co``.
    key:
        Anon or service-role key, sent as ``apikey`` and bearer token.
    schema:
        Exposed schema selected with ``Accept-Profile`` / ``Content-Profile``.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        schema: str = "public",
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: int = 30000,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10000,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.schema = schema
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._key = key
        self._headers = dict(headers or {})
        self._transport = transport
        self._sleep = sleep
        self.logger: LoggerAdapter = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}", extra={"schema": schema})

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Accept": "application/json",
            "Accept-Profile": self.schema,
            "Content-Profile": self.schema,
        }
        headers.update(self._headers)
        return headers

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout_ms / 1000.0,
            headers=self._default_headers(),
            follow_redirects=True,
            transport=self._transport,
        )

    @staticmethod
    def _error(response: httpx.Response, operation: str) -> ConnectorError:
        if response.status_code in (401, 403) or response.status_code >= 500:
            return error_for_response(response)
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, Mapping):
            payload = {}
        message = payload.get("message") or response.text or response.reason_phrase
        return QueryError(
            f"Supabase {operation} failed: {message}",
            status_code=response.status_code,
            metadata={"code": payload.get("code"), "details": payload.get("details"), "hint": payload.get("hint")},
        )

    def _send(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        @retry(
            retry=retry_if_exception(is_retryable_exception),
            wait=BackoffWait(base_delay_ms=self.base_delay_ms, max_delay_ms=self.max_delay_ms),
            stop=stop_after_attempt(self.max_attempts),
            sleep=self._sleep,
            reraise=True,
        )
        def _attempt() -> httpx.Response:
            try:
                with self._build_client() as client:
                    response = client.request(method, path, params=list(params or []), json=json_body, headers=dict(headers or {}))
            except httpx.TimeoutException as exc:
                raise ConnectionTimeoutError(self.timeout_ms, cause=exc) from exc
            except httpx.HTTPError as exc:
                raise ConnectorConnectionError(f"Supabase request failed: {exc}", cause=exc) from exc
            if response.status_code >= 400:
                raise self._error(response, operation)
            return response

        self.logger.debug("PostgREST request", extra={"method": method, "url": path, "operation": operation})
        return _attempt()

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        payload = response.json()
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return [payload]
        return []

    def select(self, query: PostgrestQuery, *, count: bool = False) -> PostgrestResult:
        headers: Dict[str, str] = {}
        if count:
            headers["Prefer"] = "count=exact"
        if query.range_header:
            headers["Range-Unit"] = "items"
            headers["Range"] = query.range_header
        response = self._send("GET", f"/{query.table}", operation="query", params=query.to_params(), headers=headers)
        return PostgrestResult(self._rows(response), parse_content_range(response.headers.get("Content-Range")), response.status_code)

    def insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]] | Mapping[str, Any],
        *,
        upsert: bool = False,
        on_conflict: Optional[Sequence[str]] = None,
    ) -> PostgrestResult:
        prefer = ["return=representation"]
        params: List[Tuple[str, str]] = []
        if upsert:
            prefer.append("resolution=merge-duplicates")
            if on_conflict:
                params.append(("on_conflict", ",".join(on_conflict)))
        body = dict(rows) if isinstance(rows, Mapping) else [dict(item) for item in rows]
        response = self._send(
            "POST",
            f"/{table}",
            operation="upsert" if upsert else "insert",
            params=params,
            json_body=body,
            headers={"Prefer": ",".join(prefer)},
        )
        return PostgrestResult(self._rows(response), status_code=response.status_code)

    def update(self, query: PostgrestQuery, data: Mapping[str, Any]) -> PostgrestResult:
        response = self._send(
            "PATCH",
            f"/{query.table}",
            operation="update",
            params=query.filter_params(),
            json_body=dict(data),
            headers={"Prefer": "return=representation"},
        )
        return PostgrestResult(self._rows(response), status_code=response.status_code)

    def delete(self, query: PostgrestQuery) -> PostgrestResult:
        response = self._send(
            "DELETE",
            f"/{query.table}",
            operation="delete",
            params=query.filter_params(),
            headers={"Prefer": "return=representation"},
        )
        return PostgrestResult(self._rows(response), status_code=response.status_code)

    def openapi(self) -> Dict[str, Any]:
        """The OpenAPI description PostgREST serves at the API root."""

        response = self._send("GET", "/", operation="introspection", headers={"Accept": "application/openapi+json"})
        payload = response.json()
        if not isinstance(payload, dict):
            raise QueryError("Supabase API did not return an OpenAPI document")
        return payload


__all__ = ["PostgrestClient", "PostgrestQuery", "PostgrestResult", "parse_content_range", "postgrest_literal"]
