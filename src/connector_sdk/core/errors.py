"""
Error taxonomy shared by every connector.

Each error carries a machine-readable ``code``, an HTTP-like ``status_code`` and
a ``retryable`` flag so callers can decide on recovery without parsing message
strings. Raw driver, network and validation exceptions never leave the SDK:
they are classified by :func:`wrap_database_error` (message heuristics plus
exception type) or mapped explicitly at the connector seam.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence


class ConnectorError(RuntimeError):
    """
    Base class of every error raised or returned by the SDK.

    Parameters
    ----------
    message:
        Human-readable description.
    code:
        Stable identifier such as ``TABLE_NOT_FOUND``.
    status_code:
        HTTP-like status, useful for outer layers exposing the SDK over HTTP.
    retryable:
        Whether repeating the same operation may succeed.
    metadata:
        Structured context (table, field, query text where safe).
    cause:
        Original exception, also chained as ``__cause__`` when raised with ``from``.
    """

    default_code = "CONNECTOR_ERROR"
    default_status = 500
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code if status_code is not None else self.default_status
        self.retryable = self.default_retryable if retryable is None else retryable
        self.metadata: MutableMapping[str, Any] = dict(metadata or {})
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "statusCode": self.status_code,
            "retryable": self.retryable,
            "metadata": dict(self.metadata),
        }
        if self.cause is not None:
            payload["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# Connection -----------------------------------------------------------------


class ConnectorConnectionError(ConnectorError):
    default_code = "CONNECTION_ERROR"
    default_status = 503
    default_retryable = True


class ConnectionTimeoutError(ConnectorConnectionError):
    default_code = "CONNECTION_TIMEOUT"

    def __init__(self, timeout_ms: float, **kwargs: Any) -> None:
        metadata = {"timeoutMs": timeout_ms, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(f"Connection timed out after {int(timeout_ms)}ms", metadata=metadata, **kwargs)


class RefusedConnectionError(ConnectorConnectionError):
    default_code = "CONNECTION_REFUSED"

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None, **kwargs: Any) -> None:
        target = f"{host}:{port}" if host and port else host or "server"
        metadata = {"host": host, "port": port, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(f"Connection refused by {target}", metadata=metadata, **kwargs)


class PoolExhaustedError(ConnectorConnectionError):
    default_code = "CONNECTION_POOL_EXHAUSTED"

    def __init__(self, max_connections: Optional[int] = None, **kwargs: Any) -> None:
        message = "Connection pool exhausted"
        if max_connections is not None:
            message = f"{message} (max: {max_connections})"
        metadata = {"maxConnections": max_connections, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(message, metadata=metadata, **kwargs)


# Authentication -------------------------------------------------------------


class AuthenticationError(ConnectorError):
    default_code = "AUTHENTICATION_ERROR"
    default_status = 401


class CredentialsInvalidError(AuthenticationError):
    default_code = "CREDENTIALS_INVALID"


class PermissionDeniedError(AuthenticationError):
    default_code = "PERMISSION_DENIED"
    default_status = 403

    @classmethod
    def for_operation(cls, operation: str, resource: str, **kwargs: Any) -> "PermissionDeniedError":
        metadata = {"operation": operation, "resource": resource, **dict(kwargs.pop("metadata", None) or {})}
        return cls(f"Permission denied for operation: {operation} on {resource}", metadata=metadata, **kwargs)


# Configuration --------------------------------------------------------------


class ConfigurationError(ConnectorError):
    default_code = "CONFIGURATION_ERROR"
    default_status = 400

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs: Any) -> None:
        metadata = dict(kwargs.pop("metadata", None) or {})
        if field:
            metadata["field"] = field
        super().__init__(message, metadata=metadata, **kwargs)
        self.field = field


class ValidationError(ConfigurationError):
    """Raised when configuration or data fails validation; ``errors`` lists every violation."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[Sequence[str]] = None,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        metadata = dict(kwargs.pop("metadata", None) or {})
        self.errors = list(errors or [])
        if self.errors:
            metadata["errors"] = list(self.errors)
        if value is not None:
            metadata["value"] = value
        super().__init__(message, field=field, metadata=metadata, **kwargs)

    @classmethod
    def from_errors(cls, prefix: str, errors: Sequence[str], **kwargs: Any) -> "ValidationError":
        return cls(f"{prefix}: {'; '.join(errors)}", errors=errors, **kwargs)


# Schema ---------------------------------------------------------------------


class SchemaError(ConnectorError):
    default_code = "SCHEMA_ERROR"
    default_status = 400


class TableNotFoundError(SchemaError):
    default_code = "TABLE_NOT_FOUND"
    default_status = 404

    def __init__(self, table: str, schema: Optional[str] = None, **kwargs: Any) -> None:
        qualified = f"{schema}.{table}" if schema else table
        metadata = {"table": table, "schema": schema, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(f"Table not found: {qualified}", metadata=metadata, **kwargs)


class ColumnNotFoundError(SchemaError):
    default_code = "COLUMN_NOT_FOUND"
    default_status = 404

    def __init__(self, column: str, table: Optional[str] = None, **kwargs: Any) -> None:
        location = f"{table}.{column}" if table else column
        metadata = {"column": column, "table": table, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(f"Column not found: {location}", metadata=metadata, **kwargs)


# Query ----------------------------------------------------------------------


class QueryError(ConnectorError):
    default_code = "QUERY_ERROR"
    default_status = 400


class QueryTimeoutError(QueryError):
    default_code = "QUERY_TIMEOUT"
    default_status = 408
    default_retryable = True

    def __init__(self, timeout_ms: Optional[float] = None, **kwargs: Any) -> None:
        message = "Query timed out"
        if timeout_ms is not None:
            message = f"Query timed out after {int(timeout_ms)}ms"
        metadata = {"timeoutMs": timeout_ms, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(message, metadata=metadata, **kwargs)


class QuerySyntaxError(QueryError):
    default_code = "QUERY_SYNTAX_ERROR"


# Data -----------------------------------------------------------------------


class DataError(ConnectorError):
    default_code = "DATA_ERROR"
    default_status = 400


class ConstraintViolationError(DataError):
    default_code = "CONSTRAINT_VIOLATION"
    default_status = 409


class DuplicateKeyError(ConstraintViolationError):
    default_code = "DUPLICATE_KEY"


class ForeignKeyViolationError(ConstraintViolationError):
    default_code = "FOREIGN_KEY_VIOLATION"


# Capability -----------------------------------------------------------------


class FeatureNotSupportedError(ConnectorError):
    default_code = "FEATURE_NOT_SUPPORTED"
    default_status = 501

    def __init__(self, feature: str, connector_type: Optional[str] = None, **kwargs: Any) -> None:
        suffix = f" by {connector_type} connector" if connector_type else ""
        metadata = {"feature": feature, "connectorType": connector_type, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(f"Feature not supported{suffix}: {feature}", metadata=metadata, **kwargs)


class OperationNotSupportedError(FeatureNotSupportedError):
    default_code = "OPERATION_NOT_SUPPORTED"


# Rate limiting --------------------------------------------------------------


class RateLimitError(ConnectorError):
    default_code = "RATE_LIMIT_EXCEEDED"
    default_status = 429
    default_retryable = True

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after_ms: Optional[float] = None, **kwargs: Any) -> None:
        metadata = dict(kwargs.pop("metadata", None) or {})
        if retry_after_ms is not None:
            metadata["retryAfterMs"] = retry_after_ms
        super().__init__(message, metadata=metadata, **kwargs)
        self.retry_after_ms = retry_after_ms


# Lookup / internal ----------------------------------------------------------


class ResourceNotFoundError(ConnectorError):
    default_code = "NOT_FOUND"
    default_status = 404


class ConnectorNotFoundError(ResourceNotFoundError):
    default_code = "CONNECTOR_NOT_FOUND"

    def __init__(self, connector_type: str, available: Iterable[str] = (), **kwargs: Any) -> None:
        options = sorted(available)
        message = f"Connector type '{connector_type}' is not registered"
        if options:
            message = f"{message}. Available types: {', '.join(options)}"
        metadata = {"connectorType": connector_type, **dict(kwargs.pop("metadata", None) or {})}
        super().__init__(message, metadata=metadata, **kwargs)


class InternalConnectorError(ConnectorError):
    default_code = "INTERNAL_ERROR"
    default_status = 500
    default_retryable = True


# Classification -------------------------------------------------------------

_REFUSED = re.compile(r"connection refused|econnrefused|could not connect to server", re.IGNORECASE)
_TIMEOUT = re.compile(r"timeout|timed out|etimedout|canceling statement due to statement timeout", re.IGNORECASE)
_TOO_MANY = re.compile(r"too many connections|too many clients|pool exhausted|queuepool limit", re.IGNORECASE)
_AUTH = re.compile(r"authentication|password|login failed|invalid credentials|not authorized|unauthorized", re.IGNORECASE)
_PERMISSION = re.compile(r"permission denied|access denied|insufficient privilege|forbidden", re.IGNORECASE)
_TABLE_MISSING = re.compile(r"no such table|(relation|table)\s+\"?([\w.]+)\"?\s+(does not exist|not found)", re.IGNORECASE)
_COLUMN_MISSING = re.compile(r"no such column|column\s+\"?([\w.]+)\"?\s+(does not exist|not found)|has no column named", re.IGNORECASE)
_DUPLICATE = re.compile(r"duplicate key|unique constraint|UNIQUE constraint failed|E11000", re.IGNORECASE)
_FOREIGN_KEY = re.compile(r"foreign key", re.IGNORECASE)
_CONSTRAINT = re.compile(r"constraint failed|violates (check|not-null) constraint|NOT NULL constraint", re.IGNORECASE)
_SYNTAX = re.compile(r"syntax error|near \".*\": syntax", re.IGNORECASE)
_CAPTURE_NAME = re.compile(r"(?:no such table|no such column|has no column named):?\s*([\w.]+)|\"([\w.]+)\"", re.IGNORECASE)
_STATEMENT_ECHO = re.compile(r"\n\[(?:SQL|parameters):.*|\n\(Background on this error.*", re.DOTALL)


def _message_of(error: BaseException) -> str:
    # SQLAlchemy appends the statement and its parameters to str(error); only the
    # driver's own message is classified so identifiers never decide the error kind.
    original = getattr(error, "orig", None)
    source = original if isinstance(original, BaseException) else error
    return _STATEMENT_ECHO.sub("", str(source)).strip()


def _is_integrity_error(error: BaseException) -> bool:
    candidates = [error]
    original = getattr(error, "orig", None)
    if isinstance(original, BaseException):
        candidates.append(original)
    return any(klass.__name__ == "IntegrityError" for candidate in candidates for klass in type(candidate).__mro__)


def _captured_name(message: str, fallback: Optional[str]) -> Optional[str]:
    match = _CAPTURE_NAME.search(message)
    if match:
        return match.group(1) or match.group(2)
    return fallback


def wrap_database_error(
    error: BaseException,
    *,
    query: Optional[str] = None,
    table: Optional[str] = None,
    operation: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    timeout_ms: Optional[float] = None,
) -> ConnectorError:
    """
    Classify a raw backend exception into the closest taxonomy member.

    Integrity errors are recognised by class first. Otherwise the driver's
    message (the DBAPI ``orig`` exception when present, without the statement
    SQLAlchemy echoes) is matched against known phrasings of common drivers;
    the checks run from the most to the least specific family and fall back to
    :class:`InternalConnectorError`.
    Errors that are already :class:`ConnectorError` are returned unchanged.
    """

    if isinstance(error, ConnectorError):
        return error

    message = _message_of(error)
    metadata: dict[str, Any] = {key: value for key, value in (("query", query), ("table", table), ("operation", operation)) if value}
    common: dict[str, Any] = {"metadata": metadata, "cause": error}

    if _is_integrity_error(error):
        if _FOREIGN_KEY.search(message):
            return ForeignKeyViolationError(message, **common)
        if _DUPLICATE.search(message):
            return DuplicateKeyError(message, **common)
        return ConstraintViolationError(message, **common)
    if isinstance(error, ConnectionRefusedError) or _REFUSED.search(message):
        return RefusedConnectionError(host, port, **common)
    if isinstance(error, TimeoutError) or _TIMEOUT.search(message):
        if query is not None or operation not in (None, "connect"):
            return QueryTimeoutError(timeout_ms, **common)
        return ConnectionTimeoutError(timeout_ms or 0, **common)
    if _TOO_MANY.search(message):
        return PoolExhaustedError(**common)
    if _AUTH.search(message):
        return AuthenticationError(message, **common)
    if _PERMISSION.search(message):
        return PermissionDeniedError(message, **common)
    # column messages often embed "relation ... does not exist" as well
    if _COLUMN_MISSING.search(message):
        return ColumnNotFoundError(_captured_name(message, None) or "unknown", table, **common)
    if _TABLE_MISSING.search(message):
        return TableNotFoundError(_captured_name(message, table) or "unknown", **common)
    if _DUPLICATE.search(message):
        return DuplicateKeyError(message, **common)
    if _FOREIGN_KEY.search(message):
        return ForeignKeyViolationError(message, **common)
    if _CONSTRAINT.search(message):
        return ConstraintViolationError(message, **common)
    if _SYNTAX.search(message):
        return QuerySyntaxError(message, **common)
    return InternalConnectorError(message or type(error).__name__, **common)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, ConnectorError):
        return error.retryable
    return wrap_database_error(error).retryable


def get_status_code(error: BaseException) -> int:
    if isinstance(error, ConnectorError):
        return error.status_code
    return 500


def format_error_response(error: BaseException) -> dict[str, Any]:
    """Return the ``{"error": {...}}`` envelope consumed by outer HTTP layers."""

    wrapped = error if isinstance(error, ConnectorError) else wrap_database_error(error)
    payload = wrapped.to_dict()
    payload.pop("cause", None)
    return {"error": payload}
