"""
Structured logging helpers for the connector SDK.

Connectors, factories and the registry obtain loggers via :func:`get_logger`
so every record carries the same ``key=value`` suffix (connector id, backend
type, operation, duration). Values attached under credential-like keys are
masked by the formatter, which keeps resolved secrets out of log sinks even
when a caller passes a whole configuration mapping as ``extra``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from copy import copy
from logging import Logger, LoggerAdapter
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
_ENV_LEVEL = "CONNECTOR_SDK_LOG_LEVEL"
_ENV_COLOR = "CONNECTOR_SDK_LOG_COLOR"
_EXTRA_FOCUS_ORDER: Sequence[str] = (
    "connector",
    "connector_type",
    "operation",
    "phase",
    "step",
    "status",
    "result",
    "table",
    "collection",
    "duration_ms",
    "method",
    "url",
    "status_code",
    "attempt",
    "tags",
)
_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "access_token",
        "api_key",
        "apikey",
        "supabase_key",
        "service_role_key",
        "connection_string",
        "credentials",
        "authorization",
    }
)
_MASK = "***"

_LEVEL_STYLES = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[95m",
}
_RESET = "\033[0m"

_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_configured = False


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(candidate)
    return resolved if isinstance(resolved, int) else logging.INFO


def _supports_color(stream: Any) -> bool:
    preference = (os.getenv(_ENV_COLOR) or "auto").strip().lower()
    if preference in {"1", "true", "yes", "on"}:
        return True
    if preference in {"0", "false", "no", "off"}:
        return False
    return hasattr(stream, "isatty") and bool(stream.isatty())


def is_sensitive_key(key: str) -> bool:
    """Return ``True`` when ``key`` names a credential-like value."""

    lowered = key.lower().replace("-", "_")
    return lowered in _SENSITIVE_KEYS or lowered.endswith(("_password", "_secret", "_token", "_key"))


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with credential-like mapping entries masked."""

    if isinstance(value, Mapping):
        return {key: (_MASK if is_sensitive_key(str(key)) else redact(item)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def _iter_extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS and not key.startswith("_") and value is not None}

    for key in _EXTRA_FOCUS_ORDER:
        if key in payload:
            yield key, payload.pop(key)

    for key in sorted(payload):
        yield key, payload[key]


def _format_extra_value(key: str, value: Any) -> str:
    if is_sensitive_key(key):
        return _MASK
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_format_extra_value("", item) for item in value) + "]"
    if isinstance(value, Mapping):
        return json.dumps(redact(value), ensure_ascii=False, default=str)
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter that appends structured extras and supports optional colour output."""

    def __init__(self, *, use_color: bool = False) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        working = copy(record)
        if self.use_color:
            style = _LEVEL_STYLES.get(working.levelname.strip().upper())
            if style:
                working.levelname = f"{style}{working.levelname}{_RESET}"
        base = super().format(working)
        extras = " ".join(f"{key}={_format_extra_value(key, value)}" for key, value in _iter_extras(record))
        if extras:
            return f"{base} | {extras}"
        return base


def _build_handler(level: Optional[int | str]) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(_resolve_level(level))
    handler.setFormatter(StructuredLogFormatter(use_color=_supports_color(handler.stream)))
    return handler


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Configure root logging handlers unless already initialised.

    Parameters
    ----------
    level:
        Optional logging level override. Falls back to ``CONNECTOR_SDK_LOG_LEVEL`` or ``INFO``.
    force:
        When ``True`` the configuration is reapplied even if previously initialised.
    """

    global _configured
    if _configured and not force:
        return
    logging.basicConfig(level=_resolve_level(level), handlers=[_build_handler(level)], force=force)
    _configured = True


def _merge_extra(
    *,
    tags: Optional[Sequence[str]],
    extra: Optional[Mapping[str, object]],
) -> MutableMapping[str, object]:
    payload: MutableMapping[str, object] = {}
    if tags:
        payload["tags"] = tuple(tags)
    if extra:
        payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def get_logger(
    name: str,
    *,
    level: Optional[int | str] = None,
    tags: Optional[Sequence[str]] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> LoggerAdapter:
    """
    Return a :class:`logging.LoggerAdapter` bound to structured metadata.

    Parameters
    ----------
    name:
        Logger namespace, typically ``__name__`` or ``module.Class``.
    level:
        Optional per-logger level override.
    tags:
        Optional observability tags attached to the ``extra`` payload.
    extra:
        Additional structured metadata recorded with each log entry.
    """

    configure_logging(level)
    base: Logger = logging.getLogger(name)
    if level is not None:
        base.setLevel(_resolve_level(level))
    return _ContextAdapter(base, _merge_extra(tags=tags, extra=extra))


class _ContextAdapter(LoggerAdapter):
    """Adapter merging bound extras with per-call ``extra`` instead of replacing them."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        merged: MutableMapping[str, Any] = dict(self.extra or {})
        call_extra = kwargs.get("extra")
        if call_extra:
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


def bind_tags(logger: LoggerAdapter, tags: Sequence[str]) -> LoggerAdapter:
    """Create a child logger with additional observability tags."""

    current = dict(logger.extra) if isinstance(logger.extra, Mapping) else {}
    current["tags"] = tuple(dict.fromkeys((*current.get("tags", ()), *tags)))
    return _ContextAdapter(logger.logger, current)


def bind_extra(logger: LoggerAdapter, **extra: object) -> LoggerAdapter:
    """Create a child logger carrying additional structured fields."""

    current = dict(logger.extra) if isinstance(logger.extra, Mapping) else {}
    current.update({key: value for key, value in extra.items() if value is not None})
    return _ContextAdapter(logger.logger, current)


def log_progress(
    logger: LoggerAdapter | Logger,
    message: str,
    *,
    phase: Optional[str] = None,
    step: Optional[str] = None,
    status: Optional[str] = None,
    result: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """
    Emit a progress log with structured metadata (used for multi-step
    operations such as introspection and registry shutdown).
    """

    payload: MutableMapping[str, object] = dict(extra or {})
    for key, value in (("phase", phase), ("step", step), ("status", status), ("result", result)):
        if value:
            payload[key] = value
    logger.log(level, message, extra=payload or None)
