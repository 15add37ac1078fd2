from __future__ import annotations

import logging
import sqlite3

import pytest
from sqlalchemy import exc as sa_exc

from connector_sdk.core.errors import (
    AuthenticationError,
    ColumnNotFoundError,
    ConnectorConnectionError,
    ConnectorError,
    DuplicateKeyError,
    InternalConnectorError,
    QueryTimeoutError,
    RateLimitError,
    RefusedConnectionError,
    TableNotFoundError,
    ValidationError,
    format_error_response,
    get_status_code,
    is_retryable,
    wrap_database_error,
)
from connector_sdk.core.logging import StructuredLogFormatter, configure_logging, get_logger, log_progress, redact
from connector_sdk.core.schema import (
    ColumnDefinition,
    DatabaseSchema,
    DatabaseType,
    DocumentSchema,
    TableDefinition,
    load_schema,
    schema_to_dict,
    schema_version,
)


@pytest.fixture
def reset_logging_handlers():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    yield
    root.handlers = existing_handlers


class _ListHandler(logging.Handler):
    def __init__(self, formatter: logging.Formatter):
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        self.records.append(record)


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord(name="test.logger", level=logging.INFO, pathname=__file__, lineno=42, msg=message, args=(), exc_info=None)


def test_structured_formatter_appends_extras():
    formatter = StructuredLogFormatter(use_color=False)
    record = _record("Connecting")
    record.phase = "connect"
    record.status = "running"
    record.tags = ("postgres", "pool")

    formatted = formatter.format(record)

    assert "Connecting" in formatted
    assert "phase=connect" in formatted
    assert "status=running" in formatted
    assert "tags=[postgres, pool]" in formatted


def test_structured_formatter_masks_credentials():
    formatter = StructuredLogFormatter(use_color=False)
    record = _record("Resolved secret")
    record.password = "hunter2"
    record.options = {"host": "db", "api_key": "abc"}

    formatted = formatter.format(record)

    assert "hunter2" not in formatted
    assert "password=***" in formatted
    assert "abc" not in formatted
    assert '"host": "db"' in formatted


def test_redact_walks_nested_values():
    payload = {"user": "app", "password": "pw", "nested": [{"token": "t", "port": 5432}]}

    assert redact(payload) == {"user": "app", "password": "***", "nested": [{"token": "***", "port": 5432}]}


def test_configure_logging_installs_structured_formatter():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    try:
        configure_logging(force=True)
        assert root.handlers, "expected at least one handler configured"
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, StructuredLogFormatter)
    finally:
        root.handlers = existing_handlers


def test_log_progress_populates_record_extras(reset_logging_handlers):
    configure_logging(force=True)
    logger = get_logger("test.progress", extra={"connector": "sqlite"})
    root = logging.getLogger()
    collector = _ListHandler(root.handlers[0].formatter)
    root.addHandler(collector)
    try:
        log_progress(logger, "Introspecting", phase="introspection", step="tables", status="started", result="pending")
    finally:
        root.removeHandler(collector)

    assert collector.records, "log_progress should emit a record"
    record = collector.records[0]
    assert getattr(record, "phase") == "introspection"
    assert getattr(record, "step") == "tables"
    assert getattr(record, "connector") == "sqlite"
    formatted = collector.format(record)
    assert "phase=introspection" in formatted
    assert "status=started" in formatted


def test_error_to_dict_and_response_envelope():
    error = TableNotFoundError("orders", metadata={"connectorType": "postgres"})

    payload = error.to_dict()
    assert payload["name"] == "TableNotFoundError"
    assert payload["code"] == "TABLE_NOT_FOUND"
    assert payload["statusCode"] == 404
    assert payload["retryable"] is False
    assert payload["metadata"]["connectorType"] == "postgres"

    envelope = format_error_response(error)
    assert envelope["error"]["code"] == "TABLE_NOT_FOUND"
    assert "cause" not in envelope["error"]


def test_format_error_response_wraps_raw_exceptions():
    envelope = format_error_response(ValueError("boom"))

    assert envelope["error"]["name"] == "InternalConnectorError"
    assert envelope["error"]["message"] == "boom"
    assert get_status_code(ValueError("boom")) == 500


def test_validation_error_aggregates_messages():
    error = ValidationError.from_errors("Configuration validation failed", ["host: Field required", "port: too large"])

    assert "host: Field required" in error.message
    assert "port: too large" in error.message
    assert error.code == "VALIDATION_ERROR"
    assert error.status_code == 400


def test_rate_limit_error_is_retryable_with_delay():
    error = RateLimitError(retry_after_ms=5000)

    assert error.retryable
    assert error.retry_after_ms == 5000
    assert error.status_code == 429
    assert is_retryable(error)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (ConnectionRefusedError("connection refused"), RefusedConnectionError),
        (sqlite3.OperationalError("no such table: orders"), TableNotFoundError),
        (sqlite3.OperationalError("table items has no column named colour"), ColumnNotFoundError),
        (sqlite3.IntegrityError("UNIQUE constraint failed: users.email"), DuplicateKeyError),
        (RuntimeError('FATAL: password authentication failed for user "app"'), AuthenticationError),
        (RuntimeError("something odd"), InternalConnectorError),
    ],
)
def test_wrap_database_error_classification(raw, expected):
    wrapped = wrap_database_error(raw, query="SELECT 1")

    assert isinstance(wrapped, expected)
    assert wrapped.cause is raw


def test_wrap_database_error_distinguishes_query_timeouts():
    during_query = wrap_database_error(TimeoutError("timed out"), query="SELECT pg_sleep(10)", timeout_ms=1000)
    during_connect = wrap_database_error(TimeoutError("timed out"), operation="connect", timeout_ms=1000)

    assert isinstance(during_query, QueryTimeoutError)
    assert isinstance(during_connect, ConnectorConnectionError)
    assert during_connect.retryable


def test_wrap_database_error_keeps_connector_errors():
    original = ConnectorError("already classified", code="CUSTOM")

    assert wrap_database_error(original) is original


def test_duplicate_key_error_code():
    wrapped = wrap_database_error(sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))

    assert wrapped.code == "DUPLICATE_KEY"
    assert wrapped.status_code == 409


def test_wrap_database_error_ignores_statement_text():
    duplicate = sa_exc.IntegrityError(
        "INSERT INTO sessions (id, timeout) VALUES (?, ?)",
        (1, 5),
        sqlite3.IntegrityError("UNIQUE constraint failed: sessions.id"),
    )
    missing = sa_exc.OperationalError(
        "SELECT password FROM accounts",
        (),
        sqlite3.OperationalError("no such table: accounts"),
    )

    wrapped = wrap_database_error(duplicate, query="INSERT INTO sessions (id, timeout) VALUES (?, ?)")

    assert isinstance(wrapped, DuplicateKeyError)
    assert not wrapped.retryable
    assert "timeout" not in wrapped.message
    assert isinstance(wrap_database_error(missing), TableNotFoundError)


def _schema() -> DatabaseSchema:
    return DatabaseSchema(
        name="app",
        tables=[
            TableDefinition(
                name="users",
                schema="main",
                columns=[
                    ColumnDefinition(name="id", type=DatabaseType.INTEGER, nullable=False, is_primary_key=True),
                    ColumnDefinition(name="email", type=DatabaseType.VARCHAR, max_length=255),
                ],
                primary_key=["id"],
            )
        ],
    )


def test_schema_round_trip_through_dict():
    schema = _schema()

    restored = load_schema(schema_to_dict(schema))

    assert isinstance(restored, DatabaseSchema)
    table = restored.table("users")
    assert table is not None
    assert table.column("email").type is DatabaseType.VARCHAR
    assert table.column("email").max_length == 255
    assert table.primary_key == ["id"]


def test_load_schema_detects_document_family():
    restored = load_schema({"name": "shop", "collections": []})

    assert isinstance(restored, DocumentSchema)


def test_schema_version_ignores_volatile_metadata():
    first = _schema()
    second = _schema()
    second.metadata = {"introspectedAt": "2024-01-01T00:00:00"}

    assert schema_version(first) == schema_version(second)
    assert len(schema_version(first)) == 64

    second.tables[0].columns[1].nullable = False
    assert schema_version(first) != schema_version(second)
