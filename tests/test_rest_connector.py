from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from connector_sdk.config import StaticCredentialsProvider
from connector_sdk.connectors.base import DataOperationOptions, FilterOptions, OrderBy, PaginationOptions
from connector_sdk.connectors.rest import RESTConnector, error_for_response, extract_path, parse_retry_after, rest_config_rules
from connector_sdk.core.errors import (
    AuthenticationError,
    ConnectorConnectionError,
    PermissionDeniedError,
    QueryError,
    RateLimitError,
    ResourceNotFoundError,
    TableNotFoundError,
)
from connector_sdk.core.schema import DatabaseType

OPENAPI_DOCUMENT = {
    "openapi": "3.0.0",
    "paths": {
        "/gadgets": {
            "get": {
                "summary": "List gadgets",
                "parameters": [{"name": "limit", "in": "query"}, {"name": "offset", "in": "query"}],
                "responses": {
                    "200": {
                        "content": {
                            "application/json": {"schema": {"type": "array", "items": {"$ref": "#/components/schemas/Gadget"}}}
                        }
                    }
                },
            },
            "post": {},
        },
        "/gadgets/{id}": {"delete": {}},
    },
    "components": {
        "schemas": {
            "Gadget": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "integer", "format": "int64"},
                    "created": {"type": "string", "format": "date-time"},
                },
            }
        }
    },
}


class FakeTime:
    """Clock and sleeper pair; sleeping advances the clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class WidgetAPI:
    """Tiny JSON API served through :class:`httpx.MockTransport`."""

    def __init__(self) -> None:
        self.widgets: List[Dict[str, Any]] = [
            {"id": 1, "label": "A", "color": "red"},
            {"id": 2, "label": "B", "color": "blue"},
        ]
        self.requests: List[httpx.Request] = []
        self.failures: List[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return self.failures.pop(0)
        path = request.url.path.removeprefix("/v1")
        if path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/openapi.json":
            return httpx.Response(200, json=OPENAPI_DOCUMENT)
        if path == "/widgets":
            if request.method == "GET":
                return self._list(request)
            created = {"id": max(item["id"] for item in self.widgets) + 1, **json.loads(request.content)}
            self.widgets.append(created)
            return httpx.Response(201, json={"data": created})
        widget_id = int(path.rsplit("/", 1)[1])
        current = self._find(widget_id)
        if request.method == "DELETE":
            if current is None:
                return httpx.Response(404)
            self.widgets.remove(current)
            return httpx.Response(204)
        body = json.loads(request.content)
        if request.method == "PUT":
            if current is not None:
                self.widgets.remove(current)
            self.widgets.append(body)
            return httpx.Response(200, json={"data": body})
        if current is None:
            return httpx.Response(404)
        current.update(body)
        return httpx.Response(200, json={"data": current})

    def _find(self, widget_id: int) -> Optional[Dict[str, Any]]:
        return next((item for item in self.widgets if item["id"] == widget_id), None)

    def _list(self, request: httpx.Request) -> httpx.Response:
        reserved = {"limit", "offset", "sort", "q", "api_key"}
        rows = [
            item
            for item in self.widgets
            if all(str(item.get(key)) == value for key, value in request.url.params.items() if key not in reserved)
        ]
        limit = request.url.params.get("limit")
        page = rows[: int(limit)] if limit else rows
        return httpx.Response(200, json={"data": page, "meta": {"total": len(rows)}})

    def last(self) -> httpx.Request:
        return self.requests[-1]


def _config(**overrides: Any) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "type": "rest",
        "name": "widgets-api",
        "baseUrl": "https://api.example.com/v1",
        "credentialsSecretId": "widgets",
        "authentication": {"type": "bearer"},
        "rateLimiting": {"maxRetries": 2, "initialDelayMs": 100, "jitter": False},
        "responseTransform": {"dataPath": "data", "totalCountPath": "meta.total", "errorPath": "error.message"},
        "resources": [
            {
                "name": "widgets",
                "endpoint": "/widgets",
                "methods": ["get", "post", "patch", "put", "delete"],
                "fields": [
                    {"name": "id", "type": "integer", "readOnly": True, "nullable": False},
                    {"name": "label", "required": True, "nullable": False},
                    {"name": "color"},
                ],
            }
        ],
    }
    config.update(overrides)
    return config


@pytest.fixture()
def api() -> WidgetAPI:
    return WidgetAPI()


@pytest.fixture()
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture()
def make_connector(api, fake_time):
    def _make(credentials: Optional[Dict[str, Any]] = None, **overrides: Any) -> RESTConnector:
        provider = StaticCredentialsProvider({"widgets": credentials or {"token": "secret-token"}})
        connector = RESTConnector(
            _config(**overrides),
            credentials_provider=provider,
            transport=httpx.MockTransport(api),
            clock=fake_time.clock,
            sleep=fake_time.sleep,
        )
        connector.connect()
        return connector

    return _make


def test_connect_probes_health_endpoint_with_bearer_token(api, make_connector):
    connector = make_connector(healthEndpoint="/health")

    assert connector.is_connected()
    request = api.last()
    assert request.url.path == "/v1/health"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["User-Agent"] == "connector-sdk/1.0"


def test_connect_fails_without_credentials(api, fake_time):
    connector = RESTConnector(
        _config(),
        credentials_provider=StaticCredentialsProvider(),
        transport=httpx.MockTransport(api),
        sleep=fake_time.sleep,
    )

    with pytest.raises(AuthenticationError):
        connector.connect()
    assert not connector.is_connected()
    assert api.requests == []


def test_api_key_in_query_string(api, make_connector):
    connector = make_connector(
        credentials={"apiKey": "k-123"},
        authentication={"type": "api_key", "location": "query", "paramName": "api_key"},
    )

    connector.get_table_data("widgets")

    assert api.last().url.params["api_key"] == "k-123"
    assert "Authorization" not in api.last().headers


def test_basic_and_custom_authentication(api, fake_time):
    provider = StaticCredentialsProvider({"widgets": {"username": "ada", "password": "lovelace"}})
    basic = RESTConnector(
        _config(authentication={"type": "basic"}),
        credentials_provider=provider,
        transport=httpx.MockTransport(api),
        sleep=fake_time.sleep,
    )
    basic.connect()
    basic.get_table_data("widgets")
    assert api.last().headers["Authorization"] == "Basic YWRhOmxvdmVsYWNl"

    custom = RESTConnector(
        _config(authentication={"type": "custom"}, credentialsSecretId=None),
        transport=httpx.MockTransport(api),
        custom_auth=lambda credentials: {"X-Signature": "signed"},
        sleep=fake_time.sleep,
    )
    custom.connect()
    custom.get_table_data("widgets")
    assert api.last().headers["X-Signature"] == "signed"


def test_get_table_data_maps_options_to_query_parameters(api, make_connector):
    connector = make_connector()
    options = DataOperationOptions(
        pagination=PaginationOptions(limit=1, order_by=[OrderBy("label", "DESC")]),
        filters=FilterOptions(where={"color": "red"}),
    )

    result = connector.get_table_data("widgets", options)

    assert result.success
    assert result.data == [{"id": 1, "label": "A", "color": "red"}]
    assert result.total_count == 1
    params = api.last().url.params
    assert params["color"] == "red"
    assert params["limit"] == "1"
    assert params["sort"] == "-label"


def test_count_records_uses_envelope_total(make_connector):
    connector = make_connector()

    result = connector.count_records("widgets")

    assert result.data == [{"count": 2}]
    assert result.total_count == 2


def test_unknown_resource(make_connector):
    connector = make_connector()

    with pytest.raises(TableNotFoundError):
        connector.get_table_definition("gizmos")
    assert not connector.get_table_data("gizmos").success


def test_insert_update_and_delete_use_http_verbs(api, make_connector):
    connector = make_connector()

    inserted = connector.insert_record("widgets", {"label": "C", "color": "green"})
    assert inserted.success
    assert inserted.affected_rows == 1
    assert inserted.data == [{"id": 3, "label": "C", "color": "green"}]
    assert api.last().method == "POST"

    updated = connector.update_record("widgets", 3, {"color": "teal"})
    assert updated.success
    assert (api.last().method, api.last().url.path) == ("PATCH", "/v1/widgets/3")
    assert json.loads(api.last().content) == {"color": "teal"}

    deleted = connector.delete_record("widgets", 3)
    assert deleted.success
    assert (api.last().method, api.last().url.path) == ("DELETE", "/v1/widgets/3")
    assert [item["id"] for item in api.widgets] == [1, 2]


def test_delete_records_resolves_matching_ids_first(api, make_connector):
    connector = make_connector()

    result = connector.delete_records("widgets", {"color": "blue"})

    assert result.success
    assert result.affected_rows == 1
    assert [request.method for request in api.requests] == ["GET", "DELETE"]
    assert api.widgets == [{"id": 1, "label": "A", "color": "red"}]


def test_bulk_writes_require_criteria(make_connector):
    connector = make_connector()

    assert "Update criteria are required" in connector.update_records("widgets", {}, {"color": "x"}).error.message
    assert "Delete criteria are required" in connector.delete_records("widgets", {}).error.message


def test_upsert_puts_when_key_present(api, make_connector):
    connector = make_connector()

    replaced = connector.upsert_record("widgets", {"id": 2, "label": "B2", "color": "blue"}, ["id"])
    assert replaced.success
    assert (api.last().method, api.last().url.path) == ("PUT", "/v1/widgets/2")

    created = connector.upsert_record("widgets", {"label": "D"}, ["id"])
    assert created.success
    assert api.last().method == "POST"


def test_insert_records_stops_at_first_failure(api, make_connector):
    connector = make_connector(rateLimiting={"maxRetries": 0})
    api.failures = [httpx.Response(201, json={"data": {"id": 10}}), httpx.Response(404)]

    result = connector.insert_records("widgets", [{"label": "x"}, {"label": "y"}, {"label": "z"}])

    assert not result.success
    assert result.affected_rows == 1
    assert isinstance(result.error, ResourceNotFoundError)
    assert len(api.requests) == 2


def test_transactions_and_plans_are_not_supported(make_connector):
    connector = make_connector()

    assert connector.execute_transaction([]).error.code == "OPERATION_NOT_SUPPORTED"
    assert connector.get_query_execution_plan("GET /widgets").error.code == "OPERATION_NOT_SUPPORTED"


def test_execute_query_sends_body_for_writes(api, make_connector):
    connector = make_connector()

    result = connector.execute_query("POST /widgets", {"label": "E"})
    assert result.success
    assert json.loads(api.last().content) == {"label": "E"}

    listed = connector.execute_query("/widgets", {"color": "blue"})
    assert [row["id"] for row in listed.data] == [2]


def test_rate_limited_requests_honour_retry_after(api, fake_time, make_connector):
    connector = make_connector()
    api.failures = [httpx.Response(429, headers={"Retry-After": "5"}) for _ in range(3)]

    result = connector.get_table_data("widgets")

    assert not result.success
    assert isinstance(result.error, RateLimitError)
    assert result.error.retry_after_ms == 5000
    assert fake_time.sleeps == [5.0, 5.0]
    assert len(api.requests) == 3


def test_server_errors_are_retried_with_backoff(api, fake_time, make_connector):
    connector = make_connector()
    api.failures = [httpx.Response(503), httpx.Response(502)]

    result = connector.get_table_data("widgets")

    assert result.success
    assert fake_time.sleeps == [0.1, 0.2]
    assert len(api.requests) == 3


def test_client_errors_are_not_retried(api, fake_time, make_connector):
    connector = make_connector()
    api.failures = [httpx.Response(404)]

    result = connector.update_record("widgets", 99, {"label": "missing"})

    assert isinstance(result.error, ResourceNotFoundError)
    assert fake_time.sleeps == []
    assert len(api.requests) == 1


def test_sliding_window_delays_requests(fake_time, make_connector):
    connector = make_connector(rateLimiting={"requestsPerSecond": 1, "maxRetries": 0})

    connector.get_table_data("widgets")
    connector.get_table_data("widgets")

    assert fake_time.sleeps == [1.0]
    assert connector.get_connection_status().metadata["rateLimits"] == {"second": {"used": 1, "limit": 1}}


def _response(status: int, **kwargs: Any) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", "https://api.example.com/v1/widgets"), **kwargs)


def test_error_for_response_mapping():
    assert isinstance(error_for_response(_response(401)), AuthenticationError)
    assert isinstance(error_for_response(_response(403)), PermissionDeniedError)
    assert isinstance(error_for_response(_response(404)), ResourceNotFoundError)
    assert isinstance(error_for_response(_response(500)), ConnectorConnectionError)

    throttled = error_for_response(_response(429, headers={"Retry-After": "2"}))
    assert isinstance(throttled, RateLimitError)
    assert throttled.retry_after_ms == 2000

    invalid = error_for_response(_response(422, json={"error": {"message": "label is required"}}), error_path="error.message")
    assert isinstance(invalid, QueryError)
    assert invalid.code == "HTTP_ERROR"
    assert invalid.status_code == 422
    assert invalid.message.endswith("label is required")


def test_extract_path():
    payload = {"data": {"items": [{"id": 7}]}, "meta": {"total": 1}}

    assert extract_path(payload, "data.items.0.id") == 7
    assert extract_path(payload, "meta.total") == 1
    assert extract_path(payload, "data.missing") is None
    assert extract_path(payload, "data.items.4") is None
    assert extract_path(payload, None) is payload


def test_parse_retry_after():
    now = datetime(2015, 10, 21, 7, 27, 50, tzinfo=timezone.utc)

    assert parse_retry_after("5") == 5000.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 10000.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:00:00 GMT", now=now) == 0.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


def test_openapi_discovery_during_introspection(make_connector):
    connector = make_connector(openapiUrl="/openapi.json")

    schema = connector.introspect_schema()

    assert [resource.name for resource in schema.resources] == ["gadgets", "widgets"]
    assert schema.metadata["discoveredResources"] == 1
    gadgets = schema.resources[0]
    assert gadgets.supported_methods == ["GET", "POST", "DELETE"]
    assert gadgets.pagination.type == "offset"
    assert gadgets.primary_key == "id"
    fields = {item.name: item for item in gadgets.fields}
    assert fields["id"].type is DatabaseType.BIGINT
    assert not fields["id"].nullable
    assert fields["created"].type is DatabaseType.TIMESTAMPTZ
    assert connector.list_tables() == ["gadgets", "widgets"]


def test_resource_columns_and_validation(make_connector):
    connector = make_connector()

    columns = {column.name: column for column in connector.get_table_columns("widgets")}
    assert columns["id"].is_primary_key
    assert connector.get_table_primary_key("widgets") == ["id"]
    assert connector.validate_data("widgets", {"label": "ok"}, "insert").valid
    assert not connector.validate_data("widgets", {"id": 5, "label": "ok"}, "insert").valid


def test_health_check_reports_rate_limit_capacity(make_connector):
    connector = make_connector(healthEndpoint="/health")

    health = connector.health_check()

    assert health.healthy
    assert [check.name for check in health.checks] == ["connection", "rate_limit"]


def test_rest_config_rules():
    errors = rest_config_rules(
        {
            "pagination": {"defaultLimit": 500, "maxLimit": 100},
            "rateLimiting": {"initialDelayMs": 5000, "maxDelayMs": 1000},
            "resources": [{"name": "widgets"}, {"name": "widgets"}],
        }
    )

    assert errors == [
        "Pagination default limit cannot exceed max limit",
        "Initial retry delay cannot exceed max delay",
        "Duplicate resource name: widgets",
    ]
