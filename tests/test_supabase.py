from __future__ import annotations

import base64
import json
from typing import Any, Dict, List

import httpx
import pytest

from connector_sdk.config import StaticCredentialsProvider
from connector_sdk.connectors.base import DataOperationOptions, FilterOptions, OrderBy, PaginationOptions
from connector_sdk.connectors.sql import SupabaseConnector, SupabaseConnectorFactory, supabase_config_rules
from connector_sdk.connectors.sql.postgrest import PostgrestQuery, parse_content_range, postgrest_literal
from connector_sdk.connectors.sql.supabase import DEFAULT_SUPABASE_URL, project_ref, supabase_credentials_rules
from connector_sdk.core.errors import AuthenticationError, FeatureNotSupportedError, QueryError, ValidationError
from connector_sdk.core.schema import DatabaseType

OPENAPI = {
    "swagger": "2.0",
    "definitions": {
        "todos": {
            "required": ["id", "title"],
            "properties": {
                "id": {
                    "type": "integer",
                    "format": "bigint",
                    "default": "nextval('todos_id_seq'::regclass)",
                    "description": "Note:\nThis is a Primary Key.<pk/>",
                },
                "owner_id": {
                    "type": "string",
                    "format": "uuid",
                    "description": "Note:\nThis is a Foreign Key to `users.id`.<fk table='users' column='id'/>",
                },
                "title": {"type": "string", "format": "text"},
                "done": {"type": "boolean", "format": "boolean"},
            },
        }
    },
}

CONTROL_PARAMS = {"select", "order", "limit", "offset", "on_conflict"}


def _jwt(claims: Dict[str, Any]) -> str:
    def segment(payload: Dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).rstrip(b"=").decode("ascii")

    return f"{segment({'alg': 'HS256', 'typ': 'JWT'})}.{segment(claims)}.signature"


class FakePostgrest:
    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = [
            {"id": 1, "title": "write tests", "done": False},
            {"id": 2, "title": "ship", "done": False},
            {"id": 3, "title": "plan", "done": True},
        ]
        self.requests: List[httpx.Request] = []

    def _matching(self, request: httpx.Request) -> List[Dict[str, Any]]:
        rows = list(self.rows)
        for key, value in request.url.params.multi_items():
            if key in CONTROL_PARAMS:
                continue
            operator, _, operand = value.partition(".")
            assert operator == "eq"
            rows = [row for row in rows if str(row.get(key)).lower() == operand]
        return rows

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/rest/v1/":
            return httpx.Response(200, json=OPENAPI)
        if path != "/rest/v1/todos":
            return httpx.Response(404, json={"message": f'relation "{path.rsplit("/", 1)[1]}" does not exist', "code": "42P01"})
        if request.method == "GET":
            rows = self._matching(request)
            limit = request.url.params.get("limit")
            headers = {}
            if "count=exact" in request.headers.get("Prefer", ""):
                headers["Content-Range"] = f"0-{len(rows) - 1}/{len(rows)}"
            return httpx.Response(200, json=rows[: int(limit)] if limit else rows, headers=headers)
        if request.method == "POST":
            body = json.loads(request.content)
            created = body if isinstance(body, list) else [body]
            for row in created:
                self.rows = [item for item in self.rows if item["id"] != row.get("id")]
                self.rows.append(row)
            return httpx.Response(201, json=created)
        matched = self._matching(request)
        if request.method == "PATCH":
            for row in matched:
                row.update(json.loads(request.content))
        else:
            self.rows = [row for row in self.rows if row not in matched]
        return httpx.Response(200, json=matched)


@pytest.fixture()
def postgrest() -> FakePostgrest:
    return FakePostgrest()


@pytest.fixture()
def connector(postgrest):
    connector = SupabaseConnector(
        {
            "type": "supabase",
            "name": "project",
            "supabaseUrl": DEFAULT_SUPABASE_URL,
            "credentialsSecretId": "supabase-anon",
            "retryPolicy": {"maxAttempts": 1},
        },
        credentials_provider=StaticCredentialsProvider({"supabase-anon": {"supabaseKey": "anon-key"}}),
        transport=httpx.MockTransport(postgrest),
    )
    connector.connect()
    yield connector
    connector.cleanup()


def test_connects_in_api_only_mode(connector, postgrest):
    status = connector.get_connection_status()

    assert connector.api_only
    assert status.is_valid
    assert status.metadata["mode"] == "api"
    assert connector.get_supabase_features()["directSql"] is False
    assert postgrest.requests == []


def test_connect_requires_api_key():
    connector = SupabaseConnector(
        {"type": "supabase", "supabaseUrl": DEFAULT_SUPABASE_URL, "credentialsSecretId": "s"},
        credentials_provider=StaticCredentialsProvider({"s": {"projectRef": "exampleproject1234567890"}}),
    )

    with pytest.raises(AuthenticationError, match="Supabase URL and API key are required"):
        connector.connect()


def test_introspection_through_openapi(connector, postgrest):
    schema = connector.introspect_schema()

    assert schema.metadata["introspectionMethod"] == "supabase-api"
    todos = schema.table("todos")
    assert todos.primary_key == ["id"]
    assert todos.column("id").type is DatabaseType.BIGINT
    assert todos.column("id").is_auto_increment
    assert todos.column("id").comment == "Note:\nThis is a Primary Key."
    assert todos.column("owner_id").type is DatabaseType.UUID
    assert todos.column("owner_id").nullable
    assert todos.foreign_keys[0].referenced_table == "users"
    assert not todos.column("title").nullable
    request = postgrest.requests[-1]
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert request.headers["Accept-Profile"] == "public"
    assert connector.list_tables() == ["todos"]


def test_get_table_data_builds_postgrest_filters(connector, postgrest):
    options = DataOperationOptions(
        pagination=PaginationOptions(limit=1, order_by=[OrderBy("id", "DESC")]),
        filters=FilterOptions(where={"done": False}),
    )

    result = connector.get_table_data("todos", options)

    assert result.success
    assert result.total_count == 2
    assert result.data == [{"id": 1, "title": "write tests", "done": False}]
    params = postgrest.requests[-1].url.params
    assert params["select"] == "*"
    assert params["done"] == "eq.false"
    assert params["order"] == "id.desc"
    assert params["limit"] == "1"


def test_count_records(connector):
    result = connector.count_records("todos", {"done": True})

    assert result.data == [{"count": 1}]


def test_writes_go_through_postgrest(connector, postgrest):
    inserted = connector.insert_record("todos", {"id": 4, "title": "review"})
    assert inserted.affected_rows == 1
    assert postgrest.requests[-1].headers["Prefer"] == "return=representation"

    updated = connector.update_record("todos", 4, {"done": True})
    assert updated.success
    assert updated.data == [{"id": 4, "title": "review", "done": True}]
    patch = postgrest.requests[-1]
    assert patch.method == "PATCH"
    assert patch.url.params["id"] == "eq.4"

    deleted = connector.delete_records("todos", {"done": True})
    assert deleted.affected_rows == 2
    assert [row["id"] for row in postgrest.rows] == [1, 2]


def test_upsert_merges_duplicates(connector, postgrest):
    result = connector.upsert_record("todos", {"id": 1, "title": "rewrite tests", "done": True}, ["id"])

    assert result.success
    request = postgrest.requests[-1]
    assert "resolution=merge-duplicates" in request.headers["Prefer"]
    assert request.url.params["on_conflict"] == "id"
    assert len(postgrest.rows) == 3


def test_api_errors_become_query_errors(connector):
    result = connector.get_table_data("missing")

    assert not result.success
    assert isinstance(result.error, QueryError)
    assert result.error.message == 'Supabase query failed: relation "missing" does not exist'
    assert result.error.metadata["code"] == "42P01"


def test_criteria_required_for_bulk_writes(connector):
    assert "Update criteria are required" in connector.update_records("todos", {}, {"done": True}).error.message
    assert "Delete criteria are required" in connector.delete_records("todos", {}).error.message


def test_sql_only_operations_need_postgres_credentials(connector):
    assert connector.execute_query("SELECT 1").error.code == "OPERATION_NOT_SUPPORTED"
    assert connector.execute_transaction(["SELECT 1"]).error.code == "OPERATION_NOT_SUPPORTED"
    with pytest.raises(FeatureNotSupportedError):
        connector.begin_transaction()


def test_realtime_channels(connector):
    received: List[Dict[str, Any]] = []
    inserts = connector.subscribe_to_table("todos", "insert", received.append)
    everything = connector.subscribe_to_table("todos", "*", received.append)

    assert inserts != everything
    assert connector.dispatch("todos", "INSERT", {"new": {"id": 9}}) == 2
    assert connector.dispatch("todos", "DELETE", {"old": {"id": 9}}) == 1
    assert connector.dispatch("todos", "INSERT", {}, schema="audit") == 0
    assert received[0] == {"table": "todos", "schema": "public", "eventType": "INSERT", "new": {"id": 9}}
    assert connector.channels[inserts].delivered == 1

    connector.unsubscribe_from_table(inserts)
    connector.unsubscribe_from_table(inserts)
    assert list(connector.channels) == [everything]

    with pytest.raises(ValidationError, match="Unsupported realtime event: TRUNCATE"):
        connector.subscribe_to_table("todos", "truncate", received.append)


def test_failing_callback_does_not_stop_delivery(connector):
    received: List[Dict[str, Any]] = []

    def broken(message: Dict[str, Any]) -> None:
        raise RuntimeError("listener crashed")

    connector.subscribe_to_table("todos", "UPDATE", broken)
    connector.subscribe_to_table("todos", "UPDATE", received.append)

    assert connector.dispatch("todos", "update", {"new": {"id": 1}}) == 2
    assert len(received) == 1


def test_disconnect_drops_channels(connector):
    connector.subscribe_to_table("todos", "*", lambda message: None)

    connector.disconnect()

    assert connector.channels == {}
    assert not connector.is_connected()


def test_health_check_in_api_only_mode(connector):
    health = connector.health_check()

    assert health.healthy
    assert health.status == "degraded"
    assert [check.name for check in health.checks] == ["rest_api", "postgres", "realtime"]


def test_postgrest_query_rendering():
    query = PostgrestQuery("users").eq("active", True).order("created_at", descending=True).limit(10)

    assert query.to_params() == [("select", "*"), ("active", "eq.true"), ("order", "created_at.desc"), ("limit", "10")]
    assert PostgrestQuery("t").match({"id": [1, 2], "deleted_at": None}).filter_params() == [
        ("id", "in.(1,2)"),
        ("deleted_at", "is.null"),
    ]
    assert postgrest_literal("a,b") == '"a,b"'
    assert postgrest_literal("plain") == "plain"


def test_parse_content_range():
    assert parse_content_range("0-24/3573") == 3573
    assert parse_content_range("*/0") == 0
    assert parse_content_range("0-24/*") is None
    assert parse_content_range(None) is None


def test_project_ref():
    assert project_ref("https://abcdefghijklmnopqrst.supabase.co") == "abcdefghijklmnopqrst"
    assert project_ref("https://example.com") is None


def test_supabase_config_rules():
    errors = supabase_config_rules(
        {
            "supabaseUrl": "https://short.supabase.co",
            "realtimeConfig": {"enabled": True},
            "rlsConfig": {"enforceRLS": False, "bypassRLSForService": True},
            "apiConfig": {"schema": "bad-schema"},
        }
    )

    assert errors == [
        "Invalid Supabase project reference in URL",
        "Real-time config enabled but feature flag is disabled",
        "Cannot bypass RLS when RLS is not enforced",
        "Invalid schema name: bad-schema",
    ]


def test_supabase_credentials_rules():
    assert supabase_credentials_rules({}) == ["Either supabaseKey or apiKey must be provided"]
    assert supabase_credentials_rules({"supabaseKey": _jwt({"role": "anon"})}) == ["Invalid Supabase JWT key format"]
    assert supabase_credentials_rules({"supabaseKey": _jwt({"role": "anon", "iss": "supabase"})}) == []

    errors = supabase_credentials_rules(
        {
            "apiKey": "plain-key",
            "serviceRoleKey": _jwt({"role": "anon"}),
            "projectRef": "otherproject000000000000",
            "supabaseUrl": DEFAULT_SUPABASE_URL,
            "user": "postgres",
        }
    )
    assert errors == [
        "Service role key does not have service_role claim",
        "Project reference does not match Supabase URL",
        "Both user and password required for Postgres connection",
    ]


def test_factory_defaults_and_examples_validate():
    factory = SupabaseConnectorFactory()

    assert factory.validate_config(factory.create_default_config()).valid
    for name, example in factory.get_example_configs().items():
        assert factory.validate_config(example).valid, name
    assert factory.get_supported_features()["realtime"]
    assert not factory.validate_credentials({}).valid
