from __future__ import annotations

import pytest

from connector_sdk.connectors.base import DataOperationOptions, OrderBy, PaginationOptions, QueryContext
from connector_sdk.connectors.document import DocumentConnector, SchemaSampler, infer_document_type
from connector_sdk.core.errors import ConnectorConnectionError, TableNotFoundError, ValidationError
from connector_sdk.core.schema import DatabaseType


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _connector(backend, **config):
    connector = DocumentConnector({"database": "shop", **config}, backend=backend, clock=FakeClock())
    connector.connect()
    return connector


def test_connect_reads_server_version(document_backend):
    connector = _connector(document_backend)

    assert connector.is_connected()
    assert connector.server_version == "7.0.0"
    assert document_backend.opened


def test_connect_failure_is_reported(make_document_backend):
    connector = DocumentConnector({"database": "shop"}, backend=make_document_backend({}, fail_open=True))

    with pytest.raises(ConnectorConnectionError):
        connector.connect()
    assert not connector.is_connected()


def test_prevalence_and_optionality(make_document_backend):
    documents = [{"_id": f"d{index}", "name": f"user {index}"} for index in range(100)]
    for document in documents[:97]:
        document["email"] = f"{document['_id']}@example.com"
    connector = _connector(make_document_backend({"users": documents}))

    result = connector.sample_collection_schema("users")

    email = result.field_named("email")
    assert email is not None
    assert email.prevalence == pytest.approx(0.97)
    assert email.is_optional
    name = result.field_named("name")
    assert name.prevalence == 1.0
    assert not name.is_optional
    assert result.sampled_documents == 100
    assert result.confidence == 1.0


def test_type_inconsistencies_and_nullability(make_document_backend):
    documents = [{"_id": "a", "age": 30}, {"_id": "b", "age": "thirty"}, {"_id": "c", "age": 31}, {"_id": "d", "age": None}]
    connector = _connector(make_document_backend({"people": documents}))

    result = connector.sample_collection_schema("people")

    age = result.field_named("age")
    assert age.type is DatabaseType.INTEGER
    assert age.nullable
    assert age.observed_types == [DatabaseType.INTEGER, DatabaseType.TEXT]
    assert [item.field for item in result.inconsistencies] == ["age"]
    assert result.inconsistencies[0].counts == {"integer": 2, "text": 1}
    assert result.confidence == pytest.approx(0.04)


def test_rare_fields_are_dropped():
    documents = [{"common": 1} for _ in range(20)]
    documents[0]["rare"] = True

    fields, _ = SchemaSampler(min_field_prevalence=0.1).analyze(documents)

    assert [item.name for item in fields] == ["common"]


def test_nested_fields_respect_max_depth():
    documents = [{"profile": {"city": "Oslo", "geo": {"lat": 1.0}}}]

    shallow = SchemaSampler(max_depth=1).sample("users", documents, 10)
    deep = SchemaSampler(max_depth=5).sample("users", documents, 10)

    assert shallow.field_named("profile").nested_fields is None
    assert deep.field_named("profile.city").type is DatabaseType.TEXT
    assert deep.field_named("profile.geo.lat").type is DatabaseType.FLOAT


def test_infer_document_type():
    assert infer_document_type("2024-05-01T10:00:00Z") is DatabaseType.TIMESTAMP
    assert infer_document_type("2024-05-01") is DatabaseType.DATE
    assert infer_document_type("https://example.com") is DatabaseType.URL
    assert infer_document_type(True) is DatabaseType.BOOLEAN
    assert infer_document_type([1, 2]) is DatabaseType.ARRAY
    assert infer_document_type({"type": "Point", "coordinates": [1, 2]}) is DatabaseType.GEOPOINT
    assert infer_document_type({"$ref": "users", "$id": 1}) is DatabaseType.REFERENCE


def test_schema_cache_follows_refresh_interval(document_backend):
    connector = _connector(document_backend)
    clock = connector._clock

    first = connector.sample_collection_schema("users")
    assert connector.sample_collection_schema("users") is first
    assert document_backend.sample_calls == 1

    clock.now += 3601
    assert connector.sample_collection_schema("users") is not first
    assert document_backend.sample_calls == 2

    connector.sample_collection_schema("users", refresh=True)
    assert document_backend.sample_calls == 3


def test_introspection_builds_document_schema(document_backend):
    connector = _connector(document_backend)

    schema = connector.introspect_schema()

    assert [collection.name for collection in schema.collections] == ["events", "users"]
    users = schema.collections[1]
    assert users.document_count == 3
    assert users.database == "shop"
    assert schema.features == {"realTime": False, "aggregation": True, "transactions": False}
    assert len(schema.version) == 64
    assert connector.get_table_primary_key("users") == ["_id"]
    columns = {column.name: column for column in connector.get_table_columns("users")}
    assert columns["_id"].is_primary_key
    assert columns["age"].type is DatabaseType.INTEGER


def test_unknown_collection(document_backend):
    connector = _connector(document_backend)

    with pytest.raises(TableNotFoundError):
        connector.get_table_definition("orders")


def test_execute_query_verbs(document_backend):
    connector = _connector(document_backend)

    found = connector.execute_query("find users", {"filter": {"active": True}, "sort": [("age", 1)]})
    assert [row["name"] for row in found.data] == ["Linus", "Ada"]

    assert connector.execute_query("users").total_count == 3
    assert connector.execute_query("count users", {"filter": {"active": False}}).data == [{"count": 1}]
    assert connector.execute_query("aggregate users", [{"$count": "count"}]).data == [{"_id": None, "count": 3}]

    bad = connector.execute_query("merge users")
    assert not bad.success
    assert isinstance(bad.error, ValidationError)


def test_aggregation_can_be_disabled(document_backend):
    connector = _connector(document_backend, queryConfig={"enableAggregation": False})

    result = connector.execute_query("aggregate users", [])

    assert not result.success
    assert result.error.code == "FEATURE_NOT_SUPPORTED"


def test_read_only_context_rejects_writes(document_backend):
    connector = _connector(document_backend)

    result = connector.execute_query("insert users", {"documents": [{"name": "X"}]}, QueryContext(read_only=True))

    assert not result.success
    assert len(document_backend.collections["users"]) == 3


def test_crud_operations(document_backend):
    connector = _connector(document_backend)

    inserted = connector.insert_record("users", {"name": "Barbara"})
    assert inserted.success
    assert inserted.insert_id == "id1"
    assert inserted.data == [{"name": "Barbara", "_id": "id1"}]

    updated = connector.update_record("users", "u1", {"age": 37})
    assert updated.affected_rows == 1
    assert document_backend.collections["users"][0]["age"] == 37

    deleted = connector.delete_records("users", {"active": False})
    assert deleted.affected_rows == 1

    assert not connector.delete_records("users", {}).success
    assert connector.count_records("users").total_count == 3


def test_upsert_inserts_missing_document(document_backend):
    connector = _connector(document_backend)

    result = connector.upsert_record("users", {"_id": "u9", "name": "New"}, [])

    assert result.success
    assert result.insert_id == "u9"
    assert connector.count_records("users", {"_id": "u9"}).total_count == 1

    missing = connector.upsert_record("users", {"name": "No key"}, ["email"])
    assert not missing.success
    assert "email" in missing.error.message


def test_get_table_data_pages_and_counts(document_backend):
    connector = _connector(document_backend)
    options = DataOperationOptions(pagination=PaginationOptions(limit=1, order_by=[OrderBy("age", "DESC")]))

    result = connector.get_table_data("users", options)

    assert [row["name"] for row in result.data] == ["Grace"]
    assert result.total_count == 3


def test_transactions_require_opt_in(document_backend):
    connector = _connector(document_backend)

    result = connector.execute_transaction([("insert users", {"documents": [{"name": "X"}]})])

    assert not result.success
    assert result.error.code == "FEATURE_NOT_SUPPORTED"


def test_transaction_rolls_back_on_failure(document_backend):
    connector = _connector(document_backend, queryConfig={"enableTransactions": True})

    result = connector.execute_transaction(
        [
            ("insert users", {"documents": [{"_id": "u4", "name": "Barbara"}]}),
            {"query": "insert users", "parameters": {"documents": [{"_id": "u1", "name": "Duplicate"}]}},
        ]
    )

    assert not result.success
    assert result.error.code == "DUPLICATE_KEY"
    assert result.metadata["failedOperation"] == 1
    assert [document["_id"] for document in document_backend.collections["users"]] == ["u1", "u2", "u3"]


def test_transaction_commits(document_backend):
    connector = _connector(document_backend, queryConfig={"enableTransactions": True})

    result = connector.execute_transaction(
        [
            ("insert users", {"documents": [{"_id": "u4", "name": "Barbara"}]}),
            ("update users", {"filter": {"_id": "u2"}, "update": {"$set": {"active": True}}}),
        ]
    )

    assert result.success
    assert result.metadata == {"operations": 2}
    assert result.affected_rows == 2


def test_subscriptions_require_real_time(document_backend):
    connector = _connector(document_backend)

    with pytest.raises(ValidationError, match="Real-time updates are not enabled"):
        connector.subscribe_to_changes("users", lambda change: None)


def test_subscription_lifecycle(document_backend):
    connector = _connector(document_backend, realTime={"enabled": True, "maxListeners": 1})

    subscription_id = connector.subscribe_to_changes("users", lambda change: None)

    assert subscription_id.startswith("users_")
    assert [item.id for item in connector.get_subscriptions()] == [subscription_id]
    with pytest.raises(ValidationError, match=r"Maximum number of real-time listeners reached \(1\)"):
        connector.subscribe_to_changes("events", lambda change: None)

    connector.unsubscribe_from_changes(subscription_id)
    connector.unsubscribe_from_changes(subscription_id)

    assert connector.get_subscriptions() == []
    assert document_backend.handles[0].closed


def test_disconnect_cancels_subscriptions(document_backend):
    connector = _connector(document_backend, realTime={"enabled": True})
    connector.subscribe_to_changes("users", lambda change: None)

    connector.disconnect()

    assert connector.get_subscriptions() == []
    assert document_backend.handles[0].closed
    assert not document_backend.opened


def test_escape_identifier():
    connector = DocumentConnector({"database": "shop"}, backend=object())

    assert connector.escape_identifier("profile.city") == "profile.city"
    with pytest.raises(ValidationError):
        connector.escape_identifier("$where")


def test_validate_data_against_sampled_schema(document_backend):
    connector = _connector(document_backend)

    assert connector.validate_data("users", {"name": "Ada", "age": 36, "active": True}, "insert").valid
    assert not connector.validate_data("users", {"name": "Ada", "age": "old", "active": True}, "insert").valid
    missing = connector.validate_data("orders", {})
    assert not missing.valid
    assert missing.errors[0].startswith("Validation failed:")


def test_health_check(document_backend):
    connector = _connector(document_backend)

    health = connector.health_check()

    assert health.healthy
    assert [check.name for check in health.checks] == ["connection", "subscriptions", "schema_cache"]
