from __future__ import annotations

import pytest

from connector_sdk.connectors.base import (
    BulkOperationOptions,
    DataOperationOptions,
    FilterOptions,
    OrderBy,
    PaginationOptions,
    QueryContext,
)
from connector_sdk.connectors.sql import SQLiteConnector
from connector_sdk.connectors.sql.builder import OnConflict, SQLQueryBuilder, to_named
from connector_sdk.connectors.sql.config import postgres_config_rules
from connector_sdk.connectors.sql.dialects import SQLiteDialect
from connector_sdk.core.errors import (
    ConfigurationError,
    ConnectorConnectionError,
    DuplicateKeyError,
    QueryError,
    TableNotFoundError,
    ValidationError,
)
from connector_sdk.core.schema import DatabaseType

CREATE_USERS = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    age INTEGER
)
"""


@pytest.fixture()
def connector(sqlite_config):
    connector = SQLiteConnector(sqlite_config)
    connector.connect()
    assert connector.execute_query(CREATE_USERS).success
    for email, name, age in (("ada@example.com", "Ada", 36), ("grace@example.com", "Grace", 45), ("linus@example.com", "Linus", 28)):
        assert connector.insert_record("users", {"email": email, "name": name, "age": age}).success
    yield connector
    connector.cleanup()


def _count(connector) -> int:
    return connector.count_records("users").total_count


def test_connect_reports_status_and_server_version(connector):
    status = connector.get_connection_status()

    assert connector.is_connected()
    assert status.is_valid
    assert connector.server_version


def test_operations_require_connection(sqlite_config):
    connector = SQLiteConnector(sqlite_config)

    with pytest.raises(ConnectorConnectionError):
        connector.execute_query("SELECT 1")


def test_test_query_and_positional_parameters(connector):
    assert connector.test_query().data == [{"test": 1}]

    result = connector.execute_query("SELECT name FROM users WHERE age > $1 ORDER BY age", [30])

    assert result.success
    assert [row["name"] for row in result.data] == ["Ada", "Grace"]


def test_insert_record_returns_generated_key(connector):
    result = connector.insert_record("users", {"email": "barbara@example.com", "name": "Barbara"})

    assert result.success
    assert result.affected_rows == 1
    assert result.data[0]["id"] == 4
    assert result.data[0]["email"] == "barbara@example.com"


def test_update_and_delete_by_primary_key(connector):
    updated = connector.update_record("users", 1, {"name": "Ada L."})
    assert updated.success
    assert updated.data[0]["name"] == "Ada L."

    deleted = connector.delete_record("users", 2)
    assert deleted.success
    assert deleted.affected_rows == 1
    assert _count(connector) == 2


def test_update_records_requires_criteria(connector):
    result = connector.update_records("users", {}, {"name": "nobody"})

    assert not result.success
    assert isinstance(result.error, ValidationError)
    assert "Update criteria are required" in result.error.message
    assert _count(connector) == 3


def test_get_table_data_paginates_and_counts(connector):
    options = DataOperationOptions(
        pagination=PaginationOptions(limit=2, offset=1, order_by=[OrderBy("age", "DESC")]),
        filters=FilterOptions(where={"age": {"gte": 20}}),
    )

    result = connector.get_table_data("users", options)

    assert result.success
    assert [row["name"] for row in result.data] == ["Ada", "Linus"]
    assert result.total_count == 3


def test_upsert_record_updates_on_conflict(connector):
    result = connector.upsert_record("users", {"email": "ada@example.com", "name": "Countess"}, ["email"])

    assert result.success
    assert _count(connector) == 3
    rows = connector.execute_query("SELECT name FROM users WHERE email = :email", {"email": "ada@example.com"}).data
    assert rows == [{"name": "Countess"}]


def test_duplicate_insert_is_classified(connector):
    result = connector.insert_record("users", {"email": "ada@example.com", "name": "Again"})

    assert not result.success
    assert result.error.code == "DUPLICATE_KEY"
    assert result.error.status_code == 409


def test_execute_transaction_rolls_back_on_failure(connector):
    result = connector.execute_transaction(
        [
            ("INSERT INTO users (email, name) VALUES (?, ?)", ["new@example.com", "New"]),
            ("INSERT INTO users (email, name) VALUES (?, ?)", ["ada@example.com", "Duplicate"]),
            {"query": "UPDATE users SET age = :age", "parameters": {"age": 99}},
        ]
    )

    assert not result.success
    assert result.metadata["failedOperation"] == 1
    assert _count(connector) == 3
    rows = connector.execute_query("SELECT COUNT(*) AS n FROM users WHERE email = 'new@example.com'").data
    assert rows == [{"n": 0}]


def test_execute_transaction_commits_all_operations(connector):
    result = connector.execute_transaction(
        [
            "UPDATE users SET age = age + 1",
            {"sql": "DELETE FROM users WHERE email = :email", "params": {"email": "linus@example.com"}},
        ]
    )

    assert result.success
    assert result.metadata == {"operations": 2}
    assert [item["affectedRows"] for item in result.data] == [3, 1]
    assert _count(connector) == 2


def test_transaction_savepoints(connector):
    with connector.begin_transaction() as tx:
        tx.execute("INSERT INTO users (email, name) VALUES (?, ?)", ["one@example.com", "One"])
        savepoint = tx.savepoint("before_two")
        tx.execute("INSERT INTO users (email, name) VALUES (?, ?)", ["two@example.com", "Two"])
        tx.rollback_to_savepoint(savepoint)
        assert tx.savepoints == ["before_two"]

    assert tx.status == "committed"
    emails = {row["email"] for row in connector.execute_query("SELECT email FROM users").data}
    assert "one@example.com" in emails
    assert "two@example.com" not in emails
    with pytest.raises(QueryError):
        tx.execute("SELECT 1")


def test_transaction_context_rolls_back_on_exception(connector):
    with pytest.raises(RuntimeError):
        with connector.begin_transaction() as tx:
            tx.execute("DELETE FROM users")
            raise RuntimeError("abort")

    assert tx.status == "aborted"
    assert _count(connector) == 3


def test_failed_statement_aborts_open_transaction(connector):
    tx = connector.begin_transaction()
    tx.execute("INSERT INTO users (email, name) VALUES (?, ?)", ["new@example.com", "New"])

    with pytest.raises(DuplicateKeyError) as excinfo:
        tx.execute("INSERT INTO users (email, name) VALUES (?, ?)", ["ada@example.com", "Dup"])

    assert excinfo.value.metadata["operation"] == "transaction"
    assert tx.status == "aborted"
    assert not tx.is_active
    assert _count(connector) == 3
    with pytest.raises(QueryError):
        tx.execute("SELECT 1")


def test_constraint_errors_ignore_column_names(connector):
    connector.execute_query("CREATE TABLE sessions (id INTEGER PRIMARY KEY, timeout INTEGER)")
    connector.execute_query("CREATE TABLE accounts (id INTEGER PRIMARY KEY, email TEXT UNIQUE, password TEXT)")
    assert connector.insert_record("sessions", {"id": 1, "timeout": 30}).success
    assert connector.insert_record("accounts", {"id": 1, "email": "a@example.com", "password": "x"}).success

    sessions = connector.insert_record("sessions", {"id": 1, "timeout": 60})
    accounts = connector.insert_record("accounts", {"id": 2, "email": "a@example.com", "password": "y"})

    for result in (sessions, accounts):
        assert not result.success
        assert result.error.code == "DUPLICATE_KEY"
        assert not result.error.retryable


def test_introspection_requires_configuration(connector):
    connector.config = None

    with pytest.raises(ConfigurationError, match="No configuration provided"):
        connector.introspect_schema()


def test_read_only_context_blocks_writes(connector):
    result = connector.execute_query("DELETE FROM users", context=QueryContext(read_only=True))

    assert not result.success
    assert _count(connector) == 3


def test_insert_records_is_all_or_nothing(connector):
    rows = [{"email": "a@example.com", "name": "A"}, {"email": "ada@example.com", "name": "Dup"}]

    strict = connector.insert_records("users", rows, BulkOperationOptions(batch_size=1))
    assert not strict.success
    assert _count(connector) == 3

    lenient = connector.insert_records("users", rows, BulkOperationOptions(batch_size=1, continue_on_error=True))
    assert lenient.success
    assert lenient.affected_rows == 1
    assert lenient.warnings and lenient.warnings[0].startswith("Batch 2 failed:")
    assert _count(connector) == 4


def test_bulk_upsert(connector):
    result = connector.bulk_upsert(
        "users",
        [{"email": "ada@example.com", "name": "Ada B."}, {"email": "new@example.com", "name": "New"}],
        ["email"],
    )

    assert result.success
    assert _count(connector) == 4


def test_introspection(connector):
    schema = connector.introspect_schema()

    table = schema.table("users")
    assert table is not None
    assert table.primary_key == ["id"]
    assert table.column("id").is_auto_increment
    assert table.column("email").nullable is False
    assert table.column("email").is_unique
    assert table.column("age").type is DatabaseType.INTEGER
    assert len(schema.version) == 64
    assert schema.metadata["connectorType"] == "sqlite"
    assert connector.list_tables() == ["users"]


def test_get_table_definition_unknown_table(connector):
    with pytest.raises(TableNotFoundError):
        connector.get_table_definition("orders")


def test_schema_diff_from_live_tables(connector):
    before = connector.introspect_schema()
    connector.execute_query("ALTER TABLE users ADD COLUMN nickname TEXT")
    after = connector.introspect_schema()

    comparison = connector.compare_schemas(before, after)
    statements = connector.generate_schema_diff(comparison)

    assert comparison.has_changes
    assert statements == ['ALTER TABLE "users" ADD COLUMN "nickname" TEXT;']
    assert before.version != after.version


def test_validate_data_against_table(connector):
    assert connector.validate_data("users", {"email": "x@example.com"}, "insert").valid

    result = connector.validate_data("users", {"name": "no email"}, "insert")
    assert not result.valid
    assert any("email" in error for error in result.errors)


def test_health_check(connector):
    health = connector.health_check()

    assert health.healthy
    assert {check.name for check in health.checks} == {"connection", "pool", "metrics"}


def test_disconnect_then_health_check_fails(connector):
    connector.disconnect()

    assert not connector.is_connected()
    assert not connector.health_check().healthy


def test_to_named_rewrites_positional_placeholders():
    assert to_named("SELECT * FROM t WHERE a = $1 AND b = $2", [1, 2]) == ("SELECT * FROM t WHERE a = :p0 AND b = :p1", {"p0": 1, "p1": 2})
    assert to_named("SELECT '?' AS q, ? AS v", [5]) == ("SELECT '?' AS q, :p0 AS v", {"p0": 5})
    assert to_named("SELECT :x", {"x": 1}) == ("SELECT :x", {"x": 1})
    with pytest.raises(ValidationError):
        to_named("SELECT ?, ?", [1])


def test_builder_criteria_vocabulary():
    builder = SQLQueryBuilder(SQLiteDialect())

    built = builder.build_select("users", schema="main", criteria={"age": {"gte": 18}, "email": None, "id": [1, 2]})

    assert built.text == 'SELECT * FROM "main"."users" WHERE "age" >= :p0 AND "email" IS NULL AND "id" IN (:p1, :p2)'
    assert built.parameters == {"p0": 18, "p1": 1, "p2": 2}


def test_builder_upsert_clause():
    builder = SQLQueryBuilder(SQLiteDialect())

    built = builder.build_insert("users", {"email": "a@example.com", "name": "A"}, on_conflict=OnConflict(["email"]), returning=["id"])

    assert built.text == (
        'INSERT INTO "users" ("email", "name") VALUES (:p0, :p1) '
        'ON CONFLICT ("email") DO UPDATE SET "name" = EXCLUDED."name" RETURNING "id"'
    )


def test_builder_rejects_empty_statements():
    builder = SQLQueryBuilder(SQLiteDialect())

    with pytest.raises(ValidationError, match="No data provided for insert"):
        builder.build_insert("users", {})
    with pytest.raises(ValidationError, match="Delete criteria are required"):
        builder.build_delete("users", {})


def test_postgres_config_rules():
    errors = postgres_config_rules(
        {
            "poolConfig": {"min": 5, "max": 2},
            "queryTimeout": 600000,
            "searchPath": ["public", "bad-name"],
            "sslConfig": {"mode": "verify-full"},
        }
    )

    assert "Pool min size cannot be greater than max size" in errors
    assert "Query timeout too high (max 5 minutes)" in errors
    assert "Invalid schema name in search path: bad-name" in errors
    assert "CA certificate required for verify-full SSL mode" in errors
