from __future__ import annotations

import sqlite3
from contextlib import closing

import pytest

from connector_sdk.core.errors import ConnectorNotFoundError
from connector_sdk.services import ConnectorServices


@pytest.fixture()
def services(registry) -> ConnectorServices:
    return ConnectorServices(registry)


@pytest.fixture()
def populated_config(sqlite_config):
    with closing(sqlite3.connect(sqlite_config["database"])) as connection, connection:
        connection.execute("CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        connection.execute(
            "CREATE TABLE books (id INTEGER PRIMARY KEY, title TEXT, author_id INTEGER REFERENCES authors(id))"
        )
        connection.execute("CREATE VIEW titles AS SELECT title FROM books")
    return sqlite_config


def test_create_and_verify_returns_connected_connector(services, registry, sqlite_config):
    connector = services.create_and_verify("sqlite", sqlite_config)

    assert connector.is_connected()
    assert len(registry.get_active_connectors()) == 1

    services.release(connector)

    assert not connector.is_connected()
    assert registry.get_active_connectors() == {}


def test_create_and_verify_unknown_type(services):
    with pytest.raises(ConnectorNotFoundError):
        services.create_and_verify("oracle", {})


def test_introspect_snapshot_feeds_sink(services, registry, populated_config):
    captured = []

    snapshot = services.introspect_snapshot("sqlite", populated_config, captured.append)

    assert captured == [snapshot]
    assert snapshot.connector_type == "sqlite"
    assert snapshot.name == "local"
    assert snapshot.table_count == 2
    assert snapshot.view_count == 1
    assert len(snapshot.version) == 64
    payload = snapshot.to_dict()
    assert payload["tableCount"] == 2
    assert sorted(table["name"] for table in payload["schema"]["tables"]) == ["authors", "books"]
    assert registry.get_active_connectors() == {}


def test_snapshot_version_is_stable(services, populated_config):
    first = services.introspect_snapshot("sqlite", populated_config)
    second = services.introspect_snapshot("sqlite", populated_config)

    assert first.version == second.version


def test_test_connection_success(services, sqlite_config):
    report = services.test_connection("sqlite", sqlite_config)

    assert report.success
    assert report.healthy
    assert report.query_ok
    assert report.error is None
    assert report.to_dict()["queryTest"] is True


def test_test_connection_reports_failures(services, sqlite_config):
    unknown = services.test_connection("oracle", {})
    invalid = services.test_connection("sqlite", {**sqlite_config, "queryTimeout": 1})

    assert not unknown.success
    assert "not registered" in unknown.error
    assert not invalid.success
    assert invalid.error.startswith("Configuration validation failed")


def test_available_connector_types(services):
    types = {item["type"]: item for item in services.available_connector_types()}

    assert set(types) == {"postgres", "sqlite", "supabase", "mongodb", "rest"}
    assert types["sqlite"]["defaultConfig"]["database"] == ":memory:"
    assert "realtime" in types["supabase"]["capabilities"]


def test_validate_connector_configuration(services):
    config = {"type": "postgres", "name": "dev", "host": "localhost", "database": "app"}

    assert services.validate_connector_configuration("postgres", config).valid

    missing_password = services.validate_connector_configuration("postgres", config, {"user": "app"})
    assert not missing_password.valid
    assert missing_password.errors == ["Either connectionString or user/password must be provided"]

    unknown = services.validate_connector_configuration("oracle", config)
    assert unknown.errors == ["Unknown connector type: oracle"]
