from __future__ import annotations

import json

import pytest

from connector_sdk.connectors.sql import SQLiteConnectorFactory
from connector_sdk.core.errors import ConfigurationError, ConnectorNotFoundError, ValidationError
from connector_sdk.core.registry import (
    ConnectorRegistry,
    RegistryConfig,
    RegistryEvents,
    _ActiveConnector,
    load_plugin_manifest,
    resolve_reference,
)


class ScratchPlugin:
    name = "scratch"
    version = "0.3.0"
    description = "SQLite scratch databases"
    author = "ACME"

    def __init__(self) -> None:
        self.initialized = False
        self.disposed = False

    def initialize(self) -> None:
        self.initialized = True

    def get_factory(self) -> SQLiteConnectorFactory:
        return SQLiteConnectorFactory()

    def dispose(self) -> None:
        self.disposed = True


class BrokenDefaultsFactory(SQLiteConnectorFactory):
    type = "broken"

    def create_default_config(self):
        return {"type": "broken", "name": "x", "queryTimeout": 5}


def _fresh(**config) -> ConnectorRegistry:
    registry = ConnectorRegistry(RegistryConfig(enable_logging=False, **config))
    registry.initialize()
    return registry


def test_builtin_connectors_are_registered(registry):
    assert registry.get_available_connectors() == ["postgres", "sqlite", "supabase", "mongodb", "rest"]
    postgres = registry.get_connector_metadata("postgres")
    assert "connection_pooling" in postgres.capabilities
    assert postgres.extra["defaultPort"] == 5432
    assert not postgres.is_plugin
    assert registry.get_default_config("sqlite")["database"] == ":memory:"
    assert registry.get_config_schema("sqlite")["properties"]["database"]
    assert registry.get_default_config("oracle") is None


def test_metrics_and_status(registry):
    metrics = registry.get_metrics()

    assert set(metrics) == {
        "totalRegistered",
        "totalCreated",
        "totalErrors",
        "connectorsActive",
        "connectorsRegistered",
        "pluginsLoaded",
        "lastActivity",
    }
    assert metrics["totalRegistered"] == 5
    assert metrics["connectorsRegistered"] == 5
    status = registry.get_status()
    assert status["initialized"]
    assert status["connectorTypes"] == 5
    assert status["activeConnectors"] == 0


def test_duplicate_registration_is_rejected(registry):
    with pytest.raises(ValidationError, match="already registered"):
        registry.register_connector(SQLiteConnectorFactory())


def test_register_rejects_invalid_factories():
    registry = _fresh()

    with pytest.raises(ValidationError, match="Invalid connector factory"):
        registry.register_connector(object())
    with pytest.raises(ValidationError, match="Factory validation failed"):
        registry.register_connector(BrokenDefaultsFactory())
    assert registry.get_available_connectors() == []


def test_create_connector_requires_initialisation():
    registry = ConnectorRegistry(RegistryConfig(enable_logging=False))
    registry.register_connector(SQLiteConnectorFactory())

    with pytest.raises(ConfigurationError, match="not initialized"):
        registry.create_connector("sqlite", {"type": "sqlite", "name": "x"})


def test_create_connector_tracks_instances(registry, sqlite_config):
    first = registry.create_connector("sqlite", sqlite_config)
    second = registry.create_connector("sqlite", sqlite_config)

    active = registry.get_active_connectors()
    assert len(active) == 2
    assert all(key.startswith("sqlite:local:") for key in active)
    assert first is not second
    assert not first.is_connected()
    metadata = registry.get_connector_metadata("sqlite")
    assert metadata.usage_count == 2
    assert metadata.last_used is not None
    assert registry.get_metrics()["totalCreated"] == 2


def test_create_connector_errors(registry, sqlite_config):
    with pytest.raises(ConnectorNotFoundError, match="Available types: mongodb, postgres, rest, sqlite, supabase"):
        registry.create_connector("oracle", {})

    with pytest.raises(ValidationError) as excinfo:
        registry.create_connector("sqlite", {**sqlite_config, "queryTimeout": 5, "bogus": True})

    assert len(excinfo.value.errors) == 2
    assert registry.get_metrics()["totalErrors"] == 1
    assert registry.get_active_connectors() == {}


def test_max_connectors_is_enforced(tmp_path):
    registry = _fresh(max_connectors=1)
    registry.register_connector(SQLiteConnectorFactory())
    config = {"type": "sqlite", "name": "one", "database": str(tmp_path / "one.db")}

    registry.create_connector("sqlite", config)

    with pytest.raises(ConfigurationError, match=r"Maximum number of active connectors reached \(1\)"):
        registry.create_connector("sqlite", config)


def test_release_and_remove_connectors(registry, sqlite_config):
    connector = registry.create_connector("sqlite", sqlite_config)
    connector.connect()
    other = registry.create_connector("sqlite", sqlite_config)

    assert registry.release_connector(connector)
    assert not connector.is_connected()
    assert not registry.release_connector(connector)

    (other_id,) = registry.get_active_connectors()
    assert registry.remove_connector(other_id)
    assert not registry.remove_connector(other_id)
    assert registry.get_active_connectors() == {}


def test_cleanup_inactive_connectors(registry, sqlite_config):
    pending = registry.create_connector("sqlite", sqlite_config)
    busy = registry.create_connector("sqlite", sqlite_config)
    busy.connect()

    assert registry.cleanup_inactive_connectors() == 0
    assert len(registry.get_active_connectors()) == 2

    busy.disconnect()

    assert registry.cleanup_inactive_connectors() == 1
    assert list(registry.get_active_connectors().values()) == [pending]

    assert registry.cleanup_inactive_connectors(max_idle_ms=-1) == 1
    assert registry.get_active_connectors() == {}


def test_cleanup_keeps_connectors_awaiting_connect(registry, sqlite_config):
    connector = registry.create_connector("sqlite", sqlite_config)

    assert registry.cleanup_inactive_connectors(max_idle_ms=60_000) == 0

    connector.connect()

    assert list(registry.get_active_connectors().values()) == [connector]
    report = registry.shutdown()
    assert report.disconnected == 1
    assert not connector.is_connected()


class _FlakyConnector:
    def __init__(self) -> None:
        self.cleaned = False

    def is_connected(self) -> bool:
        return True

    def disconnect(self) -> None:
        raise RuntimeError("socket already closed")

    def cleanup(self) -> None:
        self.cleaned = True


def test_shutdown_runs_cleanup_when_disconnect_fails(registry):
    flaky = _FlakyConnector()
    registry._active["sqlite:flaky:1"] = _ActiveConnector("sqlite:flaky:1", "sqlite", flaky)

    report = registry.shutdown()

    assert flaky.cleaned
    assert not report.clean
    assert report.disconnected == 0
    assert report.errors == ["Failed to clean up connector sqlite:flaky:1: disconnect: socket already closed"]


def test_validate_config_by_type(registry, sqlite_config):
    assert registry.validate_config("sqlite", sqlite_config).valid
    unknown = registry.validate_config("oracle", {})
    assert not unknown.valid
    assert unknown.errors == ["Unknown connector type: oracle"]


def test_unregister_connector_disconnects_instances(registry, sqlite_config):
    connector = registry.create_connector("sqlite", sqlite_config)
    connector.connect()

    registry.unregister_connector("sqlite")

    assert not registry.has_connector("sqlite")
    assert not connector.is_connected()
    assert registry.get_active_connectors() == {}
    with pytest.raises(ConnectorNotFoundError):
        registry.unregister_connector("sqlite")


def test_plugin_lifecycle():
    registry = _fresh()
    plugin = ScratchPlugin()

    result = registry.load_plugin(plugin, plugin_path="acme.scratch:plugin")

    assert result.success
    assert plugin.initialized
    assert result.metadata.is_plugin
    assert result.metadata.name == "scratch"
    assert result.metadata.version == "0.3.0"
    assert result.metadata.author == "ACME"
    assert result.metadata.plugin_path == "acme.scratch:plugin"
    assert registry.get_metrics()["pluginsLoaded"] == 1

    registry.unload_plugin("scratch")

    assert plugin.disposed
    assert not registry.has_connector("sqlite")
    assert registry.get_metrics()["pluginsLoaded"] == 0
    with pytest.raises(ConnectorNotFoundError):
        registry.unload_plugin("scratch")


def test_load_plugin_reports_failures():
    registry = _fresh()
    registry.register_connector(SQLiteConnectorFactory())

    invalid = registry.load_plugin(object())
    duplicate = registry.load_plugin(ScratchPlugin())

    assert not invalid.success
    assert isinstance(invalid.error, ValidationError)
    assert not duplicate.success
    assert "already registered" in duplicate.error.message


def test_manifest_loading(tmp_path):
    manifest = tmp_path / "plugins.yaml"
    manifest.write_text(
        "plugins:\n"
        "  - factory: connector_sdk.connectors.sql:SQLiteConnectorFactory\n"
        "    metadata:\n"
        "      author: ACME\n"
        "  - factory: connector_sdk.nowhere:Factory\n",
        encoding="utf-8",
    )
    registry = ConnectorRegistry(RegistryConfig(enable_logging=False, plugin_paths=(manifest,)))

    registry.initialize()

    assert registry.get_available_connectors() == ["sqlite"]
    metadata = registry.get_connector_metadata("sqlite")
    assert metadata.is_plugin
    assert metadata.author == "ACME"
    assert metadata.plugin_path == "connector_sdk.connectors.sql:SQLiteConnectorFactory"

    results = registry.load_plugins_from_manifest(manifest)
    assert [item.success for item in results] == [False, False]
    assert isinstance(results[1].error, ConfigurationError)


def test_json_manifest_and_bad_manifests(tmp_path):
    manifest = tmp_path / "plugins.json"
    manifest.write_text(json.dumps(["connector_sdk.connectors.sql:SQLiteConnectorFactory"]), encoding="utf-8")
    assert load_plugin_manifest(manifest) == [{"plugin": "connector_sdk.connectors.sql:SQLiteConnectorFactory"}]

    broken = tmp_path / "broken.yaml"
    broken.write_text("plugins:\n  - author: nobody\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="expected a 'factory' or 'plugin' reference"):
        load_plugin_manifest(broken)
    with pytest.raises(ConfigurationError, match="does not exist"):
        load_plugin_manifest(tmp_path / "missing.yaml")


def test_resolve_reference():
    assert resolve_reference("connector_sdk.connectors.sql:SQLiteConnectorFactory") is SQLiteConnectorFactory
    with pytest.raises(ConfigurationError, match="module:attribute"):
        resolve_reference("connector_sdk.connectors.sql")
    with pytest.raises(ConfigurationError, match="does not resolve"):
        resolve_reference("connector_sdk.connectors.sql:Missing")


def test_events_are_emitted(tmp_path):
    seen = []

    def explode(metadata):
        raise RuntimeError("listener bug")

    events = RegistryEvents(
        on_connector_registered=explode,
        on_connector_created=lambda connector_type, config: seen.append(("created", connector_type)),
        on_connector_error=lambda connector_type, error: seen.append(("error", error.code)),
        on_connector_unregistered=lambda connector_type: seen.append(("unregistered", connector_type)),
    )
    registry = ConnectorRegistry(RegistryConfig(enable_logging=False))
    registry.initialize(events)
    registry.register_connector(SQLiteConnectorFactory())

    registry.create_connector("sqlite", {"type": "sqlite", "name": "x", "database": str(tmp_path / "x.db")})
    with pytest.raises(ValidationError):
        registry.create_connector("sqlite", {"type": "sqlite", "name": "x", "bogus": 1})
    registry.unregister_connector("sqlite")

    assert seen == [("created", "sqlite"), ("error", "VALIDATION_ERROR"), ("unregistered", "sqlite")]


def test_shutdown_reports_and_clears(sqlite_config):
    registry = _fresh()
    registry.register_connector(SQLiteConnectorFactory())
    plugin = ScratchPlugin()
    plugin.get_factory = lambda: type("ScratchFactory", (SQLiteConnectorFactory,), {"type": "scratch"})()
    assert registry.load_plugin(plugin).success
    registry.create_connector("sqlite", sqlite_config).connect()

    report = registry.shutdown()

    assert report.clean
    assert report.disconnected == 1
    assert report.plugins_disposed == 1
    assert plugin.disposed
    assert not registry.initialized
    assert registry.get_available_connectors() == []
