"""
Connector registry: the catalogue of connector factories and live instances.

The registry is an ordinary object owned by the host application (see
:func:`connector_sdk.bootstrap.initialize_connectors`), not a module-level
singleton. Every mutation happens under one re-entrant lock so factories,
plugins and tracked instances stay consistent when used from several threads.

Plugins are discovered two ways:

* Python entry points in the ``connector_sdk.plugins`` group (``auto_discovery``).
* YAML or JSON manifests listed in ``plugin_paths``, each naming factories or
  plugins as ``module:attribute`` references::

      plugins:
        - factory: acme_connectors.snowflake:SnowflakeConnectorFactory
        - plugin: acme_connectors.graph:plugin
          metadata:
            author: ACME
"""

from __future__ import annotations

import importlib
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import yaml

from ..connectors.base import (
    ConfigValidationResult,
    Connector,
    ConnectorFactory,
    ConnectorPlugin,
    is_connector_factory,
    is_connector_plugin,
    utcnow,
)
from .errors import ConfigurationError, ConnectorError, ConnectorNotFoundError, InternalConnectorError, ValidationError
from .logging import get_logger, log_progress

PLUGIN_ENTRY_POINT_GROUP = "connector_sdk.plugins"
DEFAULT_MAX_IDLE_MS = 30 * 60 * 1000


@dataclass(slots=True)
class RegistryConfig:
    """
    Registry behaviour switches.

    Attributes
    ----------
    enable_logging:
        Emit INFO lifecycle logs (registration, creation, shutdown).
    enable_metrics:
        Maintain usage counters exposed through :meth:`ConnectorRegistry.get_metrics`.
    plugin_paths:
        Plugin manifests loaded during :meth:`ConnectorRegistry.initialize`.
    auto_discovery:
        Load plugins advertised through the ``connector_sdk.plugins`` entry point group.
    default_timeout_ms:
        Default operation timeout surfaced to hosts in :meth:`ConnectorRegistry.get_status`.
    max_connectors:
        Upper bound of tracked connector instances.
    """

    enable_logging: bool = True
    enable_metrics: bool = True
    plugin_paths: Sequence[Path | str] = field(default_factory=tuple)
    auto_discovery: bool = False
    default_timeout_ms: int = 30000
    max_connectors: int = 100


@dataclass(slots=True)
class ConnectorMetadata:
    """Registry-owned description of a registered connector type."""

    type: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = "Unknown"
    capabilities: List[str] = field(default_factory=list)
    supported_versions: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    registered_at: datetime = field(default_factory=utcnow)
    last_used: Optional[datetime] = None
    usage_count: int = 0
    is_active: bool = True
    config_schema: Dict[str, Any] = field(default_factory=dict)
    default_config: Dict[str, Any] = field(default_factory=dict)
    plugin_path: Optional[str] = None
    is_plugin: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "capabilities": list(self.capabilities),
            "supportedVersions": list(self.supported_versions),
            "dependencies": list(self.dependencies),
            "registeredAt": self.registered_at.isoformat(),
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
            "usageCount": self.usage_count,
            "isActive": self.is_active,
            "configSchema": self.config_schema,
            "defaultConfig": self.default_config,
            "pluginPath": self.plugin_path,
            "isPlugin": self.is_plugin,
            "metadata": dict(self.extra),
        }


@dataclass(slots=True)
class RegistryEvents:
    """Optional registry callbacks; failing callbacks are logged and ignored."""

    on_connector_registered: Optional[Callable[[ConnectorMetadata], None]] = None
    on_connector_unregistered: Optional[Callable[[str], None]] = None
    on_connector_created: Optional[Callable[[str, Any], None]] = None
    on_connector_error: Optional[Callable[[str, ConnectorError], None]] = None
    on_plugin_loaded: Optional[Callable[[Any], None]] = None
    on_plugin_unloaded: Optional[Callable[[str], None]] = None


@dataclass(slots=True)
class PluginLoadResult:
    success: bool
    plugin: Any = None
    error: Optional[ConnectorError] = None
    metadata: Optional[ConnectorMetadata] = None


@dataclass(slots=True)
class ShutdownReport:
    """Outcome of :meth:`ConnectorRegistry.shutdown`; failures never abort the shutdown."""

    disconnected: int = 0
    plugins_disposed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class RegistryMetrics:
    total_registered: int = 0
    total_created: int = 0
    total_errors: int = 0
    plugins_loaded: int = 0
    last_activity: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class _ActiveConnector:
    id: str
    type: str
    connector: Connector
    created_at: datetime = field(default_factory=utcnow)
    seen_connected: bool = False


def _config_name(config: Any) -> str:
    if isinstance(config, Mapping):
        return str(config.get("name") or "unnamed")
    return str(getattr(config, "name", None) or "unnamed")


def _json_schema(factory: Any) -> Dict[str, Any]:
    model = getattr(factory, "config_model", None)
    if model is None or not hasattr(model, "model_json_schema"):
        return {}
    return model.model_json_schema(by_alias=True)


def resolve_reference(reference: str) -> Any:
    """Import ``module:attribute`` (dotted attributes allowed)."""

    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Plugin reference '{reference}' must use the 'module:attribute' form")
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import plugin module '{module_name}': {exc}", cause=exc) from exc
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(f"Plugin reference '{reference}' does not resolve: {exc}", cause=exc) from exc
    return target


def load_plugin_manifest(path: Path | str) -> List[Dict[str, Any]]:
    """Read a YAML/JSON plugin manifest into a list of ``{factory|plugin, metadata}`` entries."""

    location = Path(path)
    if not location.is_file():
        raise ConfigurationError(f"Plugin manifest '{location}' does not exist", field="plugin_paths")
    try:
        with location.open("r", encoding="utf-8") as handle:
            if location.suffix.lower() == ".json":
                payload = json.load(handle)
            else:
                payload = yaml.safe_load(handle)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigurationError(f"Failed to parse plugin manifest '{location}': {exc}", cause=exc) from exc

    entries = payload.get("plugins") if isinstance(payload, Mapping) else payload
    if not isinstance(entries, list):
        raise ConfigurationError(f"Plugin manifest '{location}' must contain a list of plugins")
    normalised: List[Dict[str, Any]] = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"plugin": entry}
        if not isinstance(entry, Mapping) or not (entry.get("factory") or entry.get("plugin")):
            raise ConfigurationError(f"Invalid entry in '{location}': expected a 'factory' or 'plugin' reference")
        normalised.append(dict(entry))
    return normalised


class ConnectorRegistry:
    """
    Catalogue of connector factories, loaded plugins and live connector instances.

    Call :meth:`initialize` before use and :meth:`shutdown` when done.
    """

    def __init__(self, config: Optional[RegistryConfig] = None) -> None:
        self.config = config or RegistryConfig()
        self.events = RegistryEvents()
        self.metrics = RegistryMetrics()
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")
        self._lock = threading.RLock()
        self._factories: Dict[str, ConnectorFactory] = {}
        self._metadata: Dict[str, ConnectorMetadata] = {}
        self._plugins: Dict[str, Any] = {}
        self._plugin_types: Dict[str, str] = {}
        self._active: Dict[str, _ActiveConnector] = {}
        self._initialized = False

    # Lifecycle --------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, events: Optional[RegistryEvents] = None) -> None:
        """Attach ``events`` and load configured plugins; a second call is a no-op."""

        with self._lock:
            if self._initialized:
                return
            if events is not None:
                self.events = events
            try:
                if self.config.auto_discovery:
                    self.discover_entry_point_plugins()
                for path in self.config.plugin_paths:
                    self.load_plugins_from_manifest(path)
            except ConnectorError:
                raise
            except Exception as exc:
                raise InternalConnectorError(f"Failed to initialize connector registry: {exc}", cause=exc) from exc
            self._initialized = True
            self._log(
                "Connector registry initialized",
                connectors=len(self._factories),
                plugins=len(self._plugins),
            )

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise ConfigurationError("Connector registry is not initialized; call initialize() first")

    def _log(self, message: str, **extra: Any) -> None:
        if self.config.enable_logging:
            self.logger.info(message, extra=extra)

    def _emit(self, event: str, *args: Any) -> None:
        callback = getattr(self.events, event, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Registry event listener failed", extra={"operation": event, "error": str(exc)})

    def _touch(self) -> None:
        if self.config.enable_metrics:
            self.metrics.last_activity = utcnow()

    def shutdown(self) -> ShutdownReport:
        """Disconnect every tracked connector, dispose every plugin and clear the catalogue."""

        report = ShutdownReport()
        with self._lock:
            log_progress(self.logger, "Shutting down connector registry", phase="shutdown", status="start")
            for entry in list(self._active.values()):
                failure = self._close(entry)
                if failure:
                    report.errors.append(failure)
                else:
                    report.disconnected += 1
            for name, plugin in list(self._plugins.items()):
                try:
                    plugin.dispose()
                    report.plugins_disposed += 1
                except Exception as exc:  # noqa: BLE001
                    report.errors.append(f"Failed to dispose plugin {name}: {exc}")
            self._active.clear()
            self._factories.clear()
            self._metadata.clear()
            self._plugins.clear()
            self._plugin_types.clear()
            self._initialized = False
            log_progress(
                self.logger,
                "Connector registry shut down",
                phase="shutdown",
                status="done" if report.clean else "degraded",
                result=f"{report.disconnected} connectors, {report.plugins_disposed} plugins, {len(report.errors)} errors",
            )
        return report

    def _close(self, entry: _ActiveConnector) -> Optional[str]:
        failures: List[str] = []
        for step in (entry.connector.disconnect, entry.connector.cleanup):
            try:
                step()
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "Error cleaning up connector",
                    extra={"connector_id": entry.id, "step": step.__name__, "error": str(exc)},
                )
                failures.append(f"{step.__name__}: {exc}")
        if failures:
            return f"Failed to clean up connector {entry.id}: {'; '.join(failures)}"
        return None

    # Registration -----------------------------------------------------------

    def register_connector(self, factory: ConnectorFactory, metadata: Optional[Mapping[str, Any]] = None) -> ConnectorMetadata:
        """
        Add ``factory`` to the catalogue.

        Raises
        ------
        ValidationError
            If the object is not a factory, its type is already registered, or
            its own default configuration does not validate.
        """

        if not is_connector_factory(factory):
            raise ValidationError("Invalid connector factory provided")
        overrides = dict(metadata or {})
        with self._lock:
            connector_type = factory.type
            if connector_type in self._factories:
                raise ValidationError(f"Connector type '{connector_type}' is already registered")
            try:
                default_config = factory.create_default_config()
                validation: ConfigValidationResult = factory.validate_config(default_config)
            except Exception as exc:  # noqa: BLE001
                raise ValidationError(f"Factory validation failed: {exc}", cause=exc) from exc
            if not validation.valid:
                raise ValidationError.from_errors("Factory validation failed", validation.errors)

            entry = ConnectorMetadata(
                type=connector_type,
                name=str(overrides.pop("name", None) or getattr(factory, "name", None) or connector_type),
                version=str(overrides.pop("version", None) or getattr(factory, "version", None) or "1.0.0"),
                description=str(overrides.pop("description", None) or getattr(factory, "description", None) or f"{connector_type} connector"),
                author=str(overrides.pop("author", None) or getattr(factory, "author", None) or "Unknown"),
                capabilities=list(overrides.pop("capabilities", None) or getattr(factory, "capabilities", None) or []),
                supported_versions=list(getattr(factory, "supported_versions", None) or []),
                dependencies=list(overrides.pop("dependencies", None) or getattr(factory, "dependencies", None) or []),
                config_schema=_json_schema(factory),
                default_config=dict(default_config),
                plugin_path=overrides.pop("plugin_path", None),
                is_plugin=bool(overrides.pop("is_plugin", False)),
                extra=overrides,
            )
            self._factories[connector_type] = factory
            self._metadata[connector_type] = entry
            if self.config.enable_metrics:
                self.metrics.total_registered += 1
            self._touch()
        self._emit("on_connector_registered", entry)
        self._log("Registered connector", type=connector_type, version=entry.version)
        return entry

    def unregister_connector(self, connector_type: str) -> None:
        """Remove a type after disconnecting its live instances; cleanup failures are logged."""

        with self._lock:
            if connector_type not in self._factories:
                raise ConnectorNotFoundError(connector_type, self._factories)
            for entry in [item for item in self._active.values() if item.type == connector_type]:
                self._close(entry)
                self._active.pop(entry.id, None)
            self._factories.pop(connector_type, None)
            self._metadata.pop(connector_type, None)
            for name, plugin_type in list(self._plugin_types.items()):
                if plugin_type != connector_type:
                    continue
                plugin = self._plugins.pop(name)
                self._plugin_types.pop(name)
                try:
                    plugin.dispose()
                except Exception as exc:  # noqa: BLE001
                    self.logger.error("Error disposing plugin", extra={"plugin": name, "error": str(exc)})
            self._touch()
        self._emit("on_connector_unregistered", connector_type)
        self._log("Unregistered connector", type=connector_type)

    # Plugins ----------------------------------------------------------------

    def load_plugin(self, plugin: ConnectorPlugin, *, plugin_path: Optional[str] = None) -> PluginLoadResult:
        """Initialise ``plugin`` and register its factory; failures are returned, not raised."""

        if not is_connector_plugin(plugin):
            return PluginLoadResult(success=False, error=ValidationError("Invalid connector plugin provided"))
        try:
            plugin.initialize()
            factory = plugin.get_factory()
            metadata = self.register_connector(
                factory,
                {
                    "name": plugin.name,
                    "version": getattr(plugin, "version", None),
                    "description": getattr(plugin, "description", None),
                    "author": getattr(plugin, "author", None),
                    "capabilities": getattr(plugin, "capabilities", None),
                    "dependencies": getattr(plugin, "dependencies", None),
                    "plugin_path": plugin_path,
                    "is_plugin": True,
                },
            )
        except ConnectorError as exc:
            self.logger.warning("Plugin failed to load", extra={"plugin": plugin.name, "error": exc.message})
            return PluginLoadResult(success=False, plugin=plugin, error=exc)
        except Exception as exc:  # noqa: BLE001
            error = InternalConnectorError(f"Plugin '{plugin.name}' failed to load: {exc}", cause=exc)
            self.logger.warning("Plugin failed to load", extra={"plugin": plugin.name, "error": str(exc)})
            return PluginLoadResult(success=False, plugin=plugin, error=error)
        with self._lock:
            self._plugins[plugin.name] = plugin
            self._plugin_types[plugin.name] = factory.type
            if self.config.enable_metrics:
                self.metrics.plugins_loaded += 1
        self._emit("on_plugin_loaded", plugin)
        self._log("Loaded plugin", plugin=plugin.name, type=factory.type)
        return PluginLoadResult(success=True, plugin=plugin, metadata=metadata)

    def unload_plugin(self, name: str) -> None:
        with self._lock:
            connector_type = self._plugin_types.get(name)
            if connector_type is None:
                raise ConnectorNotFoundError(name, self._plugins)
            self.unregister_connector(connector_type)
        self._emit("on_plugin_unloaded", name)

    def _load_target(self, target: Any, *, origin: str, metadata: Optional[Mapping[str, Any]] = None) -> PluginLoadResult:
        if isinstance(target, type):
            target = target()
        elif callable(target) and not is_connector_factory(target) and not is_connector_plugin(target):
            target = target()
        if is_connector_plugin(target):
            return self.load_plugin(target, plugin_path=origin)
        if is_connector_factory(target):
            try:
                registered = self.register_connector(target, {**dict(metadata or {}), "plugin_path": origin, "is_plugin": True})
            except ConnectorError as exc:
                return PluginLoadResult(success=False, error=exc)
            return PluginLoadResult(success=True, metadata=registered)
        return PluginLoadResult(success=False, error=ValidationError(f"'{origin}' is neither a connector plugin nor a factory"))

    def load_plugins_from_manifest(self, path: Path | str) -> List[PluginLoadResult]:
        """Load every ``factory``/``plugin`` reference listed in the manifest at ``path``."""

        results = []
        for entry in load_plugin_manifest(path):
            reference = str(entry.get("plugin") or entry.get("factory"))
            try:
                target = resolve_reference(reference)
            except ConnectorError as exc:
                results.append(PluginLoadResult(success=False, error=exc))
                continue
            results.append(self._load_target(target, origin=reference, metadata=entry.get("metadata")))
        failed = [item for item in results if not item.success]
        if failed:
            self.logger.warning("Some plugins failed to load", extra={"path": str(path), "failed": len(failed)})
        return results

    def discover_entry_point_plugins(self) -> List[PluginLoadResult]:
        """Load plugins advertised in the ``connector_sdk.plugins`` entry point group."""

        results = []
        for point in entry_points(group=PLUGIN_ENTRY_POINT_GROUP):
            try:
                target = point.load()
            except Exception as exc:  # noqa: BLE001
                error = ConfigurationError(f"Cannot load entry point '{point.name}': {exc}", cause=exc)
                results.append(PluginLoadResult(success=False, error=error))
                continue
            results.append(self._load_target(target, origin=point.value))
        return results

    # Instances --------------------------------------------------------------

    def _new_id(self, connector_type: str, name: str) -> str:
        base = f"{connector_type}:{name}:{int(time.time() * 1000)}"
        candidate, suffix = base, 1
        while candidate in self._active:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def create_connector(self, connector_type: str, config: Any) -> Connector:
        """
        Validate ``config`` with the type's factory and return a new, unconnected connector.

        Raises
        ------
        ConnectorNotFoundError
            Unknown ``connector_type``.
        ValidationError
            Aggregating every configuration violation.
        ConfigurationError
            When ``max_connectors`` instances are already tracked.
        """

        with self._lock:
            self._require_initialized()
            factory = self._factories.get(connector_type)
            if factory is None:
                raise ConnectorNotFoundError(connector_type, self._factories)
            try:
                validation = factory.validate_config(config)
                if not validation.valid:
                    raise ValidationError.from_errors("Configuration validation failed", validation.errors)
                if len(self._active) >= self.config.max_connectors:
                    raise ConfigurationError(
                        f"Maximum number of active connectors reached ({self.config.max_connectors})",
                        metadata={"maxConnectors": self.config.max_connectors},
                    )
                connector = factory.create(config)
            except ConnectorError as exc:
                self._record_error(connector_type, exc)
                raise
            except Exception as exc:
                error = InternalConnectorError(f"Failed to create connector: {exc}", cause=exc)
                self._record_error(connector_type, error)
                raise error from exc
            connector_id = self._new_id(connector_type, _config_name(config))
            self._active[connector_id] = _ActiveConnector(connector_id, connector_type, connector)
            entry = self._metadata[connector_type]
            entry.usage_count += 1
            entry.last_used = utcnow()
            if self.config.enable_metrics:
                self.metrics.total_created += 1
            self._touch()
        self._emit("on_connector_created", connector_type, config)
        self._log("Created connector", type=connector_type, connector_id=connector_id)
        return connector

    def _record_error(self, connector_type: str, error: ConnectorError) -> None:
        if self.config.enable_metrics:
            self.metrics.total_errors += 1
        self._emit("on_connector_error", connector_type, error)

    def get_active_connectors(self) -> Dict[str, Connector]:
        with self._lock:
            return {key: entry.connector for key, entry in self._active.items()}

    def remove_connector(self, connector_id: str) -> bool:
        """Disconnect and forget one tracked instance; ``False`` when the id is unknown."""

        with self._lock:
            entry = self._active.pop(connector_id, None)
        if entry is None:
            return False
        self._close(entry)
        return True

    def release_connector(self, connector: Connector) -> bool:
        """Like :meth:`remove_connector`, looked up by instance."""

        with self._lock:
            connector_id = next((key for key, entry in self._active.items() if entry.connector is connector), None)
        if connector_id is None:
            return False
        return self.remove_connector(connector_id)

    def cleanup_inactive_connectors(self, max_idle_ms: int = DEFAULT_MAX_IDLE_MS) -> int:
        """
        Evict instances that are disconnected or idle longer than ``max_idle_ms``.

        An instance that has not connected yet counts its creation time as its
        last activity, so a fresh ``create_connector`` result survives until the
        caller gets to ``connect()`` it.
        """

        now = utcnow()
        with self._lock:
            stale: List[_ActiveConnector] = []
            for entry in self._active.values():
                try:
                    if not entry.connector.is_connected():
                        pending_ms = (now - entry.created_at).total_seconds() * 1000.0
                        if entry.seen_connected or pending_ms > max_idle_ms:
                            stale.append(entry)
                        continue
                    entry.seen_connected = True
                    idle_ms = (now - entry.connector.get_connection_metrics().last_activity).total_seconds() * 1000.0
                except Exception:  # noqa: BLE001
                    stale.append(entry)
                    continue
                if idle_ms > max_idle_ms:
                    stale.append(entry)
            for entry in stale:
                self._close(entry)
                self._active.pop(entry.id, None)
        if stale:
            self._log("Cleaned up inactive connectors", count=len(stale))
        return len(stale)

    # Queries ----------------------------------------------------------------

    def has_connector(self, connector_type: str) -> bool:
        return connector_type in self._factories

    def get_available_connectors(self) -> List[str]:
        with self._lock:
            return list(self._factories)

    def get_connector_factory(self, connector_type: str) -> Optional[ConnectorFactory]:
        return self._factories.get(connector_type)

    def get_connector_metadata(self, connector_type: str) -> Optional[ConnectorMetadata]:
        return self._metadata.get(connector_type)

    def get_all_connector_metadata(self) -> List[ConnectorMetadata]:
        with self._lock:
            return list(self._metadata.values())

    def get_default_config(self, connector_type: str) -> Optional[Dict[str, Any]]:
        factory = self._factories.get(connector_type)
        return factory.create_default_config() if factory else None

    def get_config_schema(self, connector_type: str) -> Optional[Dict[str, Any]]:
        factory = self._factories.get(connector_type)
        return _json_schema(factory) if factory else None

    def validate_config(self, connector_type: str, config: Any) -> ConfigValidationResult:
        factory = self._factories.get(connector_type)
        if factory is None:
            return ConfigValidationResult(valid=False, errors=[f"Unknown connector type: {connector_type}"])
        return factory.validate_config(config)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "totalRegistered": self.metrics.total_registered,
                "totalCreated": self.metrics.total_created,
                "totalErrors": self.metrics.total_errors,
                "connectorsActive": len(self._active),
                "connectorsRegistered": len(self._factories),
                "pluginsLoaded": len(self._plugins),
                "lastActivity": self.metrics.last_activity.isoformat(),
            }

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "initialized": self._initialized,
                "connectorTypes": len(self._factories),
                "activeConnectors": len(self._active),
                "pluginsLoaded": len(self._plugins),
                "metrics": self.get_metrics(),
                "lastActivity": self.metrics.last_activity.isoformat(),
                "defaultTimeoutMs": self.config.default_timeout_ms,
            }


__all__ = [
    "ConnectorMetadata",
    "ConnectorRegistry",
    "DEFAULT_MAX_IDLE_MS",
    "PLUGIN_ENTRY_POINT_GROUP",
    "PluginLoadResult",
    "RegistryConfig",
    "RegistryEvents",
    "RegistryMetrics",
    "ShutdownReport",
    "load_plugin_manifest",
    "resolve_reference",
]
