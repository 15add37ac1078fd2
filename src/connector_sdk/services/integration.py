"""
Integration façade used by host applications and the CLI.

The helpers wrap the registry round trip that every caller repeats: create a
connector from a configuration, connect it, do one thing (verify, introspect,
test) and release it again. Schema snapshots are built here but never stored;
callers pass a ``sink`` when they want to persist them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from logging import LoggerAdapter
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..connectors.base import ConfigValidationResult, Connector, IntrospectionOptions, utcnow
from ..core.errors import ConnectorConnectionError, ConnectorError, ConnectorNotFoundError
from ..core.logging import get_logger
from ..core.registry import ConnectorRegistry
from ..core.schema import schema_to_dict, schema_version


@dataclass(slots=True)
class SchemaSnapshot:
    """Point-in-time copy of an introspected schema, keyed by its structural SHA-256."""

    connector_type: str
    name: str
    version: str
    schema: Any
    table_count: int
    view_count: int
    snapshot_type: str = "full"
    taken_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectorType": self.connector_type,
            "name": self.name,
            "version": self.version,
            "snapshotType": self.snapshot_type,
            "tableCount": self.table_count,
            "viewCount": self.view_count,
            "takenAt": self.taken_at.isoformat(),
            "schema": schema_to_dict(self.schema),
        }


@dataclass(slots=True)
class ConnectionTestReport:
    healthy: bool
    query_ok: bool
    latency_ms: Optional[float] = None
    status: str = "unhealthy"
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.healthy and self.query_ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "queryTest": self.query_ok,
            "latency": self.latency_ms,
            "serverInfo": self.status,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


SnapshotSink = Callable[[SchemaSnapshot], None]


def _count(schema: Any) -> tuple[int, int]:
    for attribute in ("tables", "collections", "resources"):
        items = getattr(schema, attribute, None)
        if items is not None:
            return len(items), len(getattr(schema, "views", None) or [])
    return 0, 0


def _name(config: Any) -> str:
    if isinstance(config, Mapping):
        return str(config.get("name") or "unnamed")
    return str(getattr(config, "name", None) or "unnamed")


@dataclass(slots=True)
class ConnectorServices:
    """High-level helpers over a :class:`ConnectorRegistry`."""

    registry: ConnectorRegistry
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def _require_type(self, connector_type: str) -> None:
        if not self.registry.has_connector(connector_type):
            raise ConnectorNotFoundError(connector_type, self.registry.get_available_connectors())

    def release(self, connector: Connector) -> None:
        """Disconnect ``connector`` and stop tracking it in the registry."""

        if not self.registry.release_connector(connector):
            connector.disconnect()
            connector.cleanup()

    def create_and_verify(self, connector_type: str, config: Any) -> Connector:
        """
        Create, connect and validate a connector.

        The connector is returned connected; the caller owns it and should
        hand it back through :meth:`release`. On failure it is released here
        and the error re-raised.
        """

        self._require_type(connector_type)
        connector = self.registry.create_connector(connector_type, config)
        try:
            connector.connect(config)
            validation = connector.validate_connection(config)
        except ConnectorError:
            self.release(connector)
            raise
        if not validation.is_valid:
            self.release(connector)
            if validation.error is not None:
                raise validation.error
            raise ConnectorConnectionError("Connection validation failed", metadata={"connectorType": connector_type})
        self.logger.info("Connector verified", extra={"type": connector_type, "latency": validation.latency_ms})
        return connector

    def introspect_snapshot(
        self,
        connector_type: str,
        config: Any,
        sink: Optional[SnapshotSink] = None,
        *,
        options: Optional[IntrospectionOptions] = None,
    ) -> SchemaSnapshot:
        """Introspect the source behind ``config`` and hand the snapshot to ``sink``."""

        self._require_type(connector_type)
        connector = self.registry.create_connector(connector_type, config)
        try:
            connector.connect(config)
            schema = connector.introspect_schema(options or IntrospectionOptions(include_views=True, include_indexes=True, include_constraints=True))
        finally:
            self.release(connector)
        tables, views = _count(schema)
        snapshot = SchemaSnapshot(
            connector_type=connector_type,
            name=_name(config),
            version=schema_version(schema),
            schema=schema,
            table_count=tables,
            view_count=views,
        )
        self.logger.info(
            "Schema snapshot taken",
            extra={"type": connector_type, "version": snapshot.version[:12], "tables": tables, "views": views},
        )
        if sink is not None:
            sink(snapshot)
        return snapshot

    def test_connection(self, connector_type: str, config: Any) -> ConnectionTestReport:
        """Connect, run the health check and a test query; failures are reported, not raised."""

        try:
            self._require_type(connector_type)
            connector = self.registry.create_connector(connector_type, config)
        except ConnectorError as exc:
            return ConnectionTestReport(healthy=False, query_ok=False, error=exc.message)
        try:
            connector.connect(config)
            health = connector.health_check()
            result = connector.test_query()
        except ConnectorError as exc:
            self.logger.warning("Connection test failed", extra={"type": connector_type, "error": exc.message})
            return ConnectionTestReport(healthy=False, query_ok=False, error=exc.message)
        finally:
            self.release(connector)
        error = None
        if not (health.healthy and result.success):
            error = result.error.message if result.error is not None else "Test failed"
        return ConnectionTestReport(
            healthy=health.healthy,
            query_ok=result.success,
            latency_ms=result.execution_time_ms,
            status=health.status,
            error=error,
        )

    def available_connector_types(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": item.type,
                "name": item.name,
                "version": item.version,
                "description": item.description,
                "capabilities": list(item.capabilities),
                "configSchema": item.config_schema,
                "defaultConfig": item.default_config,
            }
            for item in self.registry.get_all_connector_metadata()
        ]

    def validate_connector_configuration(
        self,
        connector_type: str,
        config: Any,
        credentials: Optional[Mapping[str, Any]] = None,
    ) -> ConfigValidationResult:
        """Validate ``config`` (and ``credentials`` when given) without creating a connector."""

        factory = self.registry.get_connector_factory(connector_type)
        if factory is None:
            return ConfigValidationResult(valid=False, errors=[f"Unknown connector type: {connector_type}"])
        validation = factory.validate_config(config)
        errors = list(validation.errors)
        if credentials is not None:
            errors.extend(factory.validate_credentials(credentials).errors)
        return ConfigValidationResult(valid=not errors, errors=errors)


__all__ = ["ConnectionTestReport", "ConnectorServices", "SchemaSnapshot", "SnapshotSink"]
