"""Registry construction with the built-in connector factories."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .config import CredentialsProvider, SecretsCredentialsProvider
from .connectors.document import MongoConnectorFactory
from .connectors.rest import RESTConnectorFactory
from .connectors.sql import PostgresConnectorFactory, SQLiteConnectorFactory, SupabaseConnectorFactory
from .core.logging import get_logger
from .core.registry import ConnectorMetadata, ConnectorRegistry, RegistryConfig, RegistryEvents

LOGGER = get_logger(__name__)

BUILTIN_METADATA: Dict[str, Dict[str, Any]] = {
    "postgres": {
        "capabilities": [
            "read",
            "write",
            "schema_introspection",
            "transactions",
            "bulk_operations",
            "query_building",
            "connection_pooling",
            "indexes",
            "constraints",
            "foreign_keys",
            "sequences",
        ],
        "databaseType": "postgres",
        "defaultPort": 5432,
        "features": {"jsonb": True, "uuid": True, "arrays": True, "enums": True, "fullTextSearch": True},
    },
    "sqlite": {
        "capabilities": ["read", "write", "schema_introspection", "transactions", "bulk_operations", "query_building"],
        "databaseType": "sqlite",
    },
    "supabase": {
        "capabilities": [
            "read",
            "write",
            "schema_introspection",
            "transactions",
            "bulk_operations",
            "query_building",
            "connection_pooling",
            "realtime",
            "row_level_security",
            "rest_api",
            "auth",
        ],
        "databaseType": "supabase",
        "defaultPort": 5432,
        "features": {"realtimeSubscriptions": True, "rowLevelSecurity": True, "restApi": True},
    },
    "mongodb": {"databaseType": "document", "defaultPort": 27017},
    "rest": {"databaseType": "rest"},
}


def _default_events() -> RegistryEvents:
    def registered(metadata: ConnectorMetadata) -> None:
        LOGGER.debug("Connector available", extra={"type": metadata.type, "version": metadata.version})

    def failed(connector_type: str, error: Exception) -> None:
        LOGGER.error("Connector error", extra={"type": connector_type, "error": str(error)})

    return RegistryEvents(on_connector_registered=registered, on_connector_error=failed)


def initialize_connectors(
    credentials_provider: Optional[CredentialsProvider] = None,
    config: Optional[RegistryConfig] = None,
    *,
    events: Optional[RegistryEvents] = None,
) -> ConnectorRegistry:
    """
    Build an initialised registry holding the postgres, sqlite, supabase,
    mongodb and rest factories.

    Parameters
    ----------
    credentials_provider:
        Collaborator handed to every factory; defaults to the TOML secrets file.
    config:
        Registry options; plugin manifests listed here load before the
        built-ins are registered.
    events:
        Registry callbacks, replacing the default logging listeners.
    """

    provider = credentials_provider if credentials_provider is not None else SecretsCredentialsProvider()
    registry = ConnectorRegistry(config or RegistryConfig(default_timeout_ms=60000, max_connectors=200))
    registry.initialize(events or _default_events())
    for factory in (
        PostgresConnectorFactory(credentials_provider=provider),
        SQLiteConnectorFactory(credentials_provider=provider),
        SupabaseConnectorFactory(credentials_provider=provider),
        MongoConnectorFactory(credentials_provider=provider),
        RESTConnectorFactory(credentials_provider=provider),
    ):
        if registry.has_connector(factory.type):
            LOGGER.warning("Built-in connector overridden by plugin", extra={"type": factory.type})
            continue
        registry.register_connector(factory, dict(BUILTIN_METADATA.get(factory.type, {})))
    LOGGER.info(
        "Connector registry ready",
        extra={"connectors": ",".join(registry.get_available_connectors()), "count": len(registry.get_available_connectors())},
    )
    return registry


__all__ = ["BUILTIN_METADATA", "initialize_connectors"]
