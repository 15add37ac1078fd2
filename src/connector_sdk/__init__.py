"""
Uniform connector SDK over SQL databases, Supabase projects, document stores
and REST APIs.

Build a registry with :func:`initialize_connectors`, then create connectors
through it::

    registry = initialize_connectors()
    connector = registry.create_connector("sqlite", {"type": "sqlite", "name": "local", "database": "app.db"})
    connector.connect()
    schema = connector.introspect_schema()

:class:`ConnectorServices` wraps the common create, connect, act and release
round trips (verification, schema snapshots, connection tests).
"""

from .bootstrap import initialize_connectors
from .config import CredentialsProvider, CredentialsResult, SecretsCredentialsProvider, StaticCredentialsProvider
from .core.errors import ConnectorError
from .core.registry import ConnectorMetadata, ConnectorRegistry, RegistryConfig, RegistryEvents
from .services import ConnectorServices, SchemaSnapshot

__version__ = "0.1.0"

__all__ = [
    "ConnectorError",
    "ConnectorMetadata",
    "ConnectorRegistry",
    "ConnectorServices",
    "CredentialsProvider",
    "CredentialsResult",
    "RegistryConfig",
    "RegistryEvents",
    "SchemaSnapshot",
    "SecretsCredentialsProvider",
    "StaticCredentialsProvider",
    "initialize_connectors",
    "__version__",
]
