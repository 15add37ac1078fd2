"""
Connector implementations and the capability contract they share.

Backends live in subpackages (:mod:`.sql`, :mod:`.document`, :mod:`.rest`)
and are imported explicitly so optional drivers load only when used.
"""

from .base import (
    BuiltQuery,
    BulkOperationOptions,
    ConnectionEvents,
    ConnectionState,
    Connector,
    ConnectorConfig,
    ConnectorFactory,
    ConnectorPlugin,
    DataOperationOptions,
    FilterOptions,
    IntrospectionOptions,
    PaginationOptions,
    QueryContext,
    QueryResult,
)

__all__ = [
    "BuiltQuery",
    "BulkOperationOptions",
    "ConnectionEvents",
    "ConnectionState",
    "Connector",
    "ConnectorConfig",
    "ConnectorFactory",
    "ConnectorPlugin",
    "DataOperationOptions",
    "FilterOptions",
    "IntrospectionOptions",
    "PaginationOptions",
    "QueryContext",
    "QueryResult",
]
