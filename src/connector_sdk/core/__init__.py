"""
Core building blocks: error taxonomy, canonical schema model and logging.

The registry lives in :mod:`connector_sdk.core.registry` and is imported from
there directly since it depends on the connector contract.
"""

from .errors import ConnectorError, format_error_response, get_status_code, is_retryable, wrap_database_error
from .logging import configure_logging, get_logger
from .schema import DatabaseType, load_schema, schema_from_dict, schema_to_dict, schema_version

__all__ = [
    "ConnectorError",
    "DatabaseType",
    "configure_logging",
    "format_error_response",
    "get_logger",
    "get_status_code",
    "is_retryable",
    "load_schema",
    "schema_from_dict",
    "schema_to_dict",
    "schema_version",
    "wrap_database_error",
]
