"""Relational connectors: generic SQLAlchemy, PostgreSQL, SQLite and Supabase."""

from .builder import OnConflict, SQLQueryBuilder
from .config import (
    PostgresConnectorConfig,
    PostgresCredentials,
    SQLConnectorConfig,
    SQLiteConnectorConfig,
    postgres_config_rules,
)
from .connector import SQL_CAPABILITIES, PostgresConnector, SQLConnector, SQLiteConnector, SQLTransaction
from .dialects import GenericDialect, PostgresDialect, SQLDialect, SQLiteDialect, dialect_for, map_native_type
from .factory import PostgresConnectorFactory, SQLConnectorFactory, SQLiteConnectorFactory, SupabaseConnectorFactory
from .postgrest import PostgrestClient, PostgrestQuery
from .supabase import SupabaseConnector, SupabaseConnectorConfig, supabase_config_rules

__all__ = [
    "GenericDialect",
    "OnConflict",
    "PostgresConnector",
    "PostgresConnectorConfig",
    "PostgresConnectorFactory",
    "PostgresCredentials",
    "PostgresDialect",
    "PostgrestClient",
    "PostgrestQuery",
    "SQLConnector",
    "SQLConnectorConfig",
    "SQLConnectorFactory",
    "SQLDialect",
    "SQLQueryBuilder",
    "SQLTransaction",
    "SQL_CAPABILITIES",
    "SQLiteConnector",
    "SQLiteConnectorConfig",
    "SQLiteConnectorFactory",
    "SQLiteDialect",
    "SupabaseConnector",
    "SupabaseConnectorConfig",
    "SupabaseConnectorFactory",
    "dialect_for",
    "map_native_type",
    "postgres_config_rules",
    "supabase_config_rules",
]
