"""Factories for the SQL connectors."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel

from ...core.errors import ConnectorError
from ...core.logging import get_logger
from ..base import (
    ConfigTestResult,
    ConfigValidationResult,
    Stopwatch,
    collect_config_errors,
    parse_config,
)
from .config import (
    PostgresConnectorConfig,
    PostgresCredentials,
    SQLConnectorConfig,
    SQLiteConnectorConfig,
    config_payload,
    postgres_config_rules,
)
from .connector import SQL_CAPABILITIES, PostgresConnector, SQLConnector, SQLiteConnector
from .supabase import (
    SUPABASE_CAPABILITIES,
    SupabaseConnector,
    SupabaseConnectorConfig,
    SupabaseCredentials,
    supabase_config_rules,
    supabase_credentials_rules,
)


class SQLConnectorFactory:
    """
    Factory for :class:`SQLConnector` over an arbitrary SQLAlchemy URL.

    Parameters
    ----------
    credentials_provider:
        Injected into every connector the factory creates.
    connector_options:
        Extra keyword arguments forwarded to the connector constructor
        (``engine_factory``, ``sleep``, ``conversion_config``...).
    """

    type = "sql"
    name = "SQL Database"
    description = "Connect to any SQLAlchemy-supported database with inspector-based schema introspection"
    version = "1.0.0"
    author = "connector-sdk"
    supported_versions: List[str] = ["*"]
    dependencies: List[str] = ["SQLAlchemy"]
    capabilities: List[str] = list(SQL_CAPABILITIES)
    config_model: Type[BaseModel] = SQLConnectorConfig
    connector_class: Type[Any] = SQLConnector

    def __init__(self, *, credentials_provider: Any = None, connector_options: Optional[Mapping[str, Any]] = None) -> None:
        self.credentials_provider = credentials_provider
        self.connector_options = dict(connector_options or {})
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def _rules(self, payload: Mapping[str, Any]) -> List[str]:
        return []

    def validate_config(self, config: Any) -> ConfigValidationResult:
        payload = config_payload(config)
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(self._rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        if not credentials.get("url") and not credentials.get("connection_string") and not credentials.get("connectionString"):
            return ConfigValidationResult(valid=False, errors=["A connection URL must be provided"])
        return ConfigValidationResult(valid=True)

    def create_default_config(self) -> Dict[str, Any]:
        return self.config_model().model_dump(mode="json", by_alias=True, exclude_none=True)

    def create(self, config: Any) -> SQLConnector:
        parsed = parse_config(self.config_model, config, f"Invalid {self.type} configuration")
        return self.connector_class(parsed, credentials_provider=self.credentials_provider, **self.connector_options)

    def _warnings(self, config: Any) -> List[str]:
        return []

    def test_config(self, config: Any) -> ConfigTestResult:
        """Connect a throwaway connector, run a test query and disconnect."""

        validation = self.validate_config(config)
        if not validation.valid:
            return ConfigTestResult(valid=False, errors=validation.errors)
        parsed = parse_config(self.config_model, config_payload(config))
        warnings = self._warnings(parsed)
        errors: List[str] = []
        watch = Stopwatch()
        connector = self.create(parsed)
        try:
            connector.connect(parsed)
            result = connector.test_query()
            if not result.success and result.error is not None:
                errors.append(result.error.message)
        except ConnectorError as exc:
            errors.append(exc.message)
        finally:
            connector.cleanup()
        self.logger.info("Configuration tested", extra={"type": self.type, "status": "valid" if not errors else "invalid"})
        return ConfigTestResult(valid=not errors, errors=errors, warnings=warnings, latency_ms=watch.elapsed_ms)

    def get_supported_features(self) -> Dict[str, bool]:
        return {
            "schemas": True,
            "tables": True,
            "views": True,
            "functions": False,
            "procedures": False,
            "triggers": False,
            "indexes": True,
            "constraints": True,
            "sequences": False,
            "extensions": False,
            "transactions": True,
            "savepoints": True,
            "streaming": False,
            "realtime": False,
            "backup": False,
            "restore": False,
        }

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        return {"sqlite": {"type": self.type, "name": "local", "url": "sqlite:///./local.db"}}


class PostgresConnectorFactory(SQLConnectorFactory):
    type = "postgres"
    name = "PostgreSQL Database"
    description = "Connect to PostgreSQL databases with full schema introspection and CRUD operations"
    supported_versions = ["12", "13", "14", "15", "16", "17"]
    dependencies = ["SQLAlchemy", "psycopg"]
    config_model = PostgresConnectorConfig
    connector_class = PostgresConnector

    def _rules(self, payload: Mapping[str, Any]) -> List[str]:
        return postgres_config_rules(payload)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        _, errors = collect_config_errors(PostgresCredentials, credentials)
        if errors:
            return ConfigValidationResult(valid=False, errors=errors)
        has_connection_string = bool(credentials.get("connection_string") or credentials.get("connectionString"))
        if not has_connection_string and not (credentials.get("user") and credentials.get("password")):
            return ConfigValidationResult(valid=False, errors=["Either connectionString or user/password must be provided"])
        return ConfigValidationResult(valid=True)

    def _warnings(self, config: PostgresConnectorConfig) -> List[str]:
        warnings = []
        if config.pool_config.max > 20:
            warnings.append("High connection pool max size may impact database performance")
        if not config.ssl_config.enabled and config.host not in ("localhost", "127.0.0.1", "::1"):
            warnings.append("SSL is disabled for remote connection - consider enabling for security")
        return warnings

    def get_supported_features(self) -> Dict[str, bool]:
        features = super().get_supported_features()
        features.update(functions=True, procedures=True, triggers=True, sequences=True, extensions=True)
        return features

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        return {
            "development": {
                "type": "postgres",
                "name": "development",
                "host": "localhost",
                "port": 5432,
                "database": "myapp_dev",
                "credentialsSecretId": "postgres-dev",
                "poolConfig": {"min": 1, "max": 5},
                "sslConfig": {"enabled": False},
            },
            "production": {
                "type": "postgres",
                "name": "production",
                "host": "prod-db.example.com",
                "port": 5432,
                "database": "myapp_prod",
                "credentialsSecretId": "postgres-prod",
                "poolConfig": {"min": 5, "max": 20},
                "sslConfig": {"enabled": True, "mode": "require"},
                "queryTimeout": 10000,
            },
            "highPerformance": {
                "type": "postgres",
                "name": "high-performance",
                "host": "perf-db.example.com",
                "port": 5432,
                "database": "analytics",
                "credentialsSecretId": "postgres-analytics",
                "poolConfig": {"min": 10, "max": 50, "idleTimeoutMs": 60000},
                "sslConfig": {"enabled": True, "mode": "require"},
                "queryTimeout": 5000,
            },
        }


class SQLiteConnectorFactory(SQLConnectorFactory):
    type = "sqlite"
    name = "SQLite Database"
    description = "Embedded SQLite databases stored in a file or in memory"
    supported_versions = ["3"]
    dependencies = ["SQLAlchemy"]
    config_model = SQLiteConnectorConfig
    connector_class = SQLiteConnector

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        return ConfigValidationResult(valid=True)

    def get_supported_features(self) -> Dict[str, bool]:
        features = super().get_supported_features()
        features.update(schemas=False)
        return features

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        return {
            "memory": {"type": "sqlite", "name": "scratch", "database": ":memory:"},
            "file": {"type": "sqlite", "name": "local", "database": "./data/app.db", "readOnly": False},
        }


class SupabaseConnectorFactory(PostgresConnectorFactory):
    type = "supabase"
    name = "Supabase Database"
    description = "Connect to Supabase PostgreSQL databases with real-time features, RLS, and REST API support"
    supported_versions = ["15", "16", "17"]
    dependencies = ["SQLAlchemy", "psycopg", "httpx"]
    capabilities = list(SUPABASE_CAPABILITIES)
    config_model = SupabaseConnectorConfig
    connector_class = SupabaseConnector

    def _rules(self, payload: Mapping[str, Any]) -> List[str]:
        return supabase_config_rules(payload)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        _, errors = collect_config_errors(SupabaseCredentials, credentials)
        errors.extend(supabase_credentials_rules(credentials))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def create_default_config(self) -> Dict[str, Any]:
        return self.config_model(host="localhost", port=5432, database="postgres").model_dump(
            mode="json", by_alias=True, exclude_none=True
        )

    def _credentials(self, config: SupabaseConnectorConfig) -> Dict[str, Any]:
        if not config.credentials_secret_id or self.credentials_provider is None:
            return {}
        result = self.credentials_provider.get_credentials(config.credentials_secret_id, accessed_by=f"factory:{self.type}")
        return dict(result.credentials or {}) if result.success else {}

    def _warnings(self, config: SupabaseConnectorConfig) -> List[str]:
        credentials = self._credentials(config)
        service_role = credentials.get("serviceRoleKey") or credentials.get("service_role_key")
        warnings = []
        if config.realtime_config.enabled and not service_role:
            warnings.append("Real-time features may be limited without service role key")
        if not config.rls_config.enforce_rls and not service_role:
            warnings.append("RLS is disabled but no service role key provided - data access may be limited")
        if config.pool_config.max > 10:
            warnings.append("High connection pool max size - Supabase has connection limits")
        if not (credentials.get("host") and credentials.get("user") and credentials.get("password")):
            warnings.append("Direct SQL connection not available, using REST API only")
        return warnings

    def get_supported_features(self) -> Dict[str, bool]:
        features = super().get_supported_features()
        features.update(
            procedures=False,
            extensions=False,
            savepoints=False,
            realtime=True,
            rowLevelSecurity=True,
            restApi=True,
            edgeFunctions=True,
            storage=True,
            auth=True,
        )
        return features

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        base = {"type": "supabase", "supabaseUrl": "https://your-project-ref-0000000000.supabase.co", "database": "postgres"}
        return {
            "development": {
                **base,
                "name": "development",
                "credentialsSecretId": "supabase-dev",
                "poolConfig": {"min": 1, "max": 3},
                "realtimeConfig": {"enabled": True},
                "features": {"enableRealtime": True, "enableAuth": True},
            },
            "production": {
                **base,
                "name": "production",
                "credentialsSecretId": "supabase-prod",
                "poolConfig": {"min": 2, "max": 10},
                "rlsConfig": {"enforceRLS": True, "bypassRLSForService": True},
                "features": {"enableAuth": True, "enableStorage": True},
                "healthCheck": {"interval": 30000},
            },
            "apiOnly": {
                **base,
                "name": "api-only",
                "credentialsSecretId": "supabase-anon",
                "poolConfig": {"min": 1, "max": 5},
                "features": {"enableAuth": True},
            },
            "realtime": {
                **base,
                "name": "realtime",
                "credentialsSecretId": "supabase-realtime",
                "realtimeConfig": {"enabled": True, "channels": ["public:*"], "enablePresence": True, "enableBroadcast": True},
                "features": {"enableRealtime": True},
            },
        }


__all__ = ["PostgresConnectorFactory", "SQLConnectorFactory", "SQLiteConnectorFactory", "SupabaseConnectorFactory"]
