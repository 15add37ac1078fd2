"""Factory for MongoDB document connectors."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel

from ...core.errors import ConnectorError
from ...core.logging import get_logger
from ..base import ConfigTestResult, ConfigValidationResult, Stopwatch, collect_config_errors, parse_config
from .config import MongoConnectorConfig, mongo_config_rules
from .connector import DOCUMENT_CAPABILITIES, MongoConnector


def _payload(config: Any) -> Dict[str, Any]:
    if isinstance(config, BaseModel):
        return config.model_dump()
    return dict(config or {})


class MongoConnectorFactory:
    type = "mongodb"
    name = "MongoDB"
    description = "Connect to MongoDB with sampled schema inference, aggregation and change streams"
    version = "1.0.0"
    author = "connector-sdk"
    supported_versions: List[str] = ["4.4", "5.0", "6.0", "7.0", "8.0"]
    dependencies: List[str] = ["pymongo"]
    capabilities: List[str] = list(DOCUMENT_CAPABILITIES)
    config_model = MongoConnectorConfig

    def __init__(self, *, credentials_provider: Any = None, connector_options: Optional[Mapping[str, Any]] = None) -> None:
        self.credentials_provider = credentials_provider
        self.connector_options = dict(connector_options or {})
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def validate_config(self, config: Any) -> ConfigValidationResult:
        payload = _payload(config)
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(mongo_config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        """A connection string, or a username with its password; empty means unauthenticated."""

        if credentials.get("connectionString") or credentials.get("connection_string"):
            value = str(credentials.get("connectionString") or credentials.get("connection_string"))
            if not value.startswith(("mongodb://", "mongodb+srv://")):
                return ConfigValidationResult(valid=False, errors=["Connection string must start with mongodb:// or mongodb+srv://"])
            return ConfigValidationResult(valid=True)
        username, password = credentials.get("username"), credentials.get("password")
        if bool(username) != bool(password):
            return ConfigValidationResult(valid=False, errors=["Username and password must be provided together"])
        return ConfigValidationResult(valid=True)

    def create_default_config(self) -> Dict[str, Any]:
        return self.config_model().model_dump(mode="json", by_alias=True, exclude_none=True)

    def create(self, config: Any) -> MongoConnector:
        parsed = parse_config(self.config_model, config, f"Invalid {self.type} configuration")
        return MongoConnector(parsed, credentials_provider=self.credentials_provider, **self.connector_options)

    def _warnings(self, config: MongoConnectorConfig) -> List[str]:
        warnings = []
        if not config.credentials_secret_id and not config.connection_string:
            warnings.append("No credentials configured - connecting without authentication")
        if config.ssl_config is None or not config.ssl_config.enabled:
            warnings.append("TLS is disabled - traffic is sent unencrypted")
        if config.real_time.enabled and not config.replica_set and not (config.connection_string or "").startswith("mongodb+srv://"):
            warnings.append("Change streams require a replica set or sharded cluster")
        if config.query_config.enable_transactions and not config.replica_set:
            warnings.append("Transactions require a replica set or sharded cluster")
        return warnings

    def test_config(self, config: Any) -> ConfigTestResult:
        validation = self.validate_config(config)
        if not validation.valid:
            return ConfigTestResult(valid=False, errors=validation.errors)
        parsed = parse_config(self.config_model, _payload(config))
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
            "schemas": False,
            "tables": True,
            "views": False,
            "indexes": True,
            "constraints": False,
            "transactions": True,
            "savepoints": False,
            "streaming": False,
            "realtime": True,
            "schemaSampling": True,
            "aggregation": True,
            "nestedQueries": True,
        }

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        return {
            "local": {
                "type": "mongodb",
                "name": "local-mongo",
                "host": "localhost",
                "port": 27017,
                "database": "app",
                "schemaSampling": {"sampleSize": 200, "maxDepth": 4},
            },
            "atlas": {
                "type": "mongodb",
                "name": "atlas",
                "database": "analytics",
                "credentialsSecretId": "atlas-uri",
                "sslConfig": {"enabled": True},
                "realTime": {"enabled": True, "maxListeners": 50},
                "queryConfig": {"enableTransactions": True, "maxLimit": 5000},
            },
        }


__all__ = ["MongoConnectorFactory"]
