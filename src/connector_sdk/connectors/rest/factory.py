"""Factory for REST API connectors."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel

from ...core.errors import ConnectorError
from ...core.logging import get_logger
from ..base import ConfigTestResult, ConfigValidationResult, Stopwatch, collect_config_errors, parse_config
from .config import RESTConnectorConfig, rest_config_rules
from .connector import REST_CAPABILITIES, RESTConnector


def _payload(config: Any) -> Dict[str, Any]:
    if isinstance(config, BaseModel):
        return config.model_dump()
    return dict(config or {})


class RESTConnectorFactory:
    type = "rest"
    name = "REST API"
    description = "Connect to JSON REST APIs with rate limiting, retries, pagination and OpenAPI discovery"
    version = "1.0.0"
    author = "connector-sdk"
    supported_versions: List[str] = ["*"]
    dependencies: List[str] = ["httpx", "tenacity"]
    capabilities: List[str] = list(REST_CAPABILITIES)
    config_model = RESTConnectorConfig

    def __init__(self, *, credentials_provider: Any = None, connector_options: Optional[Mapping[str, Any]] = None) -> None:
        self.credentials_provider = credentials_provider
        self.connector_options = dict(connector_options or {})
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def validate_config(self, config: Any) -> ConfigValidationResult:
        payload = _payload(config)
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(rest_config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult:
        """Accept any credentials carrying a key, token or username/password pair."""

        if credentials.get("apiKey") or credentials.get("api_key") or credentials.get("key"):
            return ConfigValidationResult(valid=True)
        if credentials.get("token") or credentials.get("accessToken") or credentials.get("access_token"):
            return ConfigValidationResult(valid=True)
        if credentials.get("username") and credentials.get("password"):
            return ConfigValidationResult(valid=True)
        return ConfigValidationResult(valid=False, errors=["Credentials must provide an apiKey, a token or username/password"])

    def create_default_config(self) -> Dict[str, Any]:
        return self.config_model().model_dump(mode="json", by_alias=True, exclude_none=True)

    def create(self, config: Any) -> RESTConnector:
        parsed = parse_config(self.config_model, config, f"Invalid {self.type} configuration")
        return RESTConnector(parsed, credentials_provider=self.credentials_provider, **self.connector_options)

    def _warnings(self, config: RESTConnectorConfig) -> List[str]:
        warnings = []
        if config.base_url.startswith("http://"):
            warnings.append("Base URL uses plain HTTP - credentials are sent unencrypted")
        limits = config.rate_limiting
        if not any((limits.requests_per_second, limits.requests_per_minute, limits.requests_per_hour, limits.requests_per_day)):
            warnings.append("No rate limits configured - upstream throttling will surface as 429 retries")
        if not config.resources and not config.openapi_url:
            warnings.append("No resources configured and no OpenAPI document to discover them from")
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
            if parsed.health_endpoint:
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
            "indexes": False,
            "constraints": False,
            "transactions": False,
            "savepoints": False,
            "streaming": False,
            "realtime": False,
            "pagination": True,
            "rateLimiting": True,
            "openapi": True,
        }

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]:
        return {
            "apiKey": {
                "type": "rest",
                "name": "crm",
                "baseUrl": "https://api.example.com/v1",
                "credentialsSecretId": "crm-api",
                "authentication": {"type": "api_key", "location": "header", "paramName": "X-API-Key"},
                "rateLimiting": {"requestsPerSecond": 10, "maxRetries": 3},
                "resources": [
                    {"name": "contacts", "endpoint": "/contacts", "methods": ["GET", "POST", "PATCH", "DELETE"]},
                ],
                "healthEndpoint": "/health",
            },
            "openapi": {
                "type": "rest",
                "name": "petstore",
                "baseUrl": "https://petstore.example.com",
                "authentication": {"type": "bearer"},
                "credentialsSecretId": "petstore-token",
                "openapiUrl": "/openapi.json",
                "responseTransform": {"dataPath": "data", "totalCountPath": "meta.total"},
            },
        }


__all__ = ["RESTConnectorFactory"]
