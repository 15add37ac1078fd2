"""Configuration models for REST API connectors."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import Field, field_validator

from ...core.schema import DatabaseType
from ...resilience import BackoffStrategy
from ..base import ConfigModel, ConnectorConfig

DEFAULT_RETRYABLE_STATUS_CODES = [408, 429, 500, 502, 503, 504]


class AuthenticationConfig(ConfigModel):
    """
    How credentials are attached to outgoing requests.

    ``api_key`` reads ``apiKey`` (or ``key``) from the resolved credentials and
    sends it in the ``param_name`` header or query parameter; ``bearer`` reads
    ``token`` / ``accessToken``; ``basic`` reads ``username`` and ``password``;
    ``custom`` delegates to a callback given to the connector.
    """

    type: Literal["none", "api_key", "bearer", "basic", "custom"] = "none"
    location: Literal["header", "query"] = "header"
    param_name: str = Field("X-API-Key", min_length=1, max_length=128)
    header_prefix: str = ""


class RateLimitConfig(ConfigModel):
    requests_per_second: Optional[int] = Field(None, ge=1)
    requests_per_minute: Optional[int] = Field(None, ge=1)
    requests_per_hour: Optional[int] = Field(None, ge=1)
    requests_per_day: Optional[int] = Field(None, ge=1)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    max_retries: int = Field(3, ge=0, le=10)
    initial_delay_ms: int = Field(1000, ge=0, le=60000)
    max_delay_ms: int = Field(30000, ge=0, le=600000)
    jitter: bool = True


class RequestConfig(ConfigModel):
    timeout: int = Field(30000, ge=100, le=300000)
    retryable_status_codes: List[int] = Field(default_factory=lambda: list(DEFAULT_RETRYABLE_STATUS_CODES))
    content_type: str = "application/json"
    user_agent: str = "connector-sdk/1.0"
    custom_headers: Dict[str, str] = Field(default_factory=dict)


class PaginationConfig(ConfigModel):
    default_strategy: Literal["offset", "cursor", "page", "token"] = "offset"
    default_limit: int = Field(100, ge=1)
    max_limit: int = Field(1000, ge=1)
    param_names: Dict[str, str] = Field(default_factory=dict)

    def param(self, key: str) -> str:
        return self.param_names.get(key, key)


class ResponseTransform(ConfigModel):
    """Dotted paths used to reshape upstream envelopes (``data.items``, ``meta.total``...)."""

    data_path: Optional[str] = None
    meta_path: Optional[str] = None
    error_path: Optional[str] = None
    total_count_path: Optional[str] = None
    next_cursor_path: Optional[str] = None


class RESTFieldConfig(ConfigModel):
    name: str = Field(..., min_length=1)
    type: DatabaseType = DatabaseType.TEXT
    nullable: bool = True
    required: bool = False
    read_only: bool = False
    write_only: bool = False
    enum_values: Optional[List[str]] = None
    max_length: Optional[int] = Field(None, ge=1)
    format: Optional[str] = None
    description: Optional[str] = None


class RESTResourceConfig(ConfigModel):
    name: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)
    primary_key: str = "id"
    methods: List[str] = Field(default_factory=lambda: ["GET"])
    fields: List[RESTFieldConfig] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, value: List[str]) -> List[str]:
        allowed = {"GET", "POST", "PUT", "PATCH", "DELETE"}
        methods = [item.upper() for item in value]
        unknown = [item for item in methods if item not in allowed]
        if unknown:
            raise ValueError(f"Unsupported HTTP methods: {', '.join(unknown)}")
        return methods


class RESTConnectorConfig(ConnectorConfig):
    type: str = "rest"
    name: str = "rest"
    base_url: str = "https://api.example.com"
    api_version: Optional[str] = None
    authentication: AuthenticationConfig = Field(default_factory=AuthenticationConfig)
    rate_limiting: RateLimitConfig = Field(default_factory=RateLimitConfig)
    request_config: RequestConfig = Field(default_factory=RequestConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    response_transform: ResponseTransform = Field(default_factory=ResponseTransform)
    resources: List[RESTResourceConfig] = Field(default_factory=list)
    openapi_url: Optional[str] = None
    health_endpoint: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://")
        return value.rstrip("/")


def rest_config_rules(payload: Mapping[str, Any]) -> List[str]:
    """Cross-field checks complementing the field constraints above."""

    errors: List[str] = []
    pagination = payload.get("pagination") or {}
    if isinstance(pagination, Mapping):
        default_limit = pagination.get("default_limit", pagination.get("defaultLimit", 100))
        max_limit = pagination.get("max_limit", pagination.get("maxLimit", 1000))
        if isinstance(default_limit, int) and isinstance(max_limit, int) and default_limit > max_limit:
            errors.append("Pagination default limit cannot exceed max limit")

    limits = payload.get("rate_limiting", payload.get("rateLimiting")) or {}
    if isinstance(limits, Mapping):
        initial = limits.get("initial_delay_ms", limits.get("initialDelayMs", 1000))
        maximum = limits.get("max_delay_ms", limits.get("maxDelayMs", 30000))
        if isinstance(initial, int) and isinstance(maximum, int) and initial > maximum:
            errors.append("Initial retry delay cannot exceed max delay")

    seen = set()
    for resource in payload.get("resources") or []:
        name = resource.get("name") if isinstance(resource, Mapping) else getattr(resource, "name", None)
        if name in seen:
            errors.append(f"Duplicate resource name: {name}")
        seen.add(name)
    return errors


__all__ = [
    "AuthenticationConfig",
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "PaginationConfig",
    "RESTConnectorConfig",
    "RESTFieldConfig",
    "RESTResourceConfig",
    "RateLimitConfig",
    "RequestConfig",
    "ResponseTransform",
    "rest_config_rules",
]
