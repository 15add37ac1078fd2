"""REST API connector: configuration, HTTP client, OpenAPI discovery and factory."""

from .client import PaginationState, RESTClient, RESTResponse, error_for_response, extract_path, parse_retry_after
from .config import (
    AuthenticationConfig,
    PaginationConfig,
    RateLimitConfig,
    RequestConfig,
    ResponseTransform,
    RESTConnectorConfig,
    RESTFieldConfig,
    RESTResourceConfig,
    rest_config_rules,
)
from .connector import REST_CAPABILITIES, RESTConnector
from .factory import RESTConnectorFactory
from .openapi import json_schema_type, resources_from_openapi

__all__ = [
    "AuthenticationConfig",
    "PaginationConfig",
    "PaginationState",
    "REST_CAPABILITIES",
    "RESTClient",
    "RESTConnector",
    "RESTConnectorConfig",
    "RESTConnectorFactory",
    "RESTFieldConfig",
    "RESTResourceConfig",
    "RESTResponse",
    "RateLimitConfig",
    "RequestConfig",
    "ResponseTransform",
    "error_for_response",
    "extract_path",
    "json_schema_type",
    "parse_retry_after",
    "resources_from_openapi",
    "rest_config_rules",
]
