"""Configuration models for document (schema-less) connectors."""

from __future__ import annotations

from typing import Any, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..base import ConfigModel, ConnectorConfig
from ..sql.config import _as_int, _pick, _section


class SchemaSamplingConfig(ConfigModel):
    """
    How collection schemas are inferred.

    ``min_field_prevalence`` is the fraction of sampled documents a field must
    appear in to be reported; cached results are reused for
    ``refresh_interval_ms`` when ``cache_schema`` is set.
    """

    enabled: bool = True
    sample_size: int = Field(100, ge=1, le=10000)
    max_depth: int = Field(5, ge=1, le=32)
    min_field_prevalence: float = Field(0.1, ge=0.0, le=1.0)
    auto_refresh: bool = False
    refresh_interval_ms: int = Field(3600000, ge=0)
    cache_schema: bool = True


class DocumentQueryConfig(ConfigModel):
    default_limit: int = Field(100, ge=1)
    max_limit: int = Field(1000, ge=1)
    timeout: int = Field(30000, ge=100, le=3600000)
    enable_real_time_updates: bool = False
    enable_aggregation: bool = True
    enable_transactions: bool = False


class RealTimeConfig(ConfigModel):
    enabled: bool = False
    max_listeners: int = Field(100, ge=1, le=10000)
    heartbeat_interval_ms: int = Field(30000, ge=1000)
    connection_timeout_ms: int = Field(10000, ge=1000)
    reconnect_delay_ms: int = Field(1000, ge=0)
    max_reconnect_attempts: int = Field(5, ge=0, le=100)


class IndexingConfig(ConfigModel):
    auto_create_indexes: bool = False
    suggest_indexes: bool = True
    max_compound_index_fields: int = Field(5, ge=1, le=32)


class DocumentConnectorConfig(ConnectorConfig):
    """Options shared by every document backend."""

    type: str = "document"
    name: str = "document"
    id_field: str = Field("_id", min_length=1)
    schema_sampling: SchemaSamplingConfig = Field(default_factory=SchemaSamplingConfig)
    query_config: DocumentQueryConfig = Field(default_factory=DocumentQueryConfig)
    real_time: RealTimeConfig = Field(default_factory=RealTimeConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)


class MongoConnectorConfig(DocumentConnectorConfig):
    type: str = "mongodb"
    name: str = "mongodb"
    host: str = Field("localhost", min_length=1, max_length=255)
    port: int = Field(27017, ge=1, le=65535)
    database: str = Field("test", min_length=1, max_length=63)
    connection_string: Optional[str] = None
    auth_source: Optional[str] = None
    replica_set: Optional[str] = None
    read_preference: Literal["primary", "primaryPreferred", "secondary", "secondaryPreferred", "nearest"] = "primary"
    server_selection_timeout_ms: int = Field(5000, ge=100, le=120000)


class MongoCredentials(BaseModel):
    """Shape of the secret resolved for a MongoDB connection."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    username: Optional[str] = Field(None, min_length=1, max_length=256)
    password: Optional[str] = Field(None, min_length=1, max_length=1000)
    connection_string: Optional[str] = None
    auth_source: Optional[str] = None


def document_config_rules(payload: Mapping[str, Any]) -> List[str]:
    """Cross-field rules for document configurations; every violation is returned."""

    errors: List[str] = []
    pool = _section(payload, "pool_config", "poolConfig")
    if _as_int(_pick(pool, "min"), 1) > _as_int(_pick(pool, "max"), 10):
        errors.append("Pool min size cannot be greater than max size")

    query = _section(payload, "query_config", "queryConfig")
    if _as_int(_pick(query, "default_limit", "defaultLimit"), 100) > _as_int(_pick(query, "max_limit", "maxLimit"), 1000):
        errors.append("Default limit cannot exceed max limit")

    sampling = _section(payload, "schema_sampling", "schemaSampling")
    if _pick(sampling, "auto_refresh", "autoRefresh") and _as_int(_pick(sampling, "refresh_interval_ms", "refreshIntervalMs"), 3600000) <= 0:
        errors.append("Refresh interval must be positive when auto refresh is enabled")
    return errors


def mongo_config_rules(payload: Mapping[str, Any]) -> List[str]:
    errors = document_config_rules(payload)
    connection_string = _pick(payload, "connection_string", "connectionString")
    if connection_string and not str(connection_string).startswith(("mongodb://", "mongodb+srv://")):
        errors.append("Connection string must start with mongodb:// or mongodb+srv://")
    if connection_string and _pick(payload, "replica_set", "replicaSet") and str(connection_string).startswith("mongodb+srv://"):
        errors.append("replicaSet cannot be combined with a mongodb+srv:// connection string")
    return errors


__all__ = [
    "DocumentConnectorConfig",
    "DocumentQueryConfig",
    "IndexingConfig",
    "MongoConnectorConfig",
    "MongoCredentials",
    "RealTimeConfig",
    "SchemaSamplingConfig",
    "document_config_rules",
    "mongo_config_rules",
]
