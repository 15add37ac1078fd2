"""Document connectors: sampled schema inference, change subscriptions and the MongoDB backend."""

from .backend import DocumentBackend, DocumentChange, DocumentQuery, WatchHandle, WriteOutcome
from .config import (
    DocumentConnectorConfig,
    DocumentQueryConfig,
    IndexingConfig,
    MongoConnectorConfig,
    MongoCredentials,
    RealTimeConfig,
    SchemaSamplingConfig,
    document_config_rules,
    mongo_config_rules,
)
from .connector import DOCUMENT_CAPABILITIES, DocumentConnector, MongoConnector, RealTimeSubscription
from .factory import MongoConnectorFactory
from .sampler import SamplingResult, SchemaSampler, TypeInconsistency, infer_document_type

__all__ = [
    "DOCUMENT_CAPABILITIES",
    "DocumentBackend",
    "DocumentChange",
    "DocumentConnector",
    "DocumentConnectorConfig",
    "DocumentQuery",
    "DocumentQueryConfig",
    "IndexingConfig",
    "MongoConnector",
    "MongoConnectorConfig",
    "MongoConnectorFactory",
    "MongoCredentials",
    "RealTimeConfig",
    "RealTimeSubscription",
    "SamplingResult",
    "SchemaSampler",
    "SchemaSamplingConfig",
    "TypeInconsistency",
    "WatchHandle",
    "WriteOutcome",
    "document_config_rules",
    "infer_document_type",
    "mongo_config_rules",
]
