"""Service layer shared by host applications and the CLI."""

from .integration import ConnectionTestReport, ConnectorServices, SchemaSnapshot, SnapshotSink

__all__ = ["ConnectionTestReport", "ConnectorServices", "SchemaSnapshot", "SnapshotSink"]
