"""Schema comparison and DDL diff generation."""

from .diff import (
    DocumentSchemaComparison,
    FieldChange,
    compare_document_schemas,
    compare_rest_schemas,
    compare_schemas,
    compare_tables,
    describe_field_changes,
    generate_schema_diff,
)

__all__ = [
    "DocumentSchemaComparison",
    "FieldChange",
    "compare_document_schemas",
    "compare_rest_schemas",
    "compare_schemas",
    "compare_tables",
    "describe_field_changes",
    "generate_schema_diff",
]
