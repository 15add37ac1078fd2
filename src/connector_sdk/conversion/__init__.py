"""
Type conversion engine: canonical fields → pydantic validators, model sets per
table/collection/resource, and reverse exports (DDL, TypeScript declarations).
"""

from .config import DEFAULT_CONVERSION_CONFIG, TypeConversionConfig
from .exports import (
    column_to_typescript_type,
    database_type_to_sql,
    deserialize_value,
    escape_literal,
    loses_precision,
    quote_identifier,
    serialize_value,
    table_to_create_statement,
    table_to_type_declaration,
)
from .schemas import (
    DataValidationResult,
    ModelSet,
    TypeConverter,
    collection_to_schemas,
    resource_to_schemas,
    table_to_schemas,
    validate_collection_data,
    validate_resource_data,
    validate_table_data,
)
from .validators import build_model, database_field_to_validator, field_base_type, format_pydantic_errors

__all__ = [
    "DEFAULT_CONVERSION_CONFIG",
    "DataValidationResult",
    "ModelSet",
    "TypeConversionConfig",
    "TypeConverter",
    "build_model",
    "collection_to_schemas",
    "column_to_typescript_type",
    "database_field_to_validator",
    "database_type_to_sql",
    "deserialize_value",
    "escape_literal",
    "field_base_type",
    "format_pydantic_errors",
    "loses_precision",
    "quote_identifier",
    "resource_to_schemas",
    "serialize_value",
    "table_to_create_statement",
    "table_to_schemas",
    "table_to_type_declaration",
    "validate_collection_data",
    "validate_resource_data",
    "validate_table_data",
]
