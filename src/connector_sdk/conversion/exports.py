"""
Reverse exports: canonical columns → DDL, TypeScript declarations and wire values.

Everything here is a pure function of the canonical schema objects, so the
CLI and the diff generator can use it without a live connection.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
from uuid import UUID

from ..core.schema import ColumnDefinition, DatabaseType, TableDefinition
from .config import DEFAULT_CONVERSION_CONFIG, TypeConversionConfig

_SIMPLE_SQL_TYPES = {
    DatabaseType.INTEGER: "INTEGER",
    DatabaseType.BIGINT: "BIGINT",
    DatabaseType.REAL: "REAL",
    DatabaseType.DOUBLE: "DOUBLE PRECISION",
    DatabaseType.FLOAT: "FLOAT",
    DatabaseType.SERIAL: "SERIAL",
    DatabaseType.BIGSERIAL: "BIGSERIAL",
    DatabaseType.TEXT: "TEXT",
    DatabaseType.UUID: "UUID",
    DatabaseType.DATE: "DATE",
    DatabaseType.TIME: "TIME",
    DatabaseType.TIMESTAMP: "TIMESTAMP",
    DatabaseType.TIMESTAMPTZ: "TIMESTAMPTZ",
    DatabaseType.INTERVAL: "INTERVAL",
    DatabaseType.BOOLEAN: "BOOLEAN",
    DatabaseType.JSON: "JSON",
    DatabaseType.JSONB: "JSONB",
    DatabaseType.BYTEA: "BYTEA",
    DatabaseType.BLOB: "BLOB",
}

_TS_NUMBER = {
    DatabaseType.INTEGER,
    DatabaseType.BIGINT,
    DatabaseType.DECIMAL,
    DatabaseType.NUMERIC,
    DatabaseType.REAL,
    DatabaseType.DOUBLE,
    DatabaseType.FLOAT,
    DatabaseType.SERIAL,
    DatabaseType.BIGSERIAL,
}
_TS_STRING = {
    DatabaseType.TEXT,
    DatabaseType.VARCHAR,
    DatabaseType.CHAR,
    DatabaseType.UUID,
    DatabaseType.TIME,
    DatabaseType.INTERVAL,
}
_TS_DATE = {DatabaseType.DATE, DatabaseType.TIMESTAMP, DatabaseType.TIMESTAMPTZ}


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def database_type_to_sql(column: ColumnDefinition) -> str:
    """Return the DDL type fragment for ``column``."""

    kind = column.type
    if kind in _SIMPLE_SQL_TYPES:
        return _SIMPLE_SQL_TYPES[kind]
    if kind in (DatabaseType.DECIMAL, DatabaseType.NUMERIC):
        if column.precision and column.scale is not None:
            return f"DECIMAL({column.precision}, {column.scale})"
        if column.precision:
            return f"DECIMAL({column.precision})"
        return "DECIMAL"
    if kind is DatabaseType.VARCHAR:
        return f"VARCHAR({column.max_length})" if column.max_length else "VARCHAR"
    if kind is DatabaseType.CHAR:
        return f"CHAR({column.max_length})" if column.max_length else "CHAR"
    if kind is DatabaseType.ARRAY:
        if column.array_element_type is not None and column.array_element_type is not DatabaseType.ARRAY:
            element = ColumnDefinition(name=column.name, type=column.array_element_type)
            return f"{database_type_to_sql(element)}[]"
        return "TEXT[]"
    if kind is DatabaseType.ENUM:
        if column.enum_values:
            values = ", ".join(escape_literal(value) for value in column.enum_values)
            return f"ENUM({values})"
        return "TEXT"
    return "TEXT"


def escape_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def _default_clause(value: Any) -> str:
    if isinstance(value, str):
        # introspected defaults are already SQL expressions
        return value
    return escape_literal(value)


def column_definition_sql(column: ColumnDefinition, escape: Callable[[str], str] = quote_identifier) -> str:
    definition = f"{escape(column.name)} {column.original_type or database_type_to_sql(column)}"
    if not column.nullable:
        definition += " NOT NULL"
    if column.default_value is not None:
        definition += f" DEFAULT {_default_clause(column.default_value)}"
    return definition


def table_to_create_statement(table: TableDefinition, escape: Callable[[str], str] = quote_identifier) -> str:
    """Render ``CREATE TABLE`` for ``table`` with NOT NULL, DEFAULT and PRIMARY KEY clauses."""

    lines = [column_definition_sql(column, escape) for column in table.columns]
    if table.primary_key:
        lines.append(f"PRIMARY KEY ({', '.join(escape(name) for name in table.primary_key)})")
    body = ",\n  ".join(lines)
    return f"CREATE TABLE {escape(table.name)} (\n  {body}\n);"


def pascal_case(value: str) -> str:
    parts = [part for part in re.split(r"[_\-\s]+", value) if part]
    return "".join(part[:1].upper() + part[1:] for part in parts)


def column_to_typescript_type(column: ColumnDefinition) -> str:
    kind = column.type
    if kind in _TS_NUMBER:
        base = "number"
    elif kind in _TS_STRING:
        base = "string"
    elif kind in _TS_DATE:
        base = "Date"
    elif kind is DatabaseType.BOOLEAN:
        base = "boolean"
    elif kind in (DatabaseType.BYTEA, DatabaseType.BLOB):
        base = "Buffer"
    elif kind is DatabaseType.ARRAY:
        base = "any[]"
    elif kind is DatabaseType.ENUM:
        base = " | ".join(f"'{value}'" for value in column.enum_values) if column.enum_values else "string"
    else:
        base = "any"
    return f"{base} | null" if column.nullable else base


def table_to_type_declaration(table: TableDefinition) -> str:
    """Render a TypeScript interface named after the table in PascalCase."""

    properties = []
    for column in table.columns:
        optional = "?" if column.nullable or column.default_value is not None else ""
        properties.append(f"  {column.name}{optional}: {column_to_typescript_type(column)};")
    return f"export interface {pascal_case(table.name)} {{\n" + "\n".join(properties) + "\n}"


def loses_precision(value: Any) -> bool:
    """True when ``value`` cannot survive a round trip through a binary float."""

    try:
        exact = Decimal(str(value))
        return Decimal(repr(float(exact))) != exact
    except (InvalidOperation, ValueError):
        return False


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == "true" or value in ("1", "t")
    return bool(value)


def _parse_temporal(value: Any, kind: DatabaseType) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0)
    if not isinstance(value, str):
        return value
    if kind is DatabaseType.DATE:
        return date.fromisoformat(value[:10])
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def deserialize_value(value: Any, column: ColumnDefinition, config: Optional[TypeConversionConfig] = None) -> Any:
    """Convert a raw backend value into its Python representation."""

    config = config or DEFAULT_CONVERSION_CONFIG
    if value is None:
        return None
    kind = column.type
    if kind in (DatabaseType.INTEGER, DatabaseType.SERIAL):
        return int(value)
    if kind in (DatabaseType.BIGINT, DatabaseType.BIGSERIAL):
        return str(value) if config.bigint_handling == "string" else int(value)
    if kind in (DatabaseType.DECIMAL, DatabaseType.NUMERIC):
        if config.decimal_handling == "decimal":
            return Decimal(str(value))
        if config.decimal_handling == "string":
            return str(value)
        return float(value)
    if kind in (DatabaseType.REAL, DatabaseType.DOUBLE, DatabaseType.FLOAT):
        return float(value)
    if kind in (DatabaseType.BOOLEAN, DatabaseType.CHECKBOX):
        return _parse_bool(value)
    if kind in (DatabaseType.DATE, DatabaseType.TIMESTAMP, DatabaseType.TIMESTAMPTZ):
        return _parse_temporal(value, kind)
    if kind in (DatabaseType.JSON, DatabaseType.JSONB):
        return json.loads(value) if isinstance(value, (str, bytes)) else value
    if kind in (DatabaseType.ARRAY, DatabaseType.MULTIPLE_SELECT, DatabaseType.MULTISELECT):
        return list(value) if isinstance(value, (list, tuple)) else [value]
    if kind in (DatabaseType.BYTEA, DatabaseType.BLOB):
        return bytes(value)
    if kind in (
        DatabaseType.UUID,
        DatabaseType.TEXT,
        DatabaseType.VARCHAR,
        DatabaseType.CHAR,
        DatabaseType.TIME,
        DatabaseType.INTERVAL,
        DatabaseType.ENUM,
    ):
        return str(value)
    return value


def serialize_value(value: Any, column: ColumnDefinition, config: Optional[TypeConversionConfig] = None) -> Any:
    """Convert a Python value into what the backend driver expects for ``column``."""

    config = config or DEFAULT_CONVERSION_CONFIG
    if value is None:
        return None
    kind = column.type
    if kind in (DatabaseType.JSON, DatabaseType.JSONB):
        return value if isinstance(value, str) else json.dumps(value, default=str)
    if kind in (DatabaseType.DATE, DatabaseType.TIMESTAMP, DatabaseType.TIMESTAMPTZ, DatabaseType.TIME):
        if config.datetime_format == "epoch" and isinstance(value, datetime):
            return int(value.timestamp() * 1000)
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return value
    if kind in (DatabaseType.BOOLEAN, DatabaseType.CHECKBOX):
        return _parse_bool(value)
    if kind is DatabaseType.ARRAY:
        return list(value) if isinstance(value, (list, tuple)) else [value]
    if kind in (DatabaseType.DECIMAL, DatabaseType.NUMERIC) and isinstance(value, Decimal):
        return str(value) if config.decimal_handling == "string" else value
    if isinstance(value, UUID):
        return str(value)
    return value
