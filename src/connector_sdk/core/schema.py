"""
Canonical, backend-agnostic schema model.

Every connector normalises what it discovers into these dataclasses: tables,
columns, indexes and constraints for relational sources; collections and
sampled fields for document stores; resources and fields for REST APIs. A
single :class:`DatabaseType` enumeration bridges the three families so the
type conversion engine and the diffing routines only ever deal with one
vocabulary.

Instances are produced fresh by each introspection call and are treated as
immutable afterwards. :func:`schema_to_dict` / :func:`schema_from_dict` give a
JSON-safe representation; :func:`schema_version` derives a SHA-256 content hash
used to label snapshots.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import typing
from collections import abc
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar, Union


class DatabaseType(str, Enum):
    """Primitive types shared by relational, document and REST sources."""

    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    NUMERIC = "numeric"
    REAL = "real"
    DOUBLE = "double"
    FLOAT = "float"
    SERIAL = "serial"
    BIGSERIAL = "bigserial"

    TEXT = "text"
    VARCHAR = "varchar"
    CHAR = "char"
    UUID = "uuid"
    URL = "url"

    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    INTERVAL = "interval"

    BOOLEAN = "boolean"

    JSON = "json"
    JSONB = "jsonb"
    JSON_SCHEMA = "json_schema"

    BYTEA = "bytea"
    BLOB = "blob"
    ATTACHMENT = "attachment"

    ARRAY = "array"

    DOCUMENT = "document"
    MAP = "map"
    NESTED_OBJECT = "nested_object"

    REFERENCE = "reference"
    GEOPOINT = "geopoint"

    SINGLE_SELECT = "single_select"
    MULTIPLE_SELECT = "multiple_select"
    MULTISELECT = "multiselect"
    RATING = "rating"
    CHECKBOX = "checkbox"
    CURRENCY = "currency"

    ENUM = "enum"

    UNKNOWN = "unknown"


class ConstraintType(str, Enum):
    PRIMARY_KEY = "primary_key"
    FOREIGN_KEY = "foreign_key"
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    CHECK = "check"
    DEFAULT = "default"
    INDEX = "index"


class ReferenceAction(str, Enum):
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    SET_NULL = "SET_NULL"
    SET_DEFAULT = "SET_DEFAULT"
    NO_ACTION = "NO_ACTION"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ReferenceAction"]:
        if not value:
            return None
        normalised = value.strip().upper().replace(" ", "_")
        try:
            return cls(normalised)
        except ValueError:
            return None


class IndexType(str, Enum):
    BTREE = "btree"
    HASH = "hash"
    GIN = "gin"
    GIST = "gist"
    BRIN = "brin"
    SPGIST = "spgist"


class _Serialisable:
    """Adds ``to_dict`` / ``from_dict`` to the top-level schema containers."""

    __slots__ = ()

    def to_dict(self) -> Dict[str, Any]:
        return schema_to_dict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]):
        return schema_from_dict(cls, payload)


# Relational -----------------------------------------------------------------


@dataclass(slots=True)
class ForeignKeyReference:
    """Column-level foreign key pointer."""

    referenced_table: str
    referenced_column: str
    on_update: Optional[ReferenceAction] = None
    on_delete: Optional[ReferenceAction] = None


@dataclass(slots=True)
class ColumnDefinition:
    """
    Single column of a table or view.

    Attributes
    ----------
    name:
        Column name as reported by the backend.
    type:
        Canonical primitive type.
    nullable:
        Whether ``NULL`` is accepted.
    original_type:
        Backend-specific type text (``character varying``, ``_int4``...). Used
        when regenerating DDL for the same backend.
    enum_values:
        Allowed values when the column is an enumeration or select field.
    array_element_type:
        Element type for ``ARRAY`` columns when known.
    """

    name: str
    type: DatabaseType
    nullable: bool = True
    default_value: Any = None
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    enum_values: Optional[List[str]] = None
    array_dimensions: Optional[int] = None
    array_element_type: Optional[DatabaseType] = None
    comment: Optional[str] = None
    is_primary_key: bool = False
    is_unique: bool = False
    is_auto_increment: bool = False
    foreign_key: Optional[ForeignKeyReference] = None
    original_type: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IndexDefinition:
    name: str
    table_name: str
    columns: List[str]
    type: IndexType = IndexType.BTREE
    is_unique: bool = False
    is_primary_key: bool = False
    condition: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ConstraintDefinition:
    name: str
    type: ConstraintType
    table_name: str
    columns: List[str]
    referenced_table: Optional[str] = None
    referenced_columns: Optional[List[str]] = None
    on_update: Optional[ReferenceAction] = None
    on_delete: Optional[ReferenceAction] = None
    check_expression: Optional[str] = None
    default_value: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ForeignKeyDefinition:
    """Table-level foreign key relationship."""

    column_name: str
    referenced_table: str
    referenced_column: str
    constraint_name: str
    referenced_schema: Optional[str] = None
    on_update: Optional[ReferenceAction] = None
    on_delete: Optional[ReferenceAction] = None


@dataclass(slots=True)
class TableDefinition(_Serialisable):
    name: str
    schema: str = "public"
    columns: List[ColumnDefinition] = field(default_factory=list)
    indexes: List[IndexDefinition] = field(default_factory=list)
    constraints: List[ConstraintDefinition] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDefinition] = field(default_factory=list)
    comment: Optional[str] = None
    row_count: Optional[int] = None
    estimated_size: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def column(self, name: str) -> Optional[ColumnDefinition]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


@dataclass(slots=True)
class ViewDefinition:
    name: str
    schema: str = "public"
    definition: str = ""
    columns: List[ColumnDefinition] = field(default_factory=list)
    comment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RoutineParameter:
    name: str
    type: str
    direction: str = "IN"
    default_value: Any = None


@dataclass(slots=True)
class FunctionDefinition:
    """Stored function or procedure (``kind`` distinguishes them)."""

    name: str
    schema: str = "public"
    kind: str = "function"
    return_type: Optional[str] = None
    parameters: List[RoutineParameter] = field(default_factory=list)
    definition: str = ""
    language: str = "sql"
    comment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TriggerDefinition:
    name: str
    table_name: str
    schema: str = "public"
    event: str = "INSERT"
    timing: str = "AFTER"
    definition: str = ""
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SequenceDefinition:
    name: str
    schema: str = "public"
    start_value: int = 1
    increment: int = 1
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cycle: bool = False
    cache: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DatabaseSchema(_Serialisable):
    name: str
    tables: List[TableDefinition] = field(default_factory=list)
    views: List[ViewDefinition] = field(default_factory=list)
    functions: List[FunctionDefinition] = field(default_factory=list)
    triggers: List[TriggerDefinition] = field(default_factory=list)
    sequences: List[SequenceDefinition] = field(default_factory=list)
    version: Optional[str] = None
    charset: Optional[str] = None
    collation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def table(self, name: str, schema: Optional[str] = None) -> Optional[TableDefinition]:
        for table in self.tables:
            if table.name == name and (schema is None or table.schema == schema):
                return table
        return None

    @property
    def procedures(self) -> List[FunctionDefinition]:
        return [routine for routine in self.functions if routine.kind == "procedure"]


# Document -------------------------------------------------------------------


@dataclass(slots=True)
class DocumentFieldDefinition:
    """
    Field inferred from sampled documents.

    ``prevalence`` is the fraction of sampled documents containing the field;
    ``is_optional`` is ``True`` whenever it is below ``1.0``.
    """

    name: str
    type: DatabaseType
    nullable: bool = True
    field_path: Optional[str] = None
    nested_depth: int = 0
    is_optional: bool = False
    default_value: Any = None
    enum_values: Optional[List[str]] = None
    nested_fields: Optional[List["DocumentFieldDefinition"]] = None
    array_element_type: Optional[DatabaseType] = None
    prevalence: Optional[float] = None
    sample_values: List[Any] = field(default_factory=list)
    observed_types: List[DatabaseType] = field(default_factory=list)
    original_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CollectionIndex:
    name: str
    fields: List[str]
    type: str = "single"
    unique: bool = False
    sparse: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CollectionDefinition(_Serialisable):
    name: str
    database: str
    fields: List[DocumentFieldDefinition] = field(default_factory=list)
    indexes: List[CollectionIndex] = field(default_factory=list)
    document_count: Optional[int] = None
    sample_size: Optional[int] = None
    sampling_date: Optional[datetime] = None
    schema_version: Optional[str] = None
    comment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def field_named(self, name: str) -> Optional[DocumentFieldDefinition]:
        for item in self.fields:
            if item.name == name:
                return item
        return None


@dataclass(slots=True)
class DocumentSchema(_Serialisable):
    name: str
    collections: List[CollectionDefinition] = field(default_factory=list)
    type: str = "document"
    materialization_strategy: str = "sample"
    last_materialized: Optional[datetime] = None
    sample_document_count: Optional[int] = None
    version: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    features: Dict[str, bool] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


# REST -----------------------------------------------------------------------


@dataclass(slots=True)
class RESTFieldDefinition:
    name: str
    type: DatabaseType
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    enum_values: Optional[List[str]] = None
    required: bool = False
    read_only: bool = False
    write_only: bool = False
    format: Optional[str] = None
    pattern: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    description: Optional[str] = None
    example: Any = None
    default_value: Any = None
    reference_to: Optional[str] = None
    api_field_name: Optional[str] = None
    original_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RESTPagination:
    type: str = "offset"
    param_names: Dict[str, str] = field(default_factory=dict)
    max_limit: Optional[int] = None
    default_limit: Optional[int] = None


@dataclass(slots=True)
class RESTResourceDefinition(_Serialisable):
    name: str
    endpoint: str
    fields: List[RESTFieldDefinition] = field(default_factory=list)
    supported_methods: List[str] = field(default_factory=lambda: ["GET"])
    pagination: Optional[RESTPagination] = None
    primary_key: Optional[str] = None
    display_field: Optional[str] = None
    rate_limits: Dict[str, int] = field(default_factory=dict)
    comment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RESTSchema(_Serialisable):
    name: str
    base_url: str
    resources: List[RESTResourceDefinition] = field(default_factory=list)
    type: str = "rest"
    version: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    authentication: Dict[str, Any] = field(default_factory=dict)
    capabilities: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


# Comparison -----------------------------------------------------------------


@dataclass(slots=True)
class ColumnChange:
    old: ColumnDefinition
    new: ColumnDefinition
    changes: List[str] = field(default_factory=list)


@dataclass(slots=True)
class TableChanges:
    added_columns: List[ColumnDefinition] = field(default_factory=list)
    removed_columns: List[ColumnDefinition] = field(default_factory=list)
    modified_columns: List[ColumnChange] = field(default_factory=list)
    added_indexes: List[IndexDefinition] = field(default_factory=list)
    removed_indexes: List[IndexDefinition] = field(default_factory=list)
    added_constraints: List[ConstraintDefinition] = field(default_factory=list)
    removed_constraints: List[ConstraintDefinition] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            (
                self.added_columns,
                self.removed_columns,
                self.modified_columns,
                self.added_indexes,
                self.removed_indexes,
                self.added_constraints,
                self.removed_constraints,
            )
        )


@dataclass(slots=True)
class TableModification:
    table: TableDefinition
    changes: TableChanges
    previous: Optional[TableDefinition] = None


@dataclass(slots=True)
class ViewModification:
    old: ViewDefinition
    new: ViewDefinition


@dataclass(slots=True)
class SchemaComparison:
    has_changes: bool = False
    added_tables: List[TableDefinition] = field(default_factory=list)
    removed_tables: List[TableDefinition] = field(default_factory=list)
    modified_tables: List[TableModification] = field(default_factory=list)
    added_views: List[ViewDefinition] = field(default_factory=list)
    removed_views: List[ViewDefinition] = field(default_factory=list)
    modified_views: List[ViewModification] = field(default_factory=list)


AnySchema = Union[DatabaseSchema, DocumentSchema, RESTSchema]


# Serialisation --------------------------------------------------------------

T = TypeVar("T")


def _encode(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {item.name: _encode(getattr(value, item.name)) for item in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_encode(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def schema_to_dict(value: Any) -> Any:
    """Convert any canonical schema object into JSON-safe primitives."""

    return _encode(value)


@lru_cache(maxsize=None)
def _hints(cls: type) -> Dict[str, Any]:
    return typing.get_type_hints(cls)


def _decode(hint: Any, value: Any) -> Any:
    if value is None:
        return None
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)
    if origin is Union:
        candidates = [arg for arg in args if arg is not type(None)]
        return _decode(candidates[0], value) if len(candidates) == 1 else value
    if origin in (list, tuple, abc.Sequence):
        item_hint = args[0] if args else Any
        return [_decode(item_hint, item) for item in value]
    if origin in (dict, abc.Mapping):
        value_hint = args[1] if len(args) == 2 else Any
        return {key: _decode(value_hint, item) for key, item in value.items()}
    if isinstance(hint, type):
        if issubclass(hint, Enum):
            return hint(value)
        if hint is datetime and isinstance(value, str):
            return datetime.fromisoformat(value)
        if dataclasses.is_dataclass(hint):
            return _from_mapping(hint, value)
    return value


def _from_mapping(cls: Type[T], payload: Mapping[str, Any]) -> T:
    hints = _hints(cls)
    kwargs = {}
    for item in dataclasses.fields(cls):  # type: ignore[arg-type]
        if item.name in payload:
            kwargs[item.name] = _decode(hints[item.name], payload[item.name])
    return cls(**kwargs)


def schema_from_dict(cls: Type[T], payload: Mapping[str, Any]) -> T:
    """Rebuild a canonical schema object of type ``cls`` from :func:`schema_to_dict` output."""

    return _from_mapping(cls, payload)


def load_schema(payload: Mapping[str, Any]) -> AnySchema:
    """Rebuild whichever schema family ``payload`` describes."""

    if "collections" in payload:
        return schema_from_dict(DocumentSchema, payload)
    if "resources" in payload:
        return schema_from_dict(RESTSchema, payload)
    return schema_from_dict(DatabaseSchema, payload)


# Versioning -----------------------------------------------------------------


def _structure(schema: AnySchema) -> Dict[str, Any]:
    if isinstance(schema, DocumentSchema):
        return {
            "collections": [
                {
                    "name": collection.name,
                    "fields": [{"name": item.name, "type": item.type.value, "nullable": item.nullable} for item in collection.fields],
                }
                for collection in sorted(schema.collections, key=lambda entry: entry.name)
            ]
        }
    if isinstance(schema, RESTSchema):
        return {
            "resources": [
                {
                    "name": resource.name,
                    "endpoint": resource.endpoint,
                    "fields": [{"name": item.name, "type": item.type.value, "nullable": item.nullable} for item in resource.fields],
                }
                for resource in sorted(schema.resources, key=lambda entry: entry.name)
            ]
        }
    return {
        "tables": [
            {
                "name": table.qualified_name,
                "columns": [{"name": column.name, "type": column.type.value, "nullable": column.nullable} for column in table.columns],
            }
            for table in sorted(schema.tables, key=lambda entry: entry.qualified_name)
        ]
    }


def schema_version(schema: AnySchema) -> str:
    """
    Return the SHA-256 hex digest of the schema's structural content.

    Only names, types and nullability participate, so re-introspecting an
    unchanged source yields the same version regardless of timestamps or
    sampling metadata.
    """

    content = json.dumps(_structure(schema), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
