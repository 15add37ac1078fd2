"""
Schema comparison and migration script generation.

:func:`compare_schemas` matches tables by qualified name, columns by name and
indexes/constraints by name; :func:`generate_schema_diff` renders the result
as ordered DDL statements (creates, then alterations, then drops of indexes
and tables). :func:`compare_document_schemas` and :func:`compare_rest_schemas`
give the field-level view used for schema-less sources.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

from ..conversion.exports import (
    column_definition_sql,
    database_type_to_sql,
    escape_literal,
    quote_identifier,
    table_to_create_statement,
)
from ..core.schema import (
    ColumnChange,
    ColumnDefinition,
    ConstraintDefinition,
    DatabaseSchema,
    DocumentFieldDefinition,
    DocumentSchema,
    IndexDefinition,
    RESTSchema,
    SchemaComparison,
    TableChanges,
    TableDefinition,
    TableModification,
    ViewDefinition,
    ViewModification,
)

Escape = Callable[[str], str]

_COMPARED_ATTRIBUTES = ("type", "nullable", "default_value", "max_length", "precision", "scale", "enum_values")


def _describe(value: object) -> str:
    return getattr(value, "value", None) or repr(value)


def _column_changes(old: ColumnDefinition, new: ColumnDefinition) -> List[str]:
    changes = []
    for attribute in _COMPARED_ATTRIBUTES:
        before, after = getattr(old, attribute), getattr(new, attribute)
        if before != after:
            changes.append(f"{attribute}: {_describe(before)} -> {_describe(after)}")
    return changes


def _by_name(items: Sequence[object]) -> Dict[str, object]:
    return {getattr(item, "name"): item for item in items}


def compare_tables(old: TableDefinition, new: TableDefinition) -> TableChanges:
    """Column, index and constraint differences between two versions of one table."""

    changes = TableChanges()
    old_columns = {column.name: column for column in old.columns}
    new_columns = {column.name: column for column in new.columns}
    changes.added_columns = [column for name, column in new_columns.items() if name not in old_columns]
    changes.removed_columns = [column for name, column in old_columns.items() if name not in new_columns]
    for name, column in new_columns.items():
        previous = old_columns.get(name)
        if previous is None:
            continue
        diff = _column_changes(previous, column)
        if diff:
            changes.modified_columns.append(ColumnChange(old=previous, new=column, changes=diff))

    old_indexes: Dict[str, IndexDefinition] = _by_name(old.indexes)  # type: ignore[assignment]
    new_indexes: Dict[str, IndexDefinition] = _by_name(new.indexes)  # type: ignore[assignment]
    for name, index in new_indexes.items():
        previous = old_indexes.get(name)
        if previous is None:
            changes.added_indexes.append(index)
        elif previous.columns != index.columns or previous.is_unique != index.is_unique:
            changes.removed_indexes.append(previous)
            changes.added_indexes.append(index)
    changes.removed_indexes.extend(index for name, index in old_indexes.items() if name not in new_indexes)

    old_constraints: Dict[str, ConstraintDefinition] = _by_name(old.constraints)  # type: ignore[assignment]
    new_constraints: Dict[str, ConstraintDefinition] = _by_name(new.constraints)  # type: ignore[assignment]
    for name, constraint in new_constraints.items():
        previous = old_constraints.get(name)
        if previous is None:
            changes.added_constraints.append(constraint)
        elif previous.type != constraint.type or previous.columns != constraint.columns or previous.check_expression != constraint.check_expression:
            changes.removed_constraints.append(previous)
            changes.added_constraints.append(constraint)
    changes.removed_constraints.extend(item for name, item in old_constraints.items() if name not in new_constraints)
    return changes


def compare_schemas(source: DatabaseSchema, target: DatabaseSchema) -> SchemaComparison:
    """
    Compare ``source`` (current) with ``target`` (desired).

    Tables are matched on ``schema.name``; views on their name. Identical
    schemas produce ``has_changes=False`` and empty change lists.
    """

    comparison = SchemaComparison()
    old_tables = {table.qualified_name: table for table in source.tables}
    new_tables = {table.qualified_name: table for table in target.tables}
    comparison.added_tables = [table for name, table in new_tables.items() if name not in old_tables]
    comparison.removed_tables = [table for name, table in old_tables.items() if name not in new_tables]
    for name, table in new_tables.items():
        previous = old_tables.get(name)
        if previous is None:
            continue
        changes = compare_tables(previous, table)
        if not changes.is_empty():
            comparison.modified_tables.append(TableModification(table=table, changes=changes, previous=previous))

    old_views: Dict[str, ViewDefinition] = {view.name: view for view in source.views}
    new_views: Dict[str, ViewDefinition] = {view.name: view for view in target.views}
    comparison.added_views = [view for name, view in new_views.items() if name not in old_views]
    comparison.removed_views = [view for name, view in old_views.items() if name not in new_views]
    comparison.modified_views = [
        ViewModification(old=old_views[name], new=view)
        for name, view in new_views.items()
        if name in old_views and old_views[name].definition.strip() != view.definition.strip()
    ]
    comparison.has_changes = any(
        (
            comparison.added_tables,
            comparison.removed_tables,
            comparison.modified_tables,
            comparison.added_views,
            comparison.removed_views,
            comparison.modified_views,
        )
    )
    return comparison


def _table_ref(table: TableDefinition, escape: Escape) -> str:
    return escape(table.name)


def _index_sql(index: IndexDefinition, table: TableDefinition, escape: Escape) -> str:
    unique = "UNIQUE " if index.is_unique else ""
    columns = ", ".join(escape(column) for column in index.columns)
    return f"CREATE {unique}INDEX {escape(index.name)} ON {_table_ref(table, escape)} ({columns});"


def _alter_column(table_ref: str, change: ColumnChange, escape: Escape) -> List[str]:
    statements = []
    column = escape(change.new.name)
    if (
        change.old.type != change.new.type
        or change.old.max_length != change.new.max_length
        or change.old.precision != change.new.precision
        or change.old.scale != change.new.scale
    ):
        statements.append(f"ALTER TABLE {table_ref} ALTER COLUMN {column} TYPE {database_type_to_sql(change.new)};")
    if change.old.nullable != change.new.nullable:
        action = "DROP NOT NULL" if change.new.nullable else "SET NOT NULL"
        statements.append(f"ALTER TABLE {table_ref} ALTER COLUMN {column} {action};")
    if change.old.default_value != change.new.default_value:
        if change.new.default_value is None:
            statements.append(f"ALTER TABLE {table_ref} ALTER COLUMN {column} DROP DEFAULT;")
        else:
            default = change.new.default_value
            clause = default if isinstance(default, str) else escape_literal(default)
            statements.append(f"ALTER TABLE {table_ref} ALTER COLUMN {column} SET DEFAULT {clause};")
    return statements


def generate_schema_diff(comparison: SchemaComparison, *, escape: Escape = quote_identifier) -> List[str]:
    """
    Render ``comparison`` as DDL statements.

    Order: new tables with their indexes, column additions and alterations,
    index drops and creations, column drops, table drops, then view changes. No statement
    is emitted for schemas without changes.
    """

    statements: List[str] = []
    statements.extend(table_to_create_statement(table, escape) for table in comparison.added_tables)
    for table in comparison.added_tables:
        statements.extend(_index_sql(index, table, escape) for index in table.indexes if not index.is_primary_key)

    for modification in comparison.modified_tables:
        table_ref = _table_ref(modification.table, escape)
        changes = modification.changes
        for column in changes.added_columns:
            statements.append(f"ALTER TABLE {table_ref} ADD COLUMN {column_definition_sql(column, escape)};")
        for change in changes.modified_columns:
            statements.extend(_alter_column(table_ref, change, escape))
        for index in changes.removed_indexes:
            if not index.is_primary_key:
                statements.append(f"DROP INDEX {escape(index.name)};")
        for index in changes.added_indexes:
            if not index.is_primary_key:
                statements.append(_index_sql(index, modification.table, escape))
        for column in changes.removed_columns:
            statements.append(f"ALTER TABLE {table_ref} DROP COLUMN {escape(column.name)};")

    statements.extend(f"DROP TABLE {_table_ref(table, escape)};" for table in comparison.removed_tables)

    for view in comparison.added_views:
        statements.append(f"CREATE VIEW {escape(view.name)} AS {view.definition.strip().rstrip(';')};")
    for modification in comparison.modified_views:
        statements.append(f"CREATE OR REPLACE VIEW {escape(modification.new.name)} AS {modification.new.definition.strip().rstrip(';')};")
    statements.extend(f"DROP VIEW {escape(view.name)};" for view in comparison.removed_views)
    return statements


# Documents --------------------------------------------------------------------


@dataclass(slots=True)
class FieldChange:
    collection: str
    field: str
    change: str
    before: object = None
    after: object = None


@dataclass(slots=True)
class DocumentSchemaComparison:
    has_changes: bool = False
    added_collections: List[str] = field(default_factory=list)
    removed_collections: List[str] = field(default_factory=list)
    field_changes: List[FieldChange] = field(default_factory=list)


def _fields_by_path(fields: Sequence[Any]) -> Dict[str, Any]:
    return {getattr(item, "field_path", None) or item.name: item for item in fields}


def _optional(item: Any) -> bool:
    if isinstance(item, DocumentFieldDefinition):
        return item.is_optional
    return not getattr(item, "required", False)


def _compare_groups(old: Dict[str, Sequence[Any]], new: Dict[str, Sequence[Any]]) -> DocumentSchemaComparison:
    comparison = DocumentSchemaComparison()
    comparison.added_collections = [name for name in new if name not in old]
    comparison.removed_collections = [name for name in old if name not in new]
    for name, fields in new.items():
        if name not in old:
            continue
        before = _fields_by_path(old[name])
        after = _fields_by_path(fields)
        for path, item in after.items():
            previous = before.get(path)
            if previous is None:
                comparison.field_changes.append(FieldChange(name, path, "added", after=item.type.value))
            elif previous.type != item.type:
                comparison.field_changes.append(FieldChange(name, path, "type_changed", previous.type.value, item.type.value))
            elif _optional(previous) != _optional(item):
                comparison.field_changes.append(FieldChange(name, path, "optionality_changed", _optional(previous), _optional(item)))
        for path, item in before.items():
            if path not in after:
                comparison.field_changes.append(FieldChange(name, path, "removed", before=item.type.value))
    comparison.has_changes = bool(comparison.added_collections or comparison.removed_collections or comparison.field_changes)
    return comparison


def compare_document_schemas(source: DocumentSchema, target: DocumentSchema) -> DocumentSchemaComparison:
    """Field-level comparison of two sampled document schemas."""

    return _compare_groups(
        {collection.name: collection.fields for collection in source.collections},
        {collection.name: collection.fields for collection in target.collections},
    )


def compare_rest_schemas(source: RESTSchema, target: RESTSchema) -> DocumentSchemaComparison:
    """Field-level comparison of two REST schemas; resources play the part of collections."""

    return _compare_groups(
        {resource.name: resource.fields for resource in source.resources},
        {resource.name: resource.fields for resource in target.resources},
    )


def describe_field_changes(comparison: DocumentSchemaComparison, *, container: str = "COLLECTION") -> List[str]:
    """
    Render a field-level comparison as migration notes.

    Schema-less backends have no DDL, so the output is one line per change,
    e.g. ``ADD FIELD users.email (text)``.
    """

    lines = [f"CREATE {container} {name}" for name in comparison.added_collections]
    for change in comparison.field_changes:
        target = f"{change.collection}.{change.field}"
        if change.change == "added":
            lines.append(f"ADD FIELD {target} ({change.after})")
        elif change.change == "removed":
            lines.append(f"DROP FIELD {target}")
        elif change.change == "type_changed":
            lines.append(f"ALTER FIELD {target} TYPE {change.after} (was {change.before})")
        else:
            lines.append(f"ALTER FIELD {target} {'OPTIONAL' if change.after else 'REQUIRED'}")
    lines.extend(f"DROP {container} {name}" for name in comparison.removed_collections)
    return lines


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
