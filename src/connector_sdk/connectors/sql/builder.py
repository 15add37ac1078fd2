"""
Parameterised SQL statement builder.

Every value travels as a named bind parameter (``:p0``, ``:p1``...) consumed
by :func:`sqlalchemy.text`; identifiers are quoted by the dialect. Criteria
mappings follow a small vocabulary:

``{"status": "active"}``
    equality
``{"deleted_at": None}``
    ``IS NULL``
``{"id": [1, 2, 3]}``
    ``IN``
``{"age": {"gte": 18, "lt": 65}}``
    operator map; supported keys are ``eq``, ``ne``, ``gt``, ``gte``, ``lt``,
    ``lte``, ``like``, ``ilike``, ``in``, ``nin`` and ``is``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from ...core.errors import ValidationError
from ..base import BuiltQuery, DataOperationOptions, FilterOptions, PaginationOptions
from .dialects import SQLDialect

_COMPARISONS = {"eq": "=", "ne": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
_POSITIONAL = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\$(\d+)|\?")


@dataclass(slots=True)
class OnConflict:
    """``ON CONFLICT`` clause for upserts."""

    columns: List[str]
    action: Literal["DO NOTHING", "DO UPDATE"] = "DO UPDATE"
    update_columns: Optional[List[str]] = None


@dataclass(slots=True)
class _Parameters:
    values: Dict[str, Any] = field(default_factory=dict)

    def add(self, value: Any) -> str:
        name = f"p{len(self.values)}"
        self.values[name] = value
        return f":{name}"


class SQLQueryBuilder:
    """Builds :class:`BuiltQuery` objects for one dialect."""

    def __init__(self, dialect: SQLDialect) -> None:
        self.dialect = dialect

    def table_ref(self, table: str, schema: Optional[str] = None) -> str:
        quote = self.dialect.escape_identifier
        return f"{quote(schema)}.{quote(table)}" if schema else quote(table)

    # Predicates -------------------------------------------------------------

    def _predicate(self, column: str, value: Any, params: _Parameters) -> str:
        quoted = self.dialect.escape_identifier(column)
        if value is None:
            return f"{quoted} IS NULL"
        if isinstance(value, (list, tuple, set)):
            return self._in(quoted, list(value), params)
        if isinstance(value, Mapping):
            parts = [self._operator(quoted, operator, operand, params) for operator, operand in value.items()]
            if not parts:
                raise ValidationError(f"Empty operator map for column {column}", field=column)
            return " AND ".join(parts)
        return f"{quoted} = {params.add(value)}"

    def _in(self, quoted: str, values: List[Any], params: _Parameters, *, negate: bool = False) -> str:
        if not values:
            return "1 = 1" if negate else "1 = 0"
        placeholders = ", ".join(params.add(item) for item in values)
        return f"{quoted} {'NOT IN' if negate else 'IN'} ({placeholders})"

    def _operator(self, quoted: str, operator: str, operand: Any, params: _Parameters) -> str:
        key = operator.lower()
        if key in _COMPARISONS:
            if operand is None:
                return f"{quoted} IS NULL" if key == "eq" else f"{quoted} IS NOT NULL"
            return f"{quoted} {_COMPARISONS[key]} {params.add(operand)}"
        if key == "like":
            return f"{quoted} LIKE {params.add(operand)}"
        if key == "ilike":
            if self.dialect.supports_ilike:
                return f"{quoted} ILIKE {params.add(operand)}"
            return f"LOWER({quoted}) LIKE LOWER({params.add(operand)})"
        if key in ("in", "nin"):
            values = list(operand) if isinstance(operand, (list, tuple, set)) else [operand]
            return self._in(quoted, values, params, negate=key == "nin")
        if key == "is":
            if operand is None:
                return f"{quoted} IS NULL"
            return f"{quoted} IS {'TRUE' if operand else 'FALSE'}"
        raise ValidationError(f"Unsupported filter operator: {operator}", field=operator)

    def where_clause(self, criteria: Optional[Mapping[str, Any]], params: _Parameters, filters: Optional[FilterOptions] = None) -> str:
        parts = [self._predicate(column, value, params) for column, value in (criteria or {}).items()]
        if filters is not None:
            parts.extend(self._predicate(column, value, params) for column, value in filters.where.items())
            if filters.search is not None and filters.search.columns and filters.search.term:
                placeholder = params.add(f"%{filters.search.term}%")
                operator = "ILIKE" if self.dialect.supports_ilike else "LIKE"
                ors = " OR ".join(f"{self.dialect.escape_identifier(column)} {operator} {placeholder}" for column in filters.search.columns)
                parts.append(f"({ors})")
            if filters.where_raw:
                parts.append(f"({filters.where_raw})")
        return f" WHERE {' AND '.join(parts)}" if parts else ""

    def _returning(self, returning: Optional[Sequence[str]]) -> str:
        if not returning or not self.dialect.supports_returning:
            return ""
        columns = ", ".join("*" if column == "*" else self.dialect.escape_identifier(column) for column in returning)
        return f" RETURNING {columns}"

    # Statements -------------------------------------------------------------

    def build_select(
        self,
        table: str,
        *,
        schema: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        criteria: Optional[Mapping[str, Any]] = None,
        options: Optional[DataOperationOptions] = None,
    ) -> BuiltQuery:
        params = _Parameters()
        selected = ", ".join(self.dialect.escape_identifier(column) for column in columns) if columns else "*"
        filters = options.filters if options else None
        sql = f"SELECT {selected} FROM {self.table_ref(table, schema)}" + self.where_clause(criteria, params, filters)
        pagination = options.pagination if options else None
        sql += self._pagination(pagination, params)
        return BuiltQuery(sql, params.values)

    def _pagination(self, pagination: Optional[PaginationOptions], params: _Parameters) -> str:
        if pagination is None:
            return ""
        clause = ""
        if pagination.order_by:
            terms = []
            for order in pagination.order_by:
                direction = order.direction.upper()
                if direction not in ("ASC", "DESC"):
                    raise ValidationError(f"Invalid sort direction: {order.direction}", field="direction")
                terms.append(f"{self.dialect.escape_identifier(order.column)} {direction}")
            clause += f" ORDER BY {', '.join(terms)}"
        if pagination.limit is not None:
            clause += f" LIMIT {params.add(int(pagination.limit))}"
        if pagination.offset:
            if pagination.limit is None:
                # SQLite requires a LIMIT before OFFSET
                clause += " LIMIT -1" if self.dialect.name == "sqlite" else ""
            clause += f" OFFSET {params.add(int(pagination.offset))}"
        return clause

    def build_count(
        self,
        table: str,
        *,
        schema: Optional[str] = None,
        criteria: Optional[Mapping[str, Any]] = None,
        filters: Optional[FilterOptions] = None,
    ) -> BuiltQuery:
        params = _Parameters()
        sql = f"SELECT COUNT(*) AS count FROM {self.table_ref(table, schema)}" + self.where_clause(criteria, params, filters)
        return BuiltQuery(sql, params.values)

    def build_insert(
        self,
        table: str,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        schema: Optional[str] = None,
        returning: Optional[Sequence[str]] = None,
        on_conflict: Optional[OnConflict] = None,
    ) -> BuiltQuery:
        records = [rows] if isinstance(rows, Mapping) else list(rows)
        if not records or not records[0]:
            raise ValidationError("No data provided for insert")
        columns = list(records[0])
        for record in records[1:]:
            if set(record) != set(columns):
                raise ValidationError("All rows of a multi-row insert must share the same columns")
        params = _Parameters()
        quote = self.dialect.escape_identifier
        values = ", ".join("(" + ", ".join(params.add(record[column]) for column in columns) + ")" for record in records)
        sql = f"INSERT INTO {self.table_ref(table, schema)} ({', '.join(quote(column) for column in columns)}) VALUES {values}"
        if on_conflict is not None:
            sql += self._on_conflict(on_conflict, columns)
        sql += self._returning(returning)
        return BuiltQuery(sql, params.values)

    def _on_conflict(self, on_conflict: OnConflict, columns: Sequence[str]) -> str:
        if not self.dialect.supports_upsert:
            raise ValidationError(f"{self.dialect.name} dialect does not support ON CONFLICT")
        if not on_conflict.columns:
            raise ValidationError("Conflict columns are required for upsert")
        quote = self.dialect.escape_identifier
        target = ", ".join(quote(column) for column in on_conflict.columns)
        updates = on_conflict.update_columns
        if updates is None:
            updates = [column for column in columns if column not in on_conflict.columns]
        if on_conflict.action == "DO NOTHING" or not updates:
            return f" ON CONFLICT ({target}) DO NOTHING"
        assignments = ", ".join(f"{quote(column)} = EXCLUDED.{quote(column)}" for column in updates)
        return f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"

    def build_update(
        self,
        table: str,
        data: Mapping[str, Any],
        criteria: Mapping[str, Any],
        *,
        schema: Optional[str] = None,
        returning: Optional[Sequence[str]] = None,
    ) -> BuiltQuery:
        if not data:
            raise ValidationError("No data provided for update")
        if not criteria:
            raise ValidationError("Update criteria are required")
        params = _Parameters()
        quote = self.dialect.escape_identifier
        assignments = ", ".join(f"{quote(column)} = {params.add(value)}" for column, value in data.items())
        sql = f"UPDATE {self.table_ref(table, schema)} SET {assignments}" + self.where_clause(criteria, params)
        return BuiltQuery(sql + self._returning(returning), params.values)

    def build_delete(
        self,
        table: str,
        criteria: Mapping[str, Any],
        *,
        schema: Optional[str] = None,
        returning: Optional[Sequence[str]] = None,
    ) -> BuiltQuery:
        if not criteria:
            raise ValidationError("Delete criteria are required")
        params = _Parameters()
        sql = f"DELETE FROM {self.table_ref(table, schema)}" + self.where_clause(criteria, params)
        return BuiltQuery(sql + self._returning(returning), params.values)


def to_named(query: str, parameters: Any = None) -> Tuple[str, Dict[str, Any]]:
    """
    Normalise ``parameters`` to the named style expected by :func:`sqlalchemy.text`.

    Mappings pass through untouched. Sequences are bound to ``$1``-style or
    ``?``-style placeholders, which are rewritten to ``:p0``...; placeholders
    inside quoted literals are left alone.
    """

    if parameters is None:
        return query, {}
    if isinstance(parameters, Mapping):
        return query, dict(parameters)
    values = list(parameters)
    counter = iter(range(len(values)))

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith(("'", '"')):
            return token
        if match.group(1) is not None:
            return f":p{int(match.group(1)) - 1}"
        return f":p{next(counter)}"

    try:
        rewritten = _POSITIONAL.sub(_replace, query)
    except StopIteration as exc:
        raise ValidationError("More placeholders than parameters") from exc
    return rewritten, {f"p{index}": value for index, value in enumerate(values)}


__all__ = ["OnConflict", "SQLQueryBuilder", "to_named"]
