"""
Dialect strategies composed by :class:`~connector_sdk.connectors.sql.connector.SQLConnector`.

A dialect knows how to build the SQLAlchemy URL and driver arguments for a
backend, how to discover its catalog, and how to scope a single statement
(read-only transactions, statement timeouts). :class:`SQLDialect` discovers
through SQLAlchemy's inspector and works for any URL; :class:`SQLiteDialect`
adds the pysqlite transaction fix-ups and ``PRAGMA query_only``;
:class:`PostgresDialect` reads ``information_schema`` and ``pg_catalog``.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import event, exc as sa_exc, inspect, text
from sqlalchemy.engine import Connection, Engine, URL, make_url
from sqlalchemy.pool import Pool, QueuePool, StaticPool

from ...core.errors import ConfigurationError
from ...core.logging import get_logger
from ...core.schema import (
    ColumnDefinition,
    ConstraintDefinition,
    ConstraintType,
    DatabaseType,
    ForeignKeyDefinition,
    FunctionDefinition,
    IndexDefinition,
    IndexType,
    ReferenceAction,
    SequenceDefinition,
    TriggerDefinition,
    ViewDefinition,
)

LOGGER = get_logger(__name__)

_TYPE_MAP: Dict[str, DatabaseType] = {
    "integer": DatabaseType.INTEGER,
    "int": DatabaseType.INTEGER,
    "int2": DatabaseType.INTEGER,
    "int4": DatabaseType.INTEGER,
    "smallint": DatabaseType.INTEGER,
    "tinyint": DatabaseType.INTEGER,
    "mediumint": DatabaseType.INTEGER,
    "bigint": DatabaseType.BIGINT,
    "int8": DatabaseType.BIGINT,
    "decimal": DatabaseType.DECIMAL,
    "numeric": DatabaseType.NUMERIC,
    "real": DatabaseType.REAL,
    "float4": DatabaseType.REAL,
    "double": DatabaseType.DOUBLE,
    "double precision": DatabaseType.DOUBLE,
    "float8": DatabaseType.DOUBLE,
    "float": DatabaseType.FLOAT,
    "serial": DatabaseType.SERIAL,
    "serial4": DatabaseType.SERIAL,
    "bigserial": DatabaseType.BIGSERIAL,
    "serial8": DatabaseType.BIGSERIAL,
    "text": DatabaseType.TEXT,
    "clob": DatabaseType.TEXT,
    "varchar": DatabaseType.VARCHAR,
    "nvarchar": DatabaseType.VARCHAR,
    "character varying": DatabaseType.VARCHAR,
    "char": DatabaseType.CHAR,
    "nchar": DatabaseType.CHAR,
    "character": DatabaseType.CHAR,
    "bpchar": DatabaseType.CHAR,
    "uuid": DatabaseType.UUID,
    "date": DatabaseType.DATE,
    "time": DatabaseType.TIME,
    "time without time zone": DatabaseType.TIME,
    "timestamp": DatabaseType.TIMESTAMP,
    "datetime": DatabaseType.TIMESTAMP,
    "timestamp without time zone": DatabaseType.TIMESTAMP,
    "timestamptz": DatabaseType.TIMESTAMPTZ,
    "timestamp with time zone": DatabaseType.TIMESTAMPTZ,
    "interval": DatabaseType.INTERVAL,
    "boolean": DatabaseType.BOOLEAN,
    "bool": DatabaseType.BOOLEAN,
    "json": DatabaseType.JSON,
    "jsonb": DatabaseType.JSONB,
    "bytea": DatabaseType.BYTEA,
    "blob": DatabaseType.BLOB,
}

_INDEX_DEF = re.compile(r"USING\s+(\w+)\s*\((.+?)\)(?:\s+WHERE\s+(.+))?$", re.IGNORECASE)


def _base_type_name(native: str) -> str:
    return re.sub(r"\(.*?\)", "", native).strip().lower()


def map_native_type(native: str) -> DatabaseType:
    """Map a backend type name (``VARCHAR(20)``, ``int4``, ``text[]``...) to :class:`DatabaseType`."""

    if not native:
        return DatabaseType.UNKNOWN
    if native.endswith("[]") or native.upper() == "ARRAY":
        return DatabaseType.ARRAY
    if native.upper().startswith("USER-DEFINED"):
        return DatabaseType.ENUM
    return _TYPE_MAP.get(_base_type_name(native), DatabaseType.UNKNOWN)


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SQLDialect:
    """
    Inspector-backed dialect usable with any SQLAlchemy URL.

    Subclasses override the discovery hooks when the backend offers richer
    catalog queries than SQLAlchemy's inspector exposes.
    """

    name = "sql"
    supports_returning = False
    supports_upsert = False
    supports_ilike = False
    explain_prefix = "EXPLAIN"
    default_port: Optional[int] = None

    def __init__(self) -> None:
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    # Engine -----------------------------------------------------------------

    def build_url(self, config: Any, credentials: Mapping[str, Any]) -> str | URL:
        url = credentials.get("url") or credentials.get("connection_string") or getattr(config, "url", None)
        if not url:
            raise ValueError("A SQLAlchemy URL is required for the generic SQL dialect")
        return make_url(url)

    def connect_args(self, config: Any, credentials: Mapping[str, Any]) -> Dict[str, Any]:
        return {}

    def poolclass(self, config: Any) -> type[Pool]:
        return QueuePool

    def configure_engine(self, engine: Engine, config: Any) -> None:
        return None

    # Statement scoping -------------------------------------------------------

    def prepare(self, connection: Connection, *, read_only: bool = False, timeout_ms: Optional[int] = None) -> None:
        return None

    def finish(self, connection: Connection, *, read_only: bool = False) -> None:
        return None

    def server_version(self, connection: Connection) -> str:
        info = connection.dialect.server_version_info
        return ".".join(str(part) for part in info) if info else "unknown"

    # Identifiers ------------------------------------------------------------

    def escape_identifier(self, identifier: str) -> str:
        return quote(identifier)

    def placeholder(self, index: int) -> str:
        return f":p{index}"

    def map_type(self, native: str) -> DatabaseType:
        return map_native_type(native)

    def type_mapping(self) -> Dict[str, str]:
        return {
            DatabaseType.INTEGER.value: "INTEGER",
            DatabaseType.BIGINT.value: "BIGINT",
            DatabaseType.DECIMAL.value: "DECIMAL",
            DatabaseType.REAL.value: "REAL",
            DatabaseType.DOUBLE.value: "DOUBLE PRECISION",
            DatabaseType.TEXT.value: "TEXT",
            DatabaseType.VARCHAR.value: "VARCHAR",
            DatabaseType.DATE.value: "DATE",
            DatabaseType.TIMESTAMP.value: "TIMESTAMP",
            DatabaseType.BOOLEAN.value: "BOOLEAN",
            DatabaseType.BLOB.value: "BLOB",
        }

    # Discovery --------------------------------------------------------------

    def default_schemas(self, connection: Connection, config: Any) -> List[str]:
        configured = getattr(config, "default_schema", None)
        if configured:
            return [configured]
        default = inspect(connection).default_schema_name
        return [default] if default else self.list_schemas(connection)

    def list_schemas(self, connection: Connection) -> List[str]:
        return list(inspect(connection).get_schema_names())

    def list_tables(self, connection: Connection, schema: Optional[str]) -> List[str]:
        return sorted(inspect(connection).get_table_names(schema=schema))

    def list_views(self, connection: Connection, schema: Optional[str]) -> List[ViewDefinition]:
        inspector = inspect(connection)
        views = []
        for name in sorted(inspector.get_view_names(schema=schema)):
            try:
                definition = inspector.get_view_definition(name, schema=schema) or ""
            except NotImplementedError:
                definition = ""
            views.append(ViewDefinition(name=name, schema=schema or "", definition=str(definition)))
        return views

    def list_functions(self, connection: Connection, schema: Optional[str]) -> List[FunctionDefinition]:
        return []

    def list_triggers(self, connection: Connection, schema: Optional[str]) -> List[TriggerDefinition]:
        return []

    def list_sequences(self, connection: Connection, schema: Optional[str]) -> List[SequenceDefinition]:
        return []

    def table_details(self, connection: Connection, table: str, schema: Optional[str]) -> Dict[str, Any]:
        """Optional row estimate, size and comment for ``table``."""

        try:
            comment = inspect(connection).get_table_comment(table, schema=schema).get("text")
        except NotImplementedError:
            comment = None
        return {"comment": comment}

    def _type_name(self, connection: Connection, sa_type: Any) -> str:
        try:
            return str(sa_type.compile(dialect=connection.dialect))
        except (sa_exc.CompileError, sa_exc.UnsupportedCompilationError):
            return str(getattr(sa_type, "__visit_name__", "") or "")

    def get_columns(self, connection: Connection, table: str, schema: Optional[str]) -> List[ColumnDefinition]:
        inspector = inspect(connection)
        columns = []
        for info in inspector.get_columns(table, schema=schema):
            sa_type = info["type"]
            native = self._type_name(connection, sa_type)
            kind = self.map_type(native)
            enum_values = list(getattr(sa_type, "enums", None) or []) or None
            if enum_values:
                kind = DatabaseType.ENUM
            element = getattr(sa_type, "item_type", None)
            default = info.get("default")
            columns.append(
                ColumnDefinition(
                    name=info["name"],
                    type=kind,
                    nullable=bool(info.get("nullable", True)),
                    default_value=default,
                    max_length=getattr(sa_type, "length", None),
                    precision=getattr(sa_type, "precision", None),
                    scale=getattr(sa_type, "scale", None),
                    enum_values=enum_values,
                    array_element_type=self.map_type(self._type_name(connection, element)) if element is not None else None,
                    comment=info.get("comment"),
                    is_auto_increment=info.get("autoincrement") is True,
                    original_type=native,
                    metadata={"hasDefault": default is not None},
                )
            )
        return columns

    def get_primary_key(self, connection: Connection, table: str, schema: Optional[str]) -> List[str]:
        constraint = inspect(connection).get_pk_constraint(table, schema=schema) or {}
        return list(constraint.get("constrained_columns") or [])

    def get_foreign_keys(self, connection: Connection, table: str, schema: Optional[str]) -> List[ForeignKeyDefinition]:
        foreign_keys = []
        for info in inspect(connection).get_foreign_keys(table, schema=schema):
            options = info.get("options") or {}
            name = info.get("name") or f"fk_{table}_{'_'.join(info.get('constrained_columns') or [])}"
            for local, remote in zip(info.get("constrained_columns") or [], info.get("referred_columns") or []):
                foreign_keys.append(
                    ForeignKeyDefinition(
                        column_name=local,
                        referenced_table=info["referred_table"],
                        referenced_column=remote,
                        constraint_name=name,
                        referenced_schema=info.get("referred_schema"),
                        on_update=ReferenceAction.parse(options.get("onupdate")),
                        on_delete=ReferenceAction.parse(options.get("ondelete")),
                    )
                )
        return foreign_keys

    def get_indexes(self, connection: Connection, table: str, schema: Optional[str]) -> List[IndexDefinition]:
        indexes = []
        for info in inspect(connection).get_indexes(table, schema=schema):
            columns = [name for name in info.get("column_names") or [] if name]
            indexes.append(
                IndexDefinition(
                    name=info.get("name") or f"idx_{table}_{'_'.join(columns)}",
                    table_name=table,
                    columns=columns,
                    is_unique=bool(info.get("unique")),
                )
            )
        return indexes

    def get_constraints(self, connection: Connection, table: str, schema: Optional[str]) -> List[ConstraintDefinition]:
        inspector = inspect(connection)
        constraints = []
        for info in inspector.get_unique_constraints(table, schema=schema):
            constraints.append(
                ConstraintDefinition(
                    name=info.get("name") or f"uq_{table}_{'_'.join(info.get('column_names') or [])}",
                    type=ConstraintType.UNIQUE,
                    table_name=table,
                    columns=list(info.get("column_names") or []),
                )
            )
        try:
            checks = inspector.get_check_constraints(table, schema=schema)
        except NotImplementedError:
            checks = []
        for info in checks:
            constraints.append(
                ConstraintDefinition(
                    name=info.get("name") or f"ck_{table}",
                    type=ConstraintType.CHECK,
                    table_name=table,
                    columns=[],
                    check_expression=info.get("sqltext"),
                )
            )
        return constraints


class GenericDialect(SQLDialect):
    """Any SQLAlchemy URL, discovered through the inspector."""

    name = "generic"


class SQLiteDialect(GenericDialect):
    """SQLite through the stdlib ``sqlite3`` driver."""

    name = "sqlite"
    supports_returning = True
    supports_upsert = True
    explain_prefix = "EXPLAIN QUERY PLAN"

    def build_url(self, config: Any, credentials: Mapping[str, Any]) -> str | URL:
        url = getattr(config, "url", None)
        if url:
            return make_url(url)
        return URL.create("sqlite", database=getattr(config, "database", None) or ":memory:")

    def connect_args(self, config: Any, credentials: Mapping[str, Any]) -> Dict[str, Any]:
        pool = getattr(config, "pool_config", None)
        timeout_ms = pool.connection_timeout_ms if pool is not None else 5000
        return {"timeout": timeout_ms / 1000.0, "check_same_thread": False}

    def poolclass(self, config: Any) -> type[Pool]:
        database = getattr(config, "database", None) or ":memory:"
        return StaticPool if database == ":memory:" else QueuePool

    def configure_engine(self, engine: Engine, config: Any) -> None:
        # pysqlite issues BEGIN lazily; take control so SAVEPOINT works inside transactions
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(connection: Connection) -> None:
            connection.exec_driver_sql("BEGIN")

    def prepare(self, connection: Connection, *, read_only: bool = False, timeout_ms: Optional[int] = None) -> None:
        if read_only:
            connection.exec_driver_sql("PRAGMA query_only = ON")

    def finish(self, connection: Connection, *, read_only: bool = False) -> None:
        if read_only:
            connection.exec_driver_sql("PRAGMA query_only = OFF")

    def server_version(self, connection: Connection) -> str:
        return str(connection.execute(text("SELECT sqlite_version()")).scalar())

    def default_schemas(self, connection: Connection, config: Any) -> List[str]:
        return [getattr(config, "default_schema", None) or "main"]

    def get_columns(self, connection: Connection, table: str, schema: Optional[str]) -> List[ColumnDefinition]:
        columns = super().get_columns(connection, table, schema)
        primary_key = self.get_primary_key(connection, table, schema)
        if len(primary_key) == 1:
            for column in columns:
                # a lone INTEGER PRIMARY KEY aliases the rowid
                if column.name == primary_key[0] and column.type is DatabaseType.INTEGER:
                    column.is_auto_increment = True
        return columns

    def type_mapping(self) -> Dict[str, str]:
        return {
            DatabaseType.INTEGER.value: "INTEGER",
            DatabaseType.BIGINT.value: "INTEGER",
            DatabaseType.DECIMAL.value: "NUMERIC",
            DatabaseType.NUMERIC.value: "NUMERIC",
            DatabaseType.REAL.value: "REAL",
            DatabaseType.DOUBLE.value: "REAL",
            DatabaseType.FLOAT.value: "REAL",
            DatabaseType.TEXT.value: "TEXT",
            DatabaseType.VARCHAR.value: "TEXT",
            DatabaseType.CHAR.value: "TEXT",
            DatabaseType.UUID.value: "TEXT",
            DatabaseType.DATE.value: "TEXT",
            DatabaseType.TIMESTAMP.value: "TEXT",
            DatabaseType.BOOLEAN.value: "INTEGER",
            DatabaseType.JSON.value: "TEXT",
            DatabaseType.BLOB.value: "BLOB",
        }


# Postgres ---------------------------------------------------------------------

_PG_LIST_SCHEMAS = """
SELECT schema_name
FROM information_schema.schemata
WHERE schema_name NOT IN ('information_schema', 'pg_catalog', 'pg_toast')
  AND schema_name NOT LIKE 'pg_temp_%'
  AND schema_name NOT LIKE 'pg_toast_temp_%'
ORDER BY schema_name
"""

_PG_LIST_TABLES = """
SELECT table_name
FROM information_schema.tables
WHERE table_type = 'BASE TABLE' AND table_schema = :schema
ORDER BY table_name
"""

_PG_LIST_VIEWS = """
SELECT table_name, view_definition
FROM information_schema.views
WHERE table_schema = :schema
ORDER BY table_name
"""

_PG_COLUMNS = """
SELECT
  column_name,
  data_type,
  is_nullable,
  column_default,
  character_maximum_length,
  numeric_precision,
  numeric_scale,
  ordinal_position,
  udt_name,
  pg_catalog.col_description(
    (quote_ident(table_schema) || '.' || quote_ident(table_name))::regclass, ordinal_position
  ) AS column_comment
FROM information_schema.columns
WHERE table_name = :table AND table_schema = :schema
ORDER BY ordinal_position
"""

_PG_ENUM_VALUES = """
SELECT e.enumlabel
FROM pg_catalog.pg_type t
JOIN pg_catalog.pg_enum e ON t.oid = e.enumtypid
WHERE t.typname = :name
ORDER BY e.enumsortorder
"""

_PG_PRIMARY_KEY = """
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
 AND tc.table_name = kcu.table_name
WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_name = :table AND tc.table_schema = :schema
ORDER BY kcu.ordinal_position
"""

_PG_FOREIGN_KEYS = """
SELECT
  tc.constraint_name,
  kcu.column_name,
  ccu.table_schema AS foreign_table_schema,
  ccu.table_name AS foreign_table_name,
  ccu.column_name AS foreign_column_name,
  rc.update_rule,
  rc.delete_rule
FROM information_schema.table_constraints AS tc
JOIN information_schema.key_column_usage AS kcu
  ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage AS ccu
  ON ccu.constraint_name = tc.constraint_name AND ccu.constraint_schema = tc.table_schema
JOIN information_schema.referential_constraints AS rc
  ON tc.constraint_name = rc.constraint_name AND rc.constraint_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_name = :table AND tc.table_schema = :schema
ORDER BY kcu.ordinal_position
"""

_PG_INDEXES = """
SELECT indexname, indexdef
FROM pg_indexes
WHERE tablename = :table AND schemaname = :schema
ORDER BY indexname
"""

_PG_CONSTRAINTS = """
SELECT tc.constraint_name, tc.constraint_type, kcu.column_name, cc.check_clause
FROM information_schema.table_constraints tc
LEFT JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
 AND tc.table_name = kcu.table_name
LEFT JOIN information_schema.check_constraints cc
  ON tc.constraint_name = cc.constraint_name AND tc.constraint_schema = cc.constraint_schema
WHERE tc.table_name = :table AND tc.table_schema = :schema AND tc.constraint_type IN ('UNIQUE', 'CHECK')
ORDER BY tc.constraint_name, kcu.ordinal_position
"""

_PG_TABLE_DETAILS = """
SELECT c.reltuples::bigint AS estimate,
       pg_catalog.obj_description(c.oid, 'pg_class') AS table_comment,
       pg_catalog.pg_total_relation_size(c.oid) AS total_size
FROM pg_catalog.pg_class c
WHERE c.oid = to_regclass(:qualified)
"""

_PG_FUNCTIONS = """
SELECT routine_name, routine_type, data_type, external_language, routine_definition
FROM information_schema.routines
WHERE routine_schema = :schema
ORDER BY routine_name
"""

_PG_TRIGGERS = """
SELECT trigger_name, event_manipulation, event_object_table, action_timing, action_statement
FROM information_schema.triggers
WHERE trigger_schema = :schema
ORDER BY trigger_name
"""

_PG_SEQUENCES = """
SELECT sequence_name, start_value, increment, minimum_value, maximum_value, cycle_option
FROM information_schema.sequences
WHERE sequence_schema = :schema
ORDER BY sequence_name
"""


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PostgresDialect(SQLDialect):
    """PostgreSQL through psycopg 3."""

    name = "postgres"
    supports_returning = True
    supports_upsert = True
    supports_ilike = True
    explain_prefix = "EXPLAIN (FORMAT JSON)"
    default_port = 5432
    driver = "postgresql+psycopg"

    def build_url(self, config: Any, credentials: Mapping[str, Any]) -> str | URL:
        connection_string = credentials.get("connection_string") or credentials.get("connectionString") or getattr(config, "url", None)
        if connection_string:
            url = make_url(connection_string)
            if url.drivername in ("postgres", "postgresql"):
                url = url.set(drivername=self.driver)
            return url
        return URL.create(
            self.driver,
            username=credentials.get("user"),
            password=credentials.get("password"),
            host=credentials.get("host") or getattr(config, "host", None) or "localhost",
            port=_as_int(credentials.get("port")) or getattr(config, "port", None) or self.default_port,
            database=credentials.get("database") or getattr(config, "database", None),
        )

    def connect_args(self, config: Any, credentials: Mapping[str, Any]) -> Dict[str, Any]:
        args: Dict[str, Any] = {}
        pool = getattr(config, "pool_config", None)
        if pool is not None:
            args["connect_timeout"] = max(int(pool.connection_timeout_ms / 1000), 1)
        if credentials.get("connect_timeout") or credentials.get("connectTimeout"):
            args["connect_timeout"] = int(credentials.get("connect_timeout") or credentials.get("connectTimeout"))
        application_name = credentials.get("application_name") or getattr(config, "application_name", None)
        if application_name:
            args["application_name"] = application_name
        options = [f"-c statement_timeout={int(getattr(config, 'statement_timeout', 30000))}"]
        search_path = getattr(config, "search_path", None)
        if search_path:
            options.append(f"-c search_path={','.join(search_path)}")
        timezone = getattr(config, "timezone", None)
        if timezone:
            options.append(f"-c timezone={timezone}")
        args["options"] = " ".join(options)
        ssl = getattr(config, "ssl_config", None)
        if ssl is not None:
            if ssl.enabled:
                args["sslmode"] = ssl.mode if ssl.mode and ssl.mode != "disable" else "require"
                if args["sslmode"] == "verify-full" and not ssl.ca:
                    raise ConfigurationError("CA certificate required for verify-full SSL mode", metadata={"connectorType": self.name})
                if ssl.ca:
                    args["sslrootcert"] = ssl.ca
                if ssl.cert:
                    args["sslcert"] = ssl.cert
                if ssl.key:
                    args["sslkey"] = ssl.key
            elif ssl.mode == "disable":
                args["sslmode"] = "disable"
        return args

    def prepare(self, connection: Connection, *, read_only: bool = False, timeout_ms: Optional[int] = None) -> None:
        if read_only:
            connection.exec_driver_sql("SET TRANSACTION READ ONLY")
        if timeout_ms:
            connection.exec_driver_sql(f"SET LOCAL statement_timeout = {int(timeout_ms)}")

    def server_version(self, connection: Connection) -> str:
        return str(connection.execute(text("SELECT version()")).scalar())

    def default_schemas(self, connection: Connection, config: Any) -> List[str]:
        introspection = getattr(config, "introspection", None)
        excluded = set(introspection.excluded_schemas) if introspection is not None else set()
        return [schema for schema in self.list_schemas(connection) if schema not in excluded]

    def list_schemas(self, connection: Connection) -> List[str]:
        return [row.schema_name for row in connection.execute(text(_PG_LIST_SCHEMAS))]

    def list_tables(self, connection: Connection, schema: Optional[str]) -> List[str]:
        return [row.table_name for row in connection.execute(text(_PG_LIST_TABLES), {"schema": schema or "public"})]

    def list_views(self, connection: Connection, schema: Optional[str]) -> List[ViewDefinition]:
        rows = connection.execute(text(_PG_LIST_VIEWS), {"schema": schema or "public"})
        return [ViewDefinition(name=row.table_name, schema=schema or "public", definition=row.view_definition or "") for row in rows]

    def list_functions(self, connection: Connection, schema: Optional[str]) -> List[FunctionDefinition]:
        rows = connection.execute(text(_PG_FUNCTIONS), {"schema": schema or "public"})
        return [
            FunctionDefinition(
                name=row.routine_name,
                schema=schema or "public",
                kind="procedure" if (row.routine_type or "").upper() == "PROCEDURE" else "function",
                return_type=row.data_type,
                definition=row.routine_definition or "",
                language=(row.external_language or "sql").lower(),
            )
            for row in rows
        ]

    def list_triggers(self, connection: Connection, schema: Optional[str]) -> List[TriggerDefinition]:
        rows = connection.execute(text(_PG_TRIGGERS), {"schema": schema or "public"})
        return [
            TriggerDefinition(
                name=row.trigger_name,
                table_name=row.event_object_table,
                schema=schema or "public",
                event=row.event_manipulation,
                timing=row.action_timing,
                definition=row.action_statement or "",
            )
            for row in rows
        ]

    def list_sequences(self, connection: Connection, schema: Optional[str]) -> List[SequenceDefinition]:
        rows = connection.execute(text(_PG_SEQUENCES), {"schema": schema or "public"})
        return [
            SequenceDefinition(
                name=row.sequence_name,
                schema=schema or "public",
                start_value=_as_int(row.start_value) or 1,
                increment=_as_int(row.increment) or 1,
                min_value=_as_int(row.minimum_value),
                max_value=_as_int(row.maximum_value),
                cycle=(row.cycle_option or "").upper() == "YES",
            )
            for row in rows
        ]

    def table_details(self, connection: Connection, table: str, schema: Optional[str]) -> Dict[str, Any]:
        qualified = f"{quote(schema or 'public')}.{quote(table)}"
        row = connection.execute(text(_PG_TABLE_DETAILS), {"qualified": qualified}).first()
        if row is None:
            return {}
        estimate = _as_int(row.estimate)
        return {
            "row_count": estimate if estimate is not None and estimate >= 0 else None,
            "estimated_size": _as_int(row.total_size),
            "comment": row.table_comment,
        }

    def _enum_values(self, connection: Connection, type_name: str) -> List[str]:
        return [row.enumlabel for row in connection.execute(text(_PG_ENUM_VALUES), {"name": type_name})]

    def get_columns(self, connection: Connection, table: str, schema: Optional[str]) -> List[ColumnDefinition]:
        rows = connection.execute(text(_PG_COLUMNS), {"table": table, "schema": schema or "public"}).all()
        columns = []
        for row in rows:
            kind = self.map_type(row.data_type)
            element_type = None
            enum_values = None
            original = row.data_type
            if kind is DatabaseType.ARRAY and row.udt_name:
                element_type = self.map_type(row.udt_name.lstrip("_"))
                original = f"{row.udt_name.lstrip('_')}[]"
            elif kind is DatabaseType.ENUM and row.udt_name:
                enum_values = self._enum_values(connection, row.udt_name)
                original = row.udt_name
            default = row.column_default
            columns.append(
                ColumnDefinition(
                    name=row.column_name,
                    type=kind,
                    nullable=row.is_nullable == "YES",
                    default_value=default,
                    max_length=row.character_maximum_length,
                    precision=row.numeric_precision,
                    scale=row.numeric_scale,
                    enum_values=enum_values,
                    array_dimensions=1 if element_type is not None else None,
                    array_element_type=element_type,
                    comment=row.column_comment,
                    is_auto_increment="nextval" in str(default or ""),
                    original_type=original,
                    metadata={"isNullable": row.is_nullable, "hasDefault": default is not None, "udtName": row.udt_name},
                )
            )
        return columns

    def get_primary_key(self, connection: Connection, table: str, schema: Optional[str]) -> List[str]:
        rows = connection.execute(text(_PG_PRIMARY_KEY), {"table": table, "schema": schema or "public"})
        return [row.column_name for row in rows]

    def get_foreign_keys(self, connection: Connection, table: str, schema: Optional[str]) -> List[ForeignKeyDefinition]:
        rows = connection.execute(text(_PG_FOREIGN_KEYS), {"table": table, "schema": schema or "public"})
        return [
            ForeignKeyDefinition(
                column_name=row.column_name,
                referenced_table=row.foreign_table_name,
                referenced_column=row.foreign_column_name,
                constraint_name=row.constraint_name,
                referenced_schema=row.foreign_table_schema,
                on_update=ReferenceAction.parse(row.update_rule),
                on_delete=ReferenceAction.parse(row.delete_rule),
            )
            for row in rows
        ]

    def get_indexes(self, connection: Connection, table: str, schema: Optional[str]) -> List[IndexDefinition]:
        indexes = []
        for row in connection.execute(text(_PG_INDEXES), {"table": table, "schema": schema or "public"}):
            match = _INDEX_DEF.search(row.indexdef or "")
            method = match.group(1).lower() if match else "btree"
            columns = [part.strip().strip('"') for part in match.group(2).split(",")] if match else []
            try:
                index_type = IndexType(method)
            except ValueError:
                index_type = IndexType.BTREE
            indexes.append(
                IndexDefinition(
                    name=row.indexname,
                    table_name=table,
                    columns=columns,
                    type=index_type,
                    is_unique="UNIQUE" in (row.indexdef or "").upper(),
                    is_primary_key=row.indexname.endswith("_pkey"),
                    condition=match.group(3) if match else None,
                    metadata={"definition": row.indexdef},
                )
            )
        return indexes

    def get_constraints(self, connection: Connection, table: str, schema: Optional[str]) -> List[ConstraintDefinition]:
        grouped: "OrderedDict[str, Tuple[str, List[str], Optional[str]]]" = OrderedDict()
        for row in connection.execute(text(_PG_CONSTRAINTS), {"table": table, "schema": schema or "public"}):
            if row.constraint_type == "CHECK" and row.constraint_name.endswith("_not_null"):
                continue
            kind, columns, clause = grouped.get(row.constraint_name, (row.constraint_type, [], row.check_clause))
            if row.column_name and row.column_name not in columns:
                columns.append(row.column_name)
            grouped[row.constraint_name] = (kind, columns, clause)
        return [
            ConstraintDefinition(
                name=name,
                type=ConstraintType.UNIQUE if kind == "UNIQUE" else ConstraintType.CHECK,
                table_name=table,
                columns=columns,
                check_expression=clause if kind == "CHECK" else None,
            )
            for name, (kind, columns, clause) in grouped.items()
        ]

    def type_mapping(self) -> Dict[str, str]:
        return {
            DatabaseType.INTEGER.value: "integer",
            DatabaseType.BIGINT.value: "bigint",
            DatabaseType.DECIMAL.value: "decimal",
            DatabaseType.NUMERIC.value: "numeric",
            DatabaseType.REAL.value: "real",
            DatabaseType.DOUBLE.value: "double precision",
            DatabaseType.FLOAT.value: "real",
            DatabaseType.SERIAL.value: "serial",
            DatabaseType.BIGSERIAL.value: "bigserial",
            DatabaseType.TEXT.value: "text",
            DatabaseType.VARCHAR.value: "varchar",
            DatabaseType.CHAR.value: "char",
            DatabaseType.UUID.value: "uuid",
            DatabaseType.DATE.value: "date",
            DatabaseType.TIME.value: "time",
            DatabaseType.TIMESTAMP.value: "timestamp",
            DatabaseType.TIMESTAMPTZ.value: "timestamptz",
            DatabaseType.INTERVAL.value: "interval",
            DatabaseType.BOOLEAN.value: "boolean",
            DatabaseType.JSON.value: "json",
            DatabaseType.JSONB.value: "jsonb",
            DatabaseType.BYTEA.value: "bytea",
            DatabaseType.ARRAY.value: "text[]",
        }


def dialect_for(kind: str) -> SQLDialect:
    """Return the dialect registered for ``kind`` (``postgres``, ``sqlite``, anything else → inspector-based)."""

    normalised = kind.lower()
    if normalised in ("postgres", "postgresql", "supabase"):
        return PostgresDialect()
    if normalised == "sqlite":
        return SQLiteDialect()
    return GenericDialect()


__all__ = [
    "GenericDialect",
    "PostgresDialect",
    "SQLDialect",
    "SQLiteDialect",
    "dialect_for",
    "map_native_type",
    "quote",
]
