"""
Relational connector built from a :class:`ConnectionPool`, an
:class:`~connector_sdk.connectors.sql.dialects.SQLDialect` and a
:class:`~connector_sdk.connectors.sql.builder.SQLQueryBuilder`.

The same class serves every SQLAlchemy backend; :class:`PostgresConnector` and
:class:`SQLiteConnector` only pin the dialect and the configuration model.
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from sqlalchemy import create_engine, exc as sa_exc, text
from sqlalchemy.engine import Connection, Engine, RootTransaction
from tenacity import retry, retry_if_exception, stop_after_attempt

from ...conversion import (
    DataValidationResult,
    TypeConversionConfig,
    TypeConverter,
    deserialize_value,
    escape_literal,
    serialize_value,
)
from ...core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectorConnectionError,
    ConnectorError,
    QueryError,
    TableNotFoundError,
    ValidationError,
    wrap_database_error,
)
from ...core.logging import get_logger
from ...core.schema import (
    ColumnDefinition,
    ConstraintDefinition,
    ConstraintType,
    DatabaseSchema,
    DatabaseType,
    ForeignKeyDefinition,
    ForeignKeyReference,
    IndexDefinition,
    SchemaComparison,
    TableDefinition,
    schema_version,
)
from ...introspection import compare_schemas, generate_schema_diff
from ...resilience import BackoffWait, ConnectionPool, PoolSettings, is_retryable_exception
from ..base import (
    BuiltQuery,
    BulkOperationOptions,
    ConfigValidationResult,
    ConnectionEvents,
    ConnectionMetrics,
    ConnectionState,
    ConnectionValidationResult,
    DataOperationOptions,
    FilterOptions,
    HealthCheckItem,
    HealthCheckResult,
    IntrospectionOptions,
    QueryContext,
    QueryResult,
    QueryStats,
    Stopwatch,
    batched,
    collect_config_errors,
    not_connected,
    parse_config,
    resolve_credentials,
    utcnow,
)
from .builder import OnConflict, SQLQueryBuilder, to_named
from .config import PostgresConnectorConfig, SQLConnectorConfig, SQLiteConnectorConfig, postgres_config_rules
from .dialects import PostgresDialect, SQLDialect, SQLiteDialect, dialect_for

SQL_CAPABILITIES = [
    "read",
    "write",
    "schema_introspection",
    "transactions",
    "bulk_operations",
    "query_building",
    "connection_pooling",
]

Operation = Any


class SQLTransaction:
    """
    Explicit transaction holding one pooled connection until it finishes.

    Use as a context manager to commit on success and roll back when the
    block raises::

        with connector.begin_transaction() as tx:
            tx.execute("UPDATE accounts SET balance = balance - 10 WHERE id = :id", {"id": 1})
            tx.savepoint("before_credit")
    """

    def __init__(self, connector: "SQLConnector", connection: Connection, transaction: RootTransaction) -> None:
        self.id = uuid.uuid4().hex
        self.status = "active"
        self.started_at = utcnow()
        self._connector = connector
        self._connection = connection
        self._transaction = transaction
        self._savepoints: List[str] = []

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def savepoints(self) -> List[str]:
        return list(self._savepoints)

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise QueryError(f"Cannot {action} outside transaction", metadata={"transactionId": self.id, "status": self.status})

    def execute(self, query: str, parameters: Any = None) -> QueryResult:
        self._require_active("execute query")
        sql, params = to_named(query, parameters)
        try:
            return self._connector._execute_on(self._connection, sql, params)
        except sa_exc.SQLAlchemyError as exc:
            # a failed statement poisons the transaction; roll back before surfacing it
            try:
                self.rollback()
            except ConnectorError as rollback_error:
                self._connector.logger.error(
                    "Transaction rollback failed", extra={"transaction": self.id, "error": rollback_error.message}
                )
            raise wrap_database_error(exc, query=sql, operation="transaction") from exc

    def savepoint(self, name: Optional[str] = None) -> str:
        self._require_active("create savepoint")
        name = name or f"sp_{len(self._savepoints) + 1}"
        self._driver_sql(f"SAVEPOINT {self._connector.escape_identifier(name)}")
        self._savepoints.append(name)
        return name

    def rollback_to_savepoint(self, name: str) -> None:
        self._require_active("rollback to savepoint")
        if name not in self._savepoints:
            raise QueryError(f"Unknown savepoint: {name}", metadata={"transactionId": self.id})
        self._driver_sql(f"ROLLBACK TO SAVEPOINT {self._connector.escape_identifier(name)}")
        del self._savepoints[self._savepoints.index(name) + 1 :]

    def release_savepoint(self, name: str) -> None:
        self._require_active("release savepoint")
        if name not in self._savepoints:
            raise QueryError(f"Unknown savepoint: {name}", metadata={"transactionId": self.id})
        self._driver_sql(f"RELEASE SAVEPOINT {self._connector.escape_identifier(name)}")
        del self._savepoints[self._savepoints.index(name) :]

    def _driver_sql(self, statement: str) -> None:
        try:
            self._connection.exec_driver_sql(statement)
        except sa_exc.SQLAlchemyError as exc:
            raise wrap_database_error(exc, query=statement, operation="transaction") from exc

    def commit(self) -> None:
        self._require_active("commit")
        try:
            self._transaction.commit()
            self.status = "committed"
        except sa_exc.SQLAlchemyError as exc:
            self.status = "aborted"
            raise wrap_database_error(exc, operation="commit") from exc
        finally:
            self._close()

    def rollback(self) -> None:
        if not self.is_active:
            return
        try:
            self._transaction.rollback()
        except sa_exc.SQLAlchemyError as exc:
            raise wrap_database_error(exc, operation="rollback") from exc
        finally:
            self.status = "aborted"
            self._close()

    def _close(self) -> None:
        if self._connection is not None:
            self._connector._release(self._connection)
            self._connection = None  # type: ignore[assignment]

    def __enter__(self) -> "SQLTransaction":
        return self

    def __exit__(self, exc_type: Any, exc: Any, traceback: Any) -> None:
        if exc_type is None and self.is_active:
            self.commit()
        else:
            self.rollback()


class SQLConnector:
    """
    Connector for relational databases reachable through SQLAlchemy.

    Parameters
    ----------
    config:
        Optional configuration validated up front; :meth:`connect` accepts one
        as well.
    credentials_provider:
        Collaborator resolving ``credentials_secret_id``.
    dialect:
        Dialect strategy; defaults to the one matching :attr:`type`.
    conversion_config:
        Options for the type conversion engine used by :meth:`validate_data`.
    engine_factory:
        Replacement for :func:`sqlalchemy.create_engine`, used by tests.
    sleep:
        Function used between connection retries.
    """

    type = "sql"
    version = "1.0.0"
    config_model: Type[SQLConnectorConfig] = SQLConnectorConfig

    def __init__(
        self,
        config: Any = None,
        *,
        credentials_provider: Any = None,
        dialect: Optional[SQLDialect] = None,
        conversion_config: Optional[TypeConversionConfig] = None,
        engine_factory: Callable[..., Engine] = create_engine,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config: Optional[SQLConnectorConfig] = parse_config(self.config_model, config) if config is not None else None
        self.credentials_provider = credentials_provider
        self.dialect = dialect or dialect_for(self.type)
        self.builder = SQLQueryBuilder(self.dialect)
        self.converter = TypeConverter(conversion_config)
        self.capabilities = list(SQL_CAPABILITIES)
        self.state = ConnectionState.DISCONNECTED
        self.events = ConnectionEvents()
        self.stats = QueryStats()
        self.server_version: Optional[str] = None
        self.pool: Optional[ConnectionPool] = None
        self._engine_factory = engine_factory
        self._sleep = sleep
        self._lock = threading.RLock()
        self._primary_keys: Dict[str, List[str]] = {}
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}", extra={"connector": self.type})

    # Lifecycle --------------------------------------------------------------

    def _coerce_config(self, config: Any) -> SQLConnectorConfig:
        if config is None:
            if self.config is None:
                raise ConfigurationError("No configuration provided")
            return self.config
        return parse_config(self.config_model, config)

    def _build_pool(self, config: SQLConnectorConfig, credentials: Mapping[str, Any], *, settings: Optional[PoolSettings] = None) -> ConnectionPool:
        if settings is None:
            pool_config = config.pool_config
            settings = PoolSettings()
            if pool_config is not None:
                settings = PoolSettings(
                    min_size=pool_config.min,
                    max_size=pool_config.max,
                    idle_timeout_ms=pool_config.idle_timeout_ms,
                    connection_timeout_ms=pool_config.connection_timeout_ms,
                    acquire_timeout_ms=pool_config.acquire_timeout_ms,
                )
        try:
            url = self.dialect.build_url(config, credentials)
        except (ValueError, sa_exc.ArgumentError) as exc:
            raise ConfigurationError(f"Invalid connection URL: {exc}", cause=exc) from exc
        return ConnectionPool(
            url,
            settings,
            connect_args=self.dialect.connect_args(config, credentials),
            configure_engine=lambda engine: self.dialect.configure_engine(engine, config),
            engine_factory=self._engine_factory,
            poolclass=self.dialect.poolclass(config),
        )

    def _open(self, pool: ConnectionPool, config: SQLConnectorConfig) -> str:
        policy = config.retry_policy

        @retry(
            retry=retry_if_exception(is_retryable_exception),
            wait=BackoffWait(base_delay_ms=policy.base_delay, max_delay_ms=policy.max_delay, jitter=policy.jitter),
            stop=stop_after_attempt(policy.max_attempts),
            sleep=self._sleep,
            reraise=True,
        )
        def _attempt() -> str:
            try:
                pool.initialize()
                with pool.connection() as connection:
                    connection.execute(text("SELECT 1"))
                    version = self.dialect.server_version(connection)
                    connection.rollback()
                return version
            except sa_exc.SQLAlchemyError as exc:
                pool.clear()
                raise wrap_database_error(exc, operation="connect", host=config.host, port=config.port) from exc
            except ConnectorError:
                pool.clear()
                raise

        return _attempt()

    def connect(self, config: Any = None, events: Optional[ConnectionEvents] = None) -> None:
        """Open the pool, pre-warm it and verify it with ``SELECT 1``."""

        with self._lock:
            config = self._coerce_config(config)
            reconnecting = self.is_connected()
            if reconnecting:
                self._close_pool()
            self.config = config
            if events is not None:
                self.events = events
            self.state = ConnectionState.CONNECTING
            self.logger.info("Connecting", extra={"type": self.type, "database": config.database, "status": "connecting"})
            pool: Optional[ConnectionPool] = None
            try:
                credentials = resolve_credentials(self.credentials_provider, config.credentials_secret_id, connector_type=self.type)
                pool = self._build_pool(config, credentials)
                self.server_version = self._open(pool, config)
            except (ConnectorError, sa_exc.SQLAlchemyError, OSError) as exc:
                if pool is not None:
                    pool.clear()
                self.pool = None
                self.state = ConnectionState.DISCONNECTED
                error = exc if isinstance(exc, (AuthenticationError, ConnectorConnectionError)) else None
                if error is None:
                    error = ConnectorConnectionError(f"Failed to connect: {exc}", cause=exc, metadata={"connectorType": self.type})
                self.logger.error("Connection failed", extra={"type": self.type, "error": str(exc)})
                self.events.emit("on_error", error)
                if error is exc:
                    raise
                raise error from exc
            self.pool = pool
            self.state = ConnectionState.CONNECTED
            self.stats.touch()
            self.logger.info("Connected", extra={"type": self.type, "server_version": self.server_version, "status": "connected"})
            self.events.emit("on_reconnect" if reconnecting else "on_connect")

    def _close_pool(self) -> None:
        pool, self.pool = self.pool, None
        if pool is not None:
            pool.clear()

    def disconnect(self) -> None:
        with self._lock:
            was_connected = self.pool is not None
            self._close_pool()
            self.state = ConnectionState.DISCONNECTED
            if was_connected:
                self.logger.info("Disconnected", extra={"type": self.type, "status": "disconnected"})
                self.events.emit("on_disconnect")

    def cleanup(self) -> None:
        self.disconnect()
        self.converter.clear_cache()
        self._primary_keys.clear()

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.pool is not None and self.pool.is_initialized

    def _ensure_connected(self) -> ConnectionPool:
        pool = self.pool
        if not self.is_connected() or pool is None:
            raise not_connected(self.type)
        return pool

    def _release(self, connection: Connection) -> None:
        pool = self.pool
        if pool is not None:
            pool.release(connection)
        else:
            connection.close()

    def get_connection_status(self) -> ConnectionValidationResult:
        metadata: Dict[str, Any] = {"state": self.state.value}
        if self.pool is not None and self.pool.is_initialized:
            metadata["pool"] = self.pool.get_stats().to_dict()
        return ConnectionValidationResult(
            is_valid=self.is_connected(),
            server_version=self.server_version,
            capabilities=list(self.capabilities),
            metadata=metadata,
        )

    def validate_connection(self, config: Any) -> ConnectionValidationResult:
        """Probe ``config`` with a temporary single-connection pool; never raises."""

        watch = Stopwatch()
        pool: Optional[ConnectionPool] = None
        try:
            parsed = self._coerce_config(config)
            credentials = resolve_credentials(self.credentials_provider, parsed.credentials_secret_id, connector_type=self.type)
            pool = self._build_pool(parsed, credentials, settings=PoolSettings(min_size=1, max_size=1))
            pool.initialize()
            with pool.connection() as connection:
                connection.execute(text("SELECT 1"))
                version = self.dialect.server_version(connection)
                connection.rollback()
        except (ConnectorError, sa_exc.SQLAlchemyError, OSError) as exc:
            error = wrap_database_error(exc, operation="connect")
            return ConnectionValidationResult(is_valid=False, latency_ms=watch.elapsed_ms, error=error)
        finally:
            if pool is not None:
                pool.clear()
        return ConnectionValidationResult(
            is_valid=True,
            latency_ms=watch.elapsed_ms,
            server_version=version,
            capabilities=list(self.capabilities),
        )

    def _config_rules(self, payload: Mapping[str, Any]) -> List[str]:
        return []

    def validate_configuration(self, config: Any) -> ConfigValidationResult:
        payload = config.model_dump() if hasattr(config, "model_dump") else dict(config or {})
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(self._config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def test_query(self, query: Optional[str] = None, context: Optional[QueryContext] = None) -> QueryResult:
        return self.execute_query(query or "SELECT 1 AS test", context=context)

    # Execution --------------------------------------------------------------

    def _read_only(self, context: Optional[QueryContext]) -> bool:
        return bool((self.config is not None and self.config.read_only) or (context is not None and context.read_only))

    def _execute_on(self, connection: Connection, sql: str, params: Mapping[str, Any]) -> QueryResult:
        watch = Stopwatch()
        cursor = connection.execute(text(sql), dict(params))
        insert_id = None
        if sql.lstrip()[:6].upper() == "INSERT":
            insert_id = cursor.lastrowid or None
        if cursor.returns_rows:
            rows = [dict(row._mapping) for row in cursor]
            affected: Optional[int] = len(rows)
        else:
            rows = []
            affected = cursor.rowcount if cursor.rowcount is not None and cursor.rowcount >= 0 else None
        elapsed = watch.elapsed_ms
        self.stats.record(elapsed)
        self.events.emit("on_query", sql, elapsed)
        self.logger.debug("Query executed", extra={"type": self.type, "duration": round(elapsed, 2), "rows": len(rows)})
        return QueryResult(
            success=True,
            data=rows,
            total_count=len(rows) if cursor.returns_rows else None,
            affected_rows=affected,
            insert_id=insert_id,
            execution_time_ms=elapsed,
        )

    def _failure(self, exc: BaseException, *, sql: Optional[str], watch: Stopwatch, context: Optional[QueryContext], **metadata: Any) -> QueryResult:
        timeout_ms = context.timeout_ms if context is not None and context.timeout_ms else None
        if timeout_ms is None and self.config is not None:
            timeout_ms = self.config.query_timeout
        error = wrap_database_error(exc, query=sql, timeout_ms=timeout_ms)
        self.logger.warning("Query failed", extra={"type": self.type, "code": error.code, "duration": round(watch.elapsed_ms, 2)})
        self.events.emit("on_error", error)
        return QueryResult.failure(error, execution_time_ms=watch.elapsed_ms, **metadata)

    def execute_query(self, query: str, parameters: Any = None, context: Optional[QueryContext] = None) -> QueryResult:
        """
        Run one statement in its own transaction.

        ``parameters`` may be a mapping for ``:name`` placeholders or a
        sequence for ``$1`` / ``?`` placeholders. Backend failures are returned
        as ``QueryResult(success=False)``.
        """

        pool = self._ensure_connected()
        watch = Stopwatch()
        sql: Optional[str] = query
        read_only = self._read_only(context)
        try:
            sql, params = to_named(query, parameters)
            with pool.connection() as connection:
                with connection.begin():
                    self.dialect.prepare(connection, read_only=read_only, timeout_ms=context.timeout_ms if context else None)
                    try:
                        return self._execute_on(connection, sql, params)
                    finally:
                        self.dialect.finish(connection, read_only=read_only)
        except (ConnectorError, sa_exc.SQLAlchemyError) as exc:
            return self._failure(exc, sql=sql, watch=watch, context=context)

    @staticmethod
    def _normalise_operation(operation: Operation) -> Tuple[str, Any]:
        if isinstance(operation, BuiltQuery):
            return operation.text, operation.parameters
        if isinstance(operation, str):
            return operation, None
        if isinstance(operation, Mapping):
            query = operation.get("query") or operation.get("sql")
            if not query:
                raise ValidationError("Transaction operation is missing its query")
            return query, operation.get("parameters", operation.get("params"))
        if isinstance(operation, (tuple, list)) and operation:
            return operation[0], operation[1] if len(operation) > 1 else None
        raise ValidationError(f"Unsupported transaction operation: {operation!r}")

    def execute_transaction(self, operations: Sequence[Operation], context: Optional[QueryContext] = None) -> QueryResult:
        """
        Run ``operations`` atomically.

        Every statement succeeds or the whole transaction is rolled back
        before the failure is returned; ``metadata["failedOperation"]`` holds
        the index of the statement that failed.
        """

        pool = self._ensure_connected()
        watch = Stopwatch()
        read_only = self._read_only(context)
        results: List[Dict[str, Any]] = []
        current = -1
        sql: Optional[str] = None
        try:
            statements = [self._normalise_operation(operation) for operation in operations]
            with pool.connection() as connection:
                with connection.begin():
                    self.dialect.prepare(connection, read_only=read_only, timeout_ms=context.timeout_ms if context else None)
                    try:
                        for current, (query, parameters) in enumerate(statements):
                            sql, params = to_named(query, parameters)
                            outcome = self._execute_on(connection, sql, params)
                            results.append({"index": current, "rows": outcome.data, "affectedRows": outcome.affected_rows})
                    finally:
                        self.dialect.finish(connection, read_only=read_only)
        except (ConnectorError, sa_exc.SQLAlchemyError) as exc:
            self.logger.warning("Transaction rolled back", extra={"type": self.type, "step": current})
            return self._failure(exc, sql=sql, watch=watch, context=context, failedOperation=current)
        return QueryResult(
            success=True,
            data=results,
            affected_rows=sum(item["affectedRows"] or 0 for item in results),
            execution_time_ms=watch.elapsed_ms,
            metadata={"operations": len(results)},
        )

    def begin_transaction(self, context: Optional[QueryContext] = None) -> SQLTransaction:
        pool = self._ensure_connected()
        connection = pool.acquire()
        try:
            transaction = connection.begin()
            self.dialect.prepare(connection, read_only=self._read_only(context), timeout_ms=context.timeout_ms if context else None)
        except sa_exc.SQLAlchemyError as exc:
            pool.release(connection)
            raise wrap_database_error(exc, operation="begin") from exc
        return SQLTransaction(self, connection, transaction)

    def get_query_execution_plan(self, query: str, parameters: Any = None) -> QueryResult:
        return self.execute_query(f"{self.dialect.explain_prefix} {query}", parameters, QueryContext(read_only=True))

    # Builders ---------------------------------------------------------------

    def _target(self, table_name: str, schema_name: Optional[str] = None) -> Tuple[str, Optional[str]]:
        if schema_name is None and "." in table_name:
            schema_name, table_name = table_name.split(".", 1)
        return table_name, schema_name or self._default_schema()

    def _default_schema(self) -> Optional[str]:
        return self.config.default_schema if self.config is not None else None

    def build_select_query(
        self,
        table_name: str,
        options: Optional[DataOperationOptions] = None,
        *,
        columns: Optional[Sequence[str]] = None,
        criteria: Optional[Mapping[str, Any]] = None,
    ) -> BuiltQuery:
        table, schema = self._target(table_name)
        return self.builder.build_select(table, schema=schema, columns=columns, criteria=criteria, options=options)

    def build_insert_query(
        self,
        table_name: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        returning: Optional[Sequence[str]] = None,
        on_conflict: Optional[OnConflict] = None,
    ) -> BuiltQuery:
        table, schema = self._target(table_name)
        return self.builder.build_insert(table, data, schema=schema, returning=returning, on_conflict=on_conflict)

    def build_update_query(
        self,
        table_name: str,
        data: Mapping[str, Any],
        criteria: Mapping[str, Any],
        *,
        returning: Optional[Sequence[str]] = None,
    ) -> BuiltQuery:
        table, schema = self._target(table_name)
        return self.builder.build_update(table, data, criteria, schema=schema, returning=returning)

    def build_delete_query(self, table_name: str, criteria: Mapping[str, Any], *, returning: Optional[Sequence[str]] = None) -> BuiltQuery:
        table, schema = self._target(table_name)
        return self.builder.build_delete(table, criteria, schema=schema, returning=returning)

    # Data -------------------------------------------------------------------

    def _run_built(self, build: Callable[[], BuiltQuery], context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        try:
            built = build()
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self.execute_query(built.text, built.parameters, context)

    def _returning(self, returning: Optional[Sequence[str]]) -> Optional[Sequence[str]]:
        if returning is not None:
            return returning
        return ["*"] if self.dialect.supports_returning else None

    def get_table_data(self, table_name: str, options: Optional[DataOperationOptions] = None) -> QueryResult:
        options = options or DataOperationOptions()
        context = options.context
        result = self._run_built(lambda: self.build_select_query(table_name, options), context)
        if not result.success or options.pagination is None:
            return result
        count = self.count_records(table_name, filters=options.filters, context=context)
        if count.success:
            result.total_count = count.total_count
        return result

    def count_records(
        self,
        table_name: str,
        criteria: Optional[Mapping[str, Any]] = None,
        *,
        filters: Optional[FilterOptions] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        table, schema = self._target(table_name)
        result = self._run_built(lambda: self.builder.build_count(table, schema=schema, criteria=criteria, filters=filters), context)
        if result.success:
            total = int(result.data[0]["count"]) if result.data else 0
            result.total_count = total
            result.data = [{"count": total}]
        return result

    def insert_record(
        self,
        table_name: str,
        data: Mapping[str, Any],
        *,
        returning: Optional[Sequence[str]] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        return self._run_built(lambda: self.build_insert_query(table_name, data, returning=self._returning(returning)), context)

    def _primary_key_of(self, table_name: str) -> str:
        table, schema = self._target(table_name)
        key = f"{schema}.{table}"
        if key not in self._primary_keys:
            self._primary_keys[key] = self.get_table_primary_key(table, schema)
        columns = self._primary_keys[key]
        return columns[0] if columns else "id"

    def update_record(
        self,
        table_name: str,
        record_id: Any,
        data: Mapping[str, Any],
        *,
        id_column: Optional[str] = None,
        returning: Optional[Sequence[str]] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        self._ensure_connected()
        try:
            column = id_column or self._primary_key_of(table_name)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self.update_records(table_name, {column: record_id}, data, returning=returning, context=context)

    def update_records(
        self,
        table_name: str,
        criteria: Mapping[str, Any],
        data: Mapping[str, Any],
        *,
        returning: Optional[Sequence[str]] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        return self._run_built(
            lambda: self.build_update_query(table_name, data, criteria, returning=self._returning(returning)), context
        )

    def delete_record(
        self,
        table_name: str,
        record_id: Any,
        *,
        id_column: Optional[str] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        self._ensure_connected()
        try:
            column = id_column or self._primary_key_of(table_name)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self.delete_records(table_name, {column: record_id}, context=context)

    def delete_records(self, table_name: str, criteria: Mapping[str, Any], *, context: Optional[QueryContext] = None) -> QueryResult:
        return self._run_built(lambda: self.build_delete_query(table_name, criteria), context)

    def upsert_record(
        self,
        table_name: str,
        data: Mapping[str, Any],
        conflict_columns: Sequence[str],
        *,
        update_columns: Optional[Sequence[str]] = None,
        returning: Optional[Sequence[str]] = None,
        context: Optional[QueryContext] = None,
    ) -> QueryResult:
        on_conflict = OnConflict(list(conflict_columns), update_columns=list(update_columns) if update_columns is not None else None)
        return self._run_built(
            lambda: self.build_insert_query(table_name, data, returning=self._returning(returning), on_conflict=on_conflict),
            context,
        )

    def _bulk(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        options: Optional[BulkOperationOptions],
        on_conflict: Optional[OnConflict] = None,
    ) -> QueryResult:
        self._ensure_connected()
        options = options or BulkOperationOptions()
        watch = Stopwatch()
        if not data:
            return QueryResult(success=True, affected_rows=0, execution_time_ms=0.0)
        statements: List[BuiltQuery] = []
        try:
            for batch in batched(list(data), options.batch_size):
                groups: Dict[Tuple[str, ...], List[Mapping[str, Any]]] = {}
                for record in batch:
                    groups.setdefault(tuple(record), []).append(record)
                for rows in groups.values():
                    statements.append(self.build_insert_query(table_name, rows, returning=options.returning, on_conflict=on_conflict))
        except ConnectorError as exc:
            return QueryResult.failure(exc)

        if not options.continue_on_error:
            result = self.execute_transaction(statements, options.context)
            if not result.success:
                return result
            rows = [row for item in result.data for row in item["rows"]]
            return QueryResult(
                success=True,
                data=rows,
                affected_rows=result.affected_rows,
                execution_time_ms=watch.elapsed_ms,
                metadata={"batches": len(statements)},
            )

        rows: List[Dict[str, Any]] = []
        affected = 0
        warnings: List[str] = []
        for index, statement in enumerate(statements):
            outcome = self.execute_query(statement.text, statement.parameters, options.context)
            if outcome.success:
                rows.extend(outcome.data)
                affected += outcome.affected_rows or 0
            else:
                warnings.append(f"Batch {index + 1} failed: {outcome.error.message if outcome.error else 'unknown error'}")
        return QueryResult(
            success=len(warnings) < len(statements),
            data=rows,
            affected_rows=affected,
            execution_time_ms=watch.elapsed_ms,
            warnings=warnings,
            metadata={"batches": len(statements), "failedBatches": len(warnings)},
        )

    def insert_records(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Optional[BulkOperationOptions] = None) -> QueryResult:
        """Insert rows in ``batch_size`` chunks; all-or-nothing unless ``continue_on_error`` is set."""

        return self._bulk(table_name, data, options)

    def bulk_upsert(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        options: Optional[BulkOperationOptions] = None,
    ) -> QueryResult:
        return self._bulk(table_name, data, options, on_conflict=OnConflict(list(conflict_columns)))

    def validate_data(self, table_name: str, data: Mapping[str, Any], mode: str = "full") -> DataValidationResult:
        """Validate ``data`` against the introspected definition of ``table_name``."""

        table, schema = self._target(table_name)
        return self.converter.validate(self.get_table_definition(table, schema), data, mode)

    # Discovery --------------------------------------------------------------

    def _wrap_discovery(self, exc: sa_exc.SQLAlchemyError, table: Optional[str] = None) -> ConnectorError:
        if isinstance(exc, sa_exc.NoSuchTableError):
            return TableNotFoundError(table or str(exc), cause=exc)
        return wrap_database_error(exc, table=table, operation="introspect")

    def list_schemas(self) -> List[str]:
        pool = self._ensure_connected()
        try:
            with pool.connection() as connection:
                return self.dialect.list_schemas(connection)
        except sa_exc.SQLAlchemyError as exc:
            raise self._wrap_discovery(exc) from exc

    def list_tables(self, schema_name: Optional[str] = None) -> List[str]:
        pool = self._ensure_connected()
        try:
            with pool.connection() as connection:
                return self.dialect.list_tables(connection, schema_name or self._default_schema())
        except sa_exc.SQLAlchemyError as exc:
            raise self._wrap_discovery(exc) from exc

    def _accepts(self, table_name: str, options: IntrospectionOptions) -> bool:
        if not options.accepts(table_name):
            return False
        settings = self.config.introspection if self.config is not None else None
        if settings is None:
            return True
        if settings.included_tables and table_name not in settings.included_tables:
            return False
        return table_name not in settings.excluded_tables

    def introspect_schema(self, options: Optional[IntrospectionOptions] = None) -> DatabaseSchema:
        """
        Discover tables, views and optional routines into a :class:`DatabaseSchema`.

        Tables are loaded one by one, or concurrently when
        ``options.concurrency`` is greater than one; the result is ordered by
        schema then table name either way.
        """

        pool = self._ensure_connected()
        options = options or IntrospectionOptions()
        config = self._coerce_config(None)
        if not config.introspection.enabled:
            raise ConfigurationError("Schema introspection is disabled for this connector", field="introspection")
        watch = Stopwatch()
        targets: List[Tuple[Optional[str], str]] = []
        schema = DatabaseSchema(name=config.database or config.name)
        try:
            with pool.connection() as connection:
                schemas = options.schema_filter or self.dialect.default_schemas(connection, config)
                for schema_name in schemas:
                    targets.extend((schema_name, name) for name in self.dialect.list_tables(connection, schema_name) if self._accepts(name, options))
                    if options.include_views:
                        schema.views.extend(self.dialect.list_views(connection, schema_name))
                    if options.include_functions or options.include_procedures:
                        for routine in self.dialect.list_functions(connection, schema_name):
                            wanted = options.include_procedures if routine.kind == "procedure" else options.include_functions
                            if wanted:
                                schema.functions.append(routine)
                    if options.include_triggers:
                        schema.triggers.extend(self.dialect.list_triggers(connection, schema_name))
                    if options.include_sequences:
                        schema.sequences.extend(self.dialect.list_sequences(connection, schema_name))
                server_version = self.dialect.server_version(connection)
                connection.rollback()
        except sa_exc.SQLAlchemyError as exc:
            raise self._wrap_discovery(exc) from exc

        limit = options.max_tables or config.introspection.max_tables
        if len(targets) > limit:
            self.logger.warning("Table limit reached during introspection", extra={"type": self.type, "limit": limit, "found": len(targets)})
            targets = targets[:limit]

        def _load(target: Tuple[Optional[str], str]) -> TableDefinition:
            return self.get_table_definition(target[1], target[0], options=options)

        if options.concurrency > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=options.concurrency) as executor:
                schema.tables = list(executor.map(_load, targets))
        else:
            schema.tables = [_load(target) for target in targets]

        schema.version = schema_version(schema)
        schema.metadata = {
            "connectorType": self.type,
            "serverVersion": server_version,
            "introspectedAt": utcnow().isoformat(),
            "schemas": list(schemas),
            "durationMs": round(watch.elapsed_ms, 2),
        }
        self.converter.clear_cache()
        self.logger.info("Schema introspected", extra={"type": self.type, "tables": len(schema.tables), "duration": round(watch.elapsed_ms, 2)})
        return schema

    def get_table_definition(
        self,
        table_name: str,
        schema_name: Optional[str] = None,
        *,
        options: Optional[IntrospectionOptions] = None,
    ) -> TableDefinition:
        pool = self._ensure_connected()
        options = options or IntrospectionOptions()
        table, schema = self._target(table_name, schema_name)
        try:
            with pool.connection() as connection:
                columns = self.dialect.get_columns(connection, table, schema)
                if not columns:
                    raise TableNotFoundError(table, schema)
                primary_key = self.dialect.get_primary_key(connection, table, schema)
                foreign_keys = self.dialect.get_foreign_keys(connection, table, schema)
                indexes = self.dialect.get_indexes(connection, table, schema) if options.include_indexes else []
                constraints = self.dialect.get_constraints(connection, table, schema) if options.include_constraints else []
                details = self.dialect.table_details(connection, table, schema)
                connection.rollback()
        except sa_exc.SQLAlchemyError as exc:
            raise self._wrap_discovery(exc, table) from exc

        _annotate_columns(columns, primary_key, foreign_keys, indexes, constraints)
        constraints = _key_constraints(table, primary_key, foreign_keys) + constraints
        return TableDefinition(
            name=table,
            schema=schema or "",
            columns=columns,
            indexes=indexes,
            constraints=constraints,
            primary_key=primary_key,
            foreign_keys=foreign_keys,
            comment=details.get("comment"),
            row_count=details.get("row_count"),
            estimated_size=details.get("estimated_size"),
        )

    def _discover(self, method: Callable[[Connection, str, Optional[str]], Any], table_name: str, schema_name: Optional[str]) -> Any:
        pool = self._ensure_connected()
        table, schema = self._target(table_name, schema_name)
        try:
            with pool.connection() as connection:
                return method(connection, table, schema)
        except sa_exc.SQLAlchemyError as exc:
            raise self._wrap_discovery(exc, table) from exc

    def get_table_columns(self, table_name: str, schema_name: Optional[str] = None) -> List[ColumnDefinition]:
        return self._discover(self.dialect.get_columns, table_name, schema_name)

    def get_table_primary_key(self, table_name: str, schema_name: Optional[str] = None) -> List[str]:
        return self._discover(self.dialect.get_primary_key, table_name, schema_name)

    def get_table_foreign_keys(self, table_name: str, schema_name: Optional[str] = None) -> List[ForeignKeyDefinition]:
        return self._discover(self.dialect.get_foreign_keys, table_name, schema_name)

    def get_table_indexes(self, table_name: str, schema_name: Optional[str] = None) -> List[IndexDefinition]:
        return self._discover(self.dialect.get_indexes, table_name, schema_name)

    def compare_schemas(self, source: DatabaseSchema, target: DatabaseSchema) -> SchemaComparison:
        return compare_schemas(source, target)

    def generate_schema_diff(self, comparison: SchemaComparison) -> List[str]:
        return generate_schema_diff(comparison, escape=self.escape_identifier)

    # Misc -------------------------------------------------------------------

    def get_connection_metrics(self) -> ConnectionMetrics:
        if self.pool is not None and self.pool.is_initialized:
            pool_stats = self.pool.get_stats()
            return self.stats.metrics(active=pool_stats.active, idle=pool_stats.idle)
        return self.stats.metrics()

    @staticmethod
    def _as_column(column_type: Any) -> ColumnDefinition:
        if isinstance(column_type, ColumnDefinition):
            return column_type
        return ColumnDefinition(name="value", type=DatabaseType(column_type))

    def serialize_value(self, value: Any, column_type: Any) -> Any:
        return serialize_value(value, self._as_column(column_type), self.converter.config)

    def deserialize_value(self, value: Any, column_type: Any) -> Any:
        return deserialize_value(value, self._as_column(column_type), self.converter.config)

    def get_type_mapping(self) -> Dict[str, str]:
        return self.dialect.type_mapping()

    def escape_identifier(self, identifier: str) -> str:
        return self.dialect.escape_identifier(identifier)

    def escape_literal(self, literal: Any) -> str:
        return escape_literal(literal)

    def get_parameter_placeholder(self, index: int) -> str:
        return self.dialect.placeholder(index)

    def health_check(self) -> HealthCheckResult:
        checks: List[HealthCheckItem] = []
        watch = Stopwatch()
        pool = self.pool
        if not self.is_connected() or pool is None:
            checks.append(HealthCheckItem("connection", "fail", "Not connected"))
            return HealthCheckResult.from_checks(checks)
        try:
            with pool.connection() as connection:
                connection.execute(text("SELECT 1"))
                connection.rollback()
            checks.append(HealthCheckItem("connection", "pass", "Database reachable", watch.elapsed_ms))
        except (ConnectorError, sa_exc.SQLAlchemyError) as exc:
            checks.append(HealthCheckItem("connection", "fail", str(exc), watch.elapsed_ms))

        stats = pool.get_stats()
        if stats.pending > 0 or stats.active >= stats.max:
            checks.append(HealthCheckItem("pool", "warn", f"{stats.active}/{stats.max} connections in use, {stats.pending} waiting"))
        else:
            checks.append(HealthCheckItem("pool", "pass", f"{stats.active}/{stats.max} connections in use"))

        metrics = self.get_connection_metrics()
        checks.append(
            HealthCheckItem("metrics", "pass", f"{metrics.queries_executed} queries, average {metrics.average_query_time_ms:.2f} ms")
        )
        return HealthCheckResult.from_checks(checks)


def _annotate_columns(
    columns: List[ColumnDefinition],
    primary_key: Sequence[str],
    foreign_keys: Sequence[ForeignKeyDefinition],
    indexes: Sequence[IndexDefinition],
    constraints: Sequence[ConstraintDefinition],
) -> None:
    unique = {index.columns[0] for index in indexes if index.is_unique and len(index.columns) == 1}
    unique.update(item.columns[0] for item in constraints if item.type is ConstraintType.UNIQUE and len(item.columns) == 1)
    references = {item.column_name: item for item in foreign_keys}
    for column in columns:
        if column.name in primary_key:
            column.is_primary_key = True
            column.nullable = False
        if column.name in unique or (len(primary_key) == 1 and column.name in primary_key):
            column.is_unique = True
        reference = references.get(column.name)
        if reference is not None:
            column.foreign_key = ForeignKeyReference(
                referenced_table=reference.referenced_table,
                referenced_column=reference.referenced_column,
                on_update=reference.on_update,
                on_delete=reference.on_delete,
            )


def _key_constraints(table: str, primary_key: Sequence[str], foreign_keys: Sequence[ForeignKeyDefinition]) -> List[ConstraintDefinition]:
    constraints: List[ConstraintDefinition] = []
    if primary_key:
        constraints.append(ConstraintDefinition(name=f"{table}_pkey", type=ConstraintType.PRIMARY_KEY, table_name=table, columns=list(primary_key)))
    grouped: Dict[str, List[ForeignKeyDefinition]] = {}
    for item in foreign_keys:
        grouped.setdefault(item.constraint_name, []).append(item)
    for name, items in grouped.items():
        constraints.append(
            ConstraintDefinition(
                name=name,
                type=ConstraintType.FOREIGN_KEY,
                table_name=table,
                columns=[item.column_name for item in items],
                referenced_table=items[0].referenced_table,
                referenced_columns=[item.referenced_column for item in items],
                on_update=items[0].on_update,
                on_delete=items[0].on_delete,
            )
        )
    return constraints


class PostgresConnector(SQLConnector):
    """PostgreSQL connector (psycopg 3 driver)."""

    type = "postgres"
    config_model = PostgresConnectorConfig

    def __init__(self, config: Any = None, **kwargs: Any) -> None:
        kwargs.setdefault("dialect", PostgresDialect())
        super().__init__(config, **kwargs)

    def _config_rules(self, payload: Mapping[str, Any]) -> List[str]:
        return postgres_config_rules(payload)


class SQLiteConnector(SQLConnector):
    """SQLite connector; ``database`` is a file path or ``:memory:``."""

    type = "sqlite"
    config_model = SQLiteConnectorConfig

    def __init__(self, config: Any = None, **kwargs: Any) -> None:
        kwargs.setdefault("dialect", SQLiteDialect())
        super().__init__(config, **kwargs)


__all__ = [
    "PostgresConnector",
    "SQLConnector",
    "SQLTransaction",
    "SQL_CAPABILITIES",
    "SQLiteConnector",
]
