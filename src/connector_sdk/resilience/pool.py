"""
Connection pool discipline for SQL connectors.

:class:`ConnectionPool` owns one SQLAlchemy :class:`~sqlalchemy.engine.Engine`
backed by a :class:`~sqlalchemy.pool.QueuePool`. The configured maximum maps to
``pool_size`` with no overflow, the acquire timeout maps to ``pool_timeout``,
and the minimum is honoured by pre-warming connections on :meth:`initialize`.
A pool timeout surfaces as :class:`~connector_sdk.core.errors.PoolExhaustedError`
instead of blocking past the acquire timeout.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Mapping, Optional

from sqlalchemy import create_engine, exc as sa_exc
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.pool import Pool, QueuePool

from ..core.errors import ConnectorConnectionError, PoolExhaustedError, wrap_database_error
from ..core.logging import get_logger


@dataclass(slots=True)
class PoolSettings:
    """Pool sizing expressed in the SDK's millisecond units."""

    min_size: int = 1
    max_size: int = 10
    idle_timeout_ms: int = 30000
    connection_timeout_ms: int = 5000
    acquire_timeout_ms: int = 60000


@dataclass(slots=True)
class PoolStats:
    total: int
    idle: int
    active: int
    pending: int
    max: int
    min: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "idle": self.idle,
            "active": self.active,
            "pending": self.pending,
            "max": self.max,
            "min": self.min,
        }


class ConnectionPool:
    """
    Exclusive SQLAlchemy engine plus live accounting of checked-out connections.

    Parameters
    ----------
    url:
        SQLAlchemy URL (string or :class:`~sqlalchemy.engine.URL`).
    settings:
        Sizing and timeouts.
    connect_args:
        Driver-specific connection arguments (SSL, application name...).
    configure_engine:
        Optional hook applied to the engine after creation (event listeners).
    """

    def __init__(
        self,
        url: str | URL,
        settings: Optional[PoolSettings] = None,
        *,
        connect_args: Optional[Mapping[str, Any]] = None,
        configure_engine: Optional[Callable[[Engine], None]] = None,
        engine_factory: Callable[..., Engine] = create_engine,
        poolclass: type[Pool] = QueuePool,
    ) -> None:
        self.settings = settings or PoolSettings()
        self._url = url
        self._connect_args = dict(connect_args or {})
        self._configure_engine = configure_engine
        self._engine_factory = engine_factory
        self._poolclass = poolclass
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()
        self._active = 0
        self._pending = 0
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise ConnectorConnectionError("Connection pool is not initialised")
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def initialize(self) -> None:
        """Create the engine and pre-warm ``min_size`` connections."""

        if self._engine is not None:
            return
        options: dict[str, Any] = {"poolclass": self._poolclass, "pool_pre_ping": True, "connect_args": self._connect_args}
        if issubclass(self._poolclass, QueuePool):
            options.update(
                pool_size=self.settings.max_size,
                max_overflow=0,
                pool_timeout=self.settings.acquire_timeout_ms / 1000.0,
                pool_recycle=max(self.settings.idle_timeout_ms // 1000, 1),
            )
        self._engine = self._engine_factory(self._url, **options)
        if self._configure_engine is not None:
            self._configure_engine(self._engine)
        warm: List[Connection] = []
        try:
            for _ in range(min(self.settings.min_size, self.settings.max_size)):
                warm.append(self.acquire())
        finally:
            for connection in warm:
                self.release(connection)
        self.logger.debug("Connection pool initialised", extra={"status": "ready", "pool_max": self.settings.max_size})

    def acquire(self) -> Connection:
        """Check a connection out of the pool, raising :class:`PoolExhaustedError` on timeout."""

        engine = self.engine
        with self._lock:
            self._pending += 1
        try:
            connection = engine.connect()
        except sa_exc.TimeoutError as exc:
            raise PoolExhaustedError(self.settings.max_size, cause=exc) from exc
        except sa_exc.SQLAlchemyError as exc:
            raise wrap_database_error(exc, operation="connect") from exc
        finally:
            with self._lock:
                self._pending -= 1
        with self._lock:
            self._active += 1
        return connection

    def release(self, connection: Connection) -> None:
        """Return a connection to the pool."""

        try:
            connection.close()
        finally:
            with self._lock:
                self._active = max(self._active - 1, 0)

    def destroy(self, connection: Connection) -> None:
        """Discard a connection instead of returning it to the pool."""

        try:
            connection.invalidate()
        finally:
            self.release(connection)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        connection = self.acquire()
        try:
            yield connection
        finally:
            self.release(connection)

    def clear(self) -> None:
        """Dispose of the engine and every pooled connection."""

        with self._lock:
            engine, self._engine = self._engine, None
            self._active = 0
        if engine is not None:
            engine.dispose()

    def get_stats(self) -> PoolStats:
        with self._lock:
            active = self._active
            pending = self._pending
        idle = 0
        if self._engine is not None:
            pool = self._engine.pool
            checkedin = getattr(pool, "checkedin", None)
            idle = int(checkedin()) if callable(checkedin) else 0
        return PoolStats(
            total=active + idle,
            idle=idle,
            active=active,
            pending=pending,
            max=self.settings.max_size,
            min=self.settings.min_size,
        )
