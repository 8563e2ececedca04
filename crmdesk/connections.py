"""Lifecycle of the application's single database connection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Any, Callable, Coroutine, Literal, Mapping, TypeVar

import asyncpg

from .config import ConnectionConfig
from .diagnostics import (
    DRIVER_ERRORS,
    ConnectionTestResult,
    classify_exception,
    error_message,
    error_sqlstate,
)
from .errors import SchemaValidationError, TransientConnectionError

MAX_RETRIES = 3
RETRY_DELAY_MS = 1000
CONNECTION_TIMEOUT_MS = 5000
VALIDATION_QUERY_TIMEOUT_S = 5
STATEMENT_TIMEOUT_S = 30
# Extra time granted to the background loop on top of the driver-side timeout.
LOOP_GRACE_S = 2.0

REQUIRED_SCHEMA: Mapping[str, tuple[str, ...]] = {
    "customers": ("id", "first_name", "last_name", "email", "phone"),
    "orders": ("id", "customer_id", "order_date", "total", "status"),
    "order_lines": (
        "id",
        "order_id",
        "product_type",
        "description",
        "quantity",
        "unit_cost",
        "unit_price",
        "subtotal",
        "gross_profit",
    ),
}

LOG = logging.getLogger(__name__)

T = TypeVar("T")

ConnectionState = Literal["connected", "refreshed", "closed", "failed"]


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    """Event delivered to status listeners."""

    state: ConnectionState
    host: str
    database: str
    validated_at: datetime | None = None
    error: str | None = None


StatusListener = Callable[[ConnectionStatus], None]


@dataclass(frozen=True, slots=True)
class SchemaReport:
    """Advisory findings gathered after the required schema was confirmed."""

    warnings: tuple[str, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.warnings


_COLUMNS_QUERY = """
    SELECT table_name, column_name
    FROM information_schema.columns
    WHERE table_schema = current_schema()
      AND lower(table_name) = ANY($1::text[])
"""

# (log label, count query, report template)
_ADVISORY_CHECKS: tuple[tuple[str, str, str], ...] = (
    (
        "orders without customer",
        """
        SELECT count(*) FROM orders o
        LEFT JOIN customers c ON c.id = o.customer_id
        WHERE c.id IS NULL
        """,
        "{count} pedido(s) hacen referencia a clientes inexistentes",
    ),
    (
        "order lines without order",
        """
        SELECT count(*) FROM order_lines l
        LEFT JOIN orders o ON o.id = l.order_id
        WHERE o.id IS NULL
        """,
        "{count} línea(s) de pedido hacen referencia a pedidos inexistentes",
    ),
    (
        "customers with blank first name",
        "SELECT count(*) FROM customers WHERE first_name IS NULL OR btrim(first_name) = ''",
        "{count} cliente(s) sin nombre",
    ),
    (
        "customers with blank email",
        "SELECT count(*) FROM customers WHERE email IS NULL OR btrim(email) = ''",
        "{count} cliente(s) sin correo electrónico",
    ),
)


class ManagedConnection:
    """Synchronous, thread-safe view of the manager's live connection.

    Statements are serialised on the manager lock because an asyncpg
    connection cannot run two operations at once.
    """

    def __init__(self, manager: ConnectionManager, handle: Any) -> None:
        self._manager = manager
        self._handle = handle

    @property
    def raw(self) -> Any:
        return self._handle

    def fetch(self, query: str, *args: Any) -> list[Any]:
        return self._manager._statement(self._handle.fetch, query, *args)

    def fetchrow(self, query: str, *args: Any) -> Any:
        return self._manager._statement(self._handle.fetchrow, query, *args)

    def fetchval(self, query: str, *args: Any) -> Any:
        return self._manager._statement(self._handle.fetchval, query, *args)

    def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return its status tag (e.g. ``"UPDATE 1"``)."""

        return self._manager._statement(self._handle.execute, query, *args)

    def is_closed(self) -> bool:
        return bool(self._handle.is_closed())


class ConnectionManager:
    """Owns the single reusable asyncpg connection shared by repositories.

    The driver runs on a private event loop in a daemon thread; every public
    method is synchronous and may be called from any worker thread.
    """

    def __init__(
        self,
        config_source: Callable[[], ConnectionConfig],
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay_ms: int = RETRY_DELAY_MS,
        connect_timeout_ms: int = CONNECTION_TIMEOUT_MS,
        validation_timeout_s: float = VALIDATION_QUERY_TIMEOUT_S,
        statement_timeout_s: float = STATEMENT_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._config_source = config_source
        self._config = config_source()
        self._max_retries = max_retries
        self._retry_delay_ms = retry_delay_ms
        self._connect_timeout = connect_timeout_ms / 1000
        self._validation_timeout = validation_timeout_s
        self._statement_timeout = statement_timeout_s
        self._sleep = sleep
        self._lock = threading.RLock()
        self._handle: Any = None
        self._validated_at: datetime | None = None
        self._listeners: set[StatusListener] = set()
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="crmdesk-asyncpg-loop",
            daemon=True,
        )
        self._loop_thread.start()

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def validated_at(self) -> datetime | None:
        return self._validated_at

    def acquire(self, cancel: threading.Event | None = None) -> ManagedConnection:
        """Return a live, validated connection, reconnecting when needed.

        Opening or probing failures are retried up to ``max_retries`` times
        with a linear backoff. A schema mismatch is raised immediately.
        """

        last_error: BaseException | None = None
        attempts = 0
        for attempt in range(1, self._max_retries + 1):
            if cancel is not None and cancel.is_set():
                raise TransientConnectionError(
                    "Conexión cancelada",
                    attempts=attempts,
                    operation="acquire",
                ) from last_error
            attempts = attempt
            try:
                connection, status = self._acquire_once()
            except SchemaValidationError as exc:
                self._emit(self._status("failed", error=exc.message))
                raise
            except DRIVER_ERRORS as exc:
                last_error = exc
                LOG.warning(
                    "Connection attempt failed",
                    extra={
                        "attempt": attempt,
                        "max_retries": self._max_retries,
                        "host": self._config.host,
                        "database": self._config.database,
                        "error": error_message(exc),
                    },
                )
                if attempt < self._max_retries:
                    self._sleep(self._retry_delay_ms * attempt / 1000)
                continue
            if status is not None:
                self._emit(status)
            return connection

        assert last_error is not None
        error_type = classify_exception(last_error)
        message = f"No se pudo conectar tras {attempts} intento(s): {error_message(last_error)}"
        LOG.error(
            "Connection retries exhausted",
            extra={"attempts": attempts, "host": self._config.host, "error_type": error_type.value},
        )
        self._emit(self._status("failed", error=message))
        raise TransientConnectionError(
            message,
            attempts=attempts,
            operation="acquire",
            error_type=error_type,
            sqlstate=error_sqlstate(last_error),
        ) from last_error

    def is_valid(self, handle: Any) -> bool:
        """Liveness probe: ``SELECT 1`` bounded by the validation timeout."""

        if isinstance(handle, ManagedConnection):
            handle = handle.raw
        if handle is None:
            return False
        with self._lock:
            try:
                if handle.is_closed():
                    return False
                value = self._run(
                    handle.fetchval("SELECT 1", timeout=self._validation_timeout),
                    timeout=self._validation_timeout,
                )
            except Exception as exc:
                LOG.debug("Liveness probe failed", extra={"error": error_message(exc)})
                return False
        return value == 1

    def validate_schema(self, handle: Any) -> SchemaReport:
        """Confirm the required tables/columns exist and run advisory checks.

        Raises :class:`SchemaValidationError` naming every missing column.
        Advisory findings are logged and returned, never raised.
        """

        if isinstance(handle, ManagedConnection):
            handle = handle.raw
        with self._lock:
            rows = self._run(
                handle.fetch(_COLUMNS_QUERY, list(REQUIRED_SCHEMA), timeout=self._validation_timeout),
                timeout=self._validation_timeout,
            )
            present: dict[str, set[str]] = {}
            for row in rows:
                present.setdefault(str(row["table_name"]).lower(), set()).add(str(row["column_name"]).lower())
            missing = [
                f"{table}.{column}"
                for table, columns in REQUIRED_SCHEMA.items()
                for column in columns
                if column not in present.get(table, set())
            ]
            if missing:
                LOG.error("Required schema missing", extra={"missing": missing})
                raise SchemaValidationError(
                    "Faltan columnas requeridas en la base de datos: " + ", ".join(missing),
                    missing=missing,
                    operation="validate_schema",
                )
            warnings = self._advisory_checks(handle)
        return SchemaReport(tuple(warnings))

    def refresh_configuration(self) -> None:
        """Re-read the configuration source and drop the current connection."""

        with self._lock:
            self._config = self._config_source()
            self._discard_locked()
            status = self._status("refreshed")
        LOG.info("Connection configuration refreshed", extra={"host": status.host, "database": status.database})
        self._emit(status)

    def close(self) -> None:
        """Release the live connection, if any."""

        with self._lock:
            had_handle = self._handle is not None
            self._discard_locked()
            status = self._status("closed")
        if had_handle:
            LOG.info("Connection closed", extra={"host": status.host})
            self._emit(status)

    def test_connection(self, config: ConnectionConfig) -> ConnectionTestResult:
        """One-shot probe of ``config``; never touches the shared connection."""

        try:
            self._run(
                self._probe_candidate(config),
                timeout=self._connect_timeout + self._validation_timeout,
            )
        except Exception as exc:
            result = ConnectionTestResult.from_exception(exc, config)
            LOG.info(
                "Connection test failed",
                extra={"host": config.host, "database": config.database, "error_type": result.error_type.value},
            )
            return result
        LOG.info("Connection test succeeded", extra={"host": config.host, "database": config.database})
        return ConnectionTestResult.ok(config)

    def is_connected(self) -> bool:
        handle = self._handle
        return handle is not None and not handle.is_closed()

    def connection_info(self) -> str:
        """Password-free summary of the current configuration and state."""

        state = "Conectado" if self.is_connected() else "Desconectado"
        return f"{self._config.describe()}\nEstado: {state}"

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def shutdown(self) -> None:
        """Close the connection and stop the background event loop."""

        if not self._loop.is_running():
            return
        self.close()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def _acquire_once(self) -> tuple[ManagedConnection, ConnectionStatus | None]:
        handle = self._handle
        if handle is not None and not handle.is_closed() and self.is_valid(handle):
            with self._lock:
                if self._handle is handle:
                    return ManagedConnection(self, handle), None
        with self._lock:
            current = self._handle
            if current is not None and current is not handle and self.is_valid(current):
                return ManagedConnection(self, current), None
            if current is not None:
                LOG.info("Discarding stale connection", extra={"host": self._config.host})
            self._discard_locked()
            handle = self._open_locked()
            return ManagedConnection(self, handle), self._status("connected")

    def _open_locked(self) -> Any:
        config = self._config
        started = time.perf_counter()
        handle = self._run(
            asyncpg.connect(**config.connect_kwargs(), timeout=self._connect_timeout),
            timeout=self._connect_timeout,
        )
        try:
            report = self.validate_schema(handle)
        except Exception:
            self._close_handle(handle)
            raise
        self._handle = handle
        self._validated_at = datetime.now(tz=timezone.utc)
        LOG.info(
            "Connection established",
            extra={
                "host": config.host,
                "database": config.database,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "warnings": len(report.warnings),
            },
        )
        return handle

    def _advisory_checks(self, handle: Any) -> list[str]:
        warnings: list[str] = []
        for label, query, template in _ADVISORY_CHECKS:
            try:
                count = self._run(
                    handle.fetchval(query, timeout=self._validation_timeout),
                    timeout=self._validation_timeout,
                )
            except DRIVER_ERRORS as exc:
                LOG.warning("Advisory check failed", extra={"check": label, "error": error_message(exc)})
                continue
            if count:
                LOG.warning("Data integrity warning", extra={"check": label, "count": count})
                warnings.append(template.format(count=count))
        return warnings

    def _discard_locked(self) -> None:
        handle = self._handle
        self._handle = None
        self._validated_at = None
        if handle is not None:
            self._close_handle(handle)

    def _close_handle(self, handle: Any) -> None:
        try:
            if not handle.is_closed():
                self._run(handle.close(timeout=self._validation_timeout), timeout=self._validation_timeout)
        except DRIVER_ERRORS as exc:
            LOG.warning("Error while closing connection", extra={"error": error_message(exc)})

    async def _probe_candidate(self, config: ConnectionConfig) -> None:
        conn = await asyncpg.connect(**config.connect_kwargs(), timeout=self._connect_timeout)
        try:
            await conn.fetchval("SELECT 1", timeout=self._validation_timeout)
        finally:
            try:
                await conn.close(timeout=self._validation_timeout)
            except DRIVER_ERRORS as exc:
                LOG.debug("Error while closing test connection", extra={"error": error_message(exc)})

    def _statement(self, method: Callable[..., Coroutine[Any, Any, T]], query: str, *args: Any) -> T:
        with self._lock:
            return self._run(method(query, *args, timeout=self._statement_timeout), timeout=self._statement_timeout)

    def _status(self, state: ConnectionState, *, error: str | None = None) -> ConnectionStatus:
        return ConnectionStatus(
            state=state,
            host=self._config.host,
            database=self._config.database,
            validated_at=self._validated_at,
            error=error,
        )

    def _emit(self, status: ConnectionStatus) -> None:
        for listener in tuple(self._listeners):
            listener(status)

    def _run(self, coro: Coroutine[Any, Any, T], *, timeout: float) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout + LOOP_GRACE_S)
        except TimeoutError:
            future.cancel()
            raise


__all__ = [
    "CONNECTION_TIMEOUT_MS",
    "ConnectionManager",
    "ConnectionStatus",
    "MAX_RETRIES",
    "ManagedConnection",
    "REQUIRED_SCHEMA",
    "RETRY_DELAY_MS",
    "SchemaReport",
    "VALIDATION_QUERY_TIMEOUT_S",
]
