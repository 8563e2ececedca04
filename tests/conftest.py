"""Shared fakes standing in for asyncpg."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Iterator

import pytest
from pydantic import SecretStr

from crmdesk.config import ConnectionConfig
from crmdesk.connections import REQUIRED_SCHEMA, ConnectionManager


class FakeDatabase:
    """Replacement for ``asyncpg.connect`` handing out scripted connections.

    Statements are answered by rules registered with :meth:`on`: the first rule
    whose key occurs in the SQL text wins. A rule value may be a callable
    (invoked with the bind arguments), an exception (raised) or a plain value.
    """

    def __init__(self) -> None:
        self.connect_calls: list[dict[str, Any]] = []
        self.connections: list[FakeConnection] = []
        self.connect_failures: list[BaseException] = []
        self.missing_columns: set[str] = set()
        self.rules: list[tuple[str, Any]] = []
        self.statements: list[tuple[str, tuple[Any, ...]]] = []
        self.connect_delay = 0.0
        self.connect_started = threading.Event()

    async def connect(self, **kwargs: Any) -> FakeConnection:
        self.connect_calls.append(kwargs)
        self.connect_started.set()
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_failures:
            raise self.connect_failures.pop(0)
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    def on(self, key: str, value: Any) -> None:
        self.rules.append((key, value))

    def respond(self, query: str, args: tuple[Any, ...], default: Any) -> Any:
        self.statements.append((query, args))
        for key, value in self.rules:
            if key in query:
                if isinstance(value, BaseException):
                    raise value
                if callable(value):
                    return value(*args)
                return value
        return default

    def column_rows(self) -> list[dict[str, str]]:
        return [
            {"table_name": table, "column_name": column}
            for table, columns in REQUIRED_SCHEMA.items()
            for column in columns
            if f"{table}.{column}" not in self.missing_columns
        ]


class FakeConnection:
    def __init__(self, database: FakeDatabase) -> None:
        self._database = database
        self.closed = False
        self.probe_error: BaseException | None = None
        self.probes = 0

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:
        if "information_schema.columns" in query:
            return self._database.column_rows()
        return self._database.respond(query, args, [])

    async def fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        return self._database.respond(query, args, None)

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        if query == "SELECT 1":
            self.probes += 1
            if self.probe_error is not None:
                raise self.probe_error
            return 1
        return self._database.respond(query, args, None)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:
        return self._database.respond(query, args, "UPDATE 0")

    async def close(self, *, timeout: float | None = None) -> None:
        self.closed = True

    def is_closed(self) -> bool:
        return self.closed


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeDatabase:
    database = FakeDatabase()
    monkeypatch.setattr("crmdesk.connections.asyncpg.connect", database.connect)
    return database


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(host="db.local", username="crm", password=SecretStr("s3cret"), database="kilombo")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_manager(
    fake_db: FakeDatabase,
    connection_config: ConnectionConfig,
    sleeps: list[float],
) -> Iterator[Callable[..., ConnectionManager]]:
    created: list[ConnectionManager] = []

    def _make(config_source: Callable[[], ConnectionConfig] | None = None, **kwargs: Any) -> ConnectionManager:
        kwargs.setdefault("sleep", sleeps.append)
        manager = ConnectionManager(config_source or (lambda: connection_config), **kwargs)
        created.append(manager)
        return manager

    yield _make
    for manager in created:
        manager.shutdown()


@pytest.fixture
def manager(make_manager: Callable[..., ConnectionManager]) -> ConnectionManager:
    return make_manager()
