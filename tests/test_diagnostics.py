"""Tests for connection error classification."""

from __future__ import annotations

import socket

import asyncpg
import pytest
from pydantic import SecretStr

from crmdesk.config import ConnectionConfig
from crmdesk.diagnostics import (
    ConnectionTestResult,
    ErrorType,
    classify_error,
    classify_exception,
    describe_error,
)


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig(host="bad-host", username="ventas", password=SecretStr("hunter2"), database="kilombo")


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Communications link failure", ErrorType.HOST_ERROR),
        ("[Errno 111] Connect call failed ('127.0.0.1', 5432)", ErrorType.HOST_ERROR),
        ("[Errno -2] Name or service not known", ErrorType.HOST_ERROR),
        ("TimeoutError", ErrorType.HOST_ERROR),
        ("Access denied for user 'admin'@'localhost' (using password: YES)", ErrorType.AUTHENTICATION_ERROR),
        ('password authentication failed for user "admin"', ErrorType.AUTHENTICATION_ERROR),
        ("Unknown database 'kilombo'", ErrorType.DATABASE_ERROR),
        ('database "kilombo" does not exist', ErrorType.DATABASE_ERROR),
        ("server closed the connection unexpectedly", ErrorType.CONNECTION_ERROR),
    ],
)
def test_classify_error_by_message(message: str, expected: ErrorType) -> None:
    assert classify_error(message) is expected


def test_classify_error_is_deterministic() -> None:
    message = "Communications link failure"

    assert classify_error(message) is classify_error(message)


def test_classify_error_by_sqlstate() -> None:
    assert classify_error("", "08006") is ErrorType.HOST_ERROR
    assert classify_error("", "28P01") is ErrorType.AUTHENTICATION_ERROR
    assert classify_error("", "3D000") is ErrorType.DATABASE_ERROR
    assert classify_error("duplicate key value", "23505") is ErrorType.INTEGRITY_VIOLATION
    assert classify_error('relation "x" does not exist', "42P01") is ErrorType.SYNTAX_OR_ACCESS_ERROR


def test_host_rule_wins_over_later_rules() -> None:
    assert classify_error("connection refused; access denied", "28000") is ErrorType.HOST_ERROR


def test_non_driver_failures_are_unknown() -> None:
    assert classify_error("something odd", driver_error=False) is ErrorType.UNKNOWN
    assert classify_exception(ValueError("something odd")) is ErrorType.UNKNOWN


def test_classify_exception_reads_sqlstate() -> None:
    assert classify_exception(asyncpg.exceptions.InvalidPasswordError("bad password")) is (
        ErrorType.AUTHENTICATION_ERROR
    )
    assert classify_exception(asyncpg.exceptions.InvalidCatalogNameError("nope")) is ErrorType.DATABASE_ERROR
    assert classify_exception(socket.gaierror(-2, "Name or service not known")) is ErrorType.HOST_ERROR


def test_timeout_wording_only_means_host_failure_client_side() -> None:
    assert classify_error("connection timed out") is ErrorType.HOST_ERROR
    assert classify_error("canceling statement due to statement timeout", "57014", server_reported=True) is (
        ErrorType.CONNECTION_ERROR
    )
    statement_timeout = asyncpg.exceptions.QueryCanceledError("canceling statement due to statement timeout")
    assert classify_exception(statement_timeout) is ErrorType.CONNECTION_ERROR
    assert classify_exception(TimeoutError()) is ErrorType.HOST_ERROR


def test_describe_error_never_leaks_password(config: ConnectionConfig) -> None:
    for error_type in ErrorType:
        message = describe_error(error_type, config, "detail")
        assert "hunter2" not in message


def test_describe_host_error(config: ConnectionConfig) -> None:
    message = describe_error(ErrorType.HOST_ERROR, config)

    assert message.startswith("No se puede conectar al servidor 'bad-host:5432'")
    assert "5432" in message


def test_describe_auth_and_database_errors_mention_inputs(config: ConnectionConfig) -> None:
    assert "ventas" in describe_error(ErrorType.AUTHENTICATION_ERROR, config)
    assert "kilombo" in describe_error(ErrorType.DATABASE_ERROR, config)


def test_error_type_titles() -> None:
    assert ErrorType.HOST_ERROR.title == "Error de Servidor"
    assert ErrorType.UNKNOWN.title == "Error Desconocido"


def test_result_from_exception(config: ConnectionConfig) -> None:
    result = ConnectionTestResult.from_exception(ConnectionRefusedError(111, "Connection refused"), config)

    assert result.success is False
    assert result.error_type is ErrorType.HOST_ERROR
    assert "No se puede conectar" in result.message


def test_result_rejects_inconsistent_state() -> None:
    with pytest.raises(ValueError):
        ConnectionTestResult(True, ErrorType.HOST_ERROR, "nope")
    with pytest.raises(ValueError):
        ConnectionTestResult(False, ErrorType.SUCCESS, "nope")
