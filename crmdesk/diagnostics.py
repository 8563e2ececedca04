"""Classification of driver failures into actionable connection diagnostics.

Everything in this module is a pure function of its inputs: the same message
and state code always yield the same category and the same message shape.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import asyncpg

if TYPE_CHECKING:
    from .config import ConnectionConfig


class ErrorType(str, Enum):
    SUCCESS = "success"
    HOST_ERROR = "host_error"
    AUTHENTICATION_ERROR = "authentication_error"
    DATABASE_ERROR = "database_error"
    CONNECTION_ERROR = "connection_error"
    INTEGRITY_VIOLATION = "integrity_violation"
    SYNTAX_OR_ACCESS_ERROR = "syntax_or_access_error"
    UNKNOWN = "unknown"

    @property
    def title(self) -> str:
        """Short caption used in dialogs and notifications."""

        return _TITLES[self]


_TITLES = {
    ErrorType.SUCCESS: "Conexión Exitosa",
    ErrorType.HOST_ERROR: "Error de Servidor",
    ErrorType.AUTHENTICATION_ERROR: "Error de Autenticación",
    ErrorType.DATABASE_ERROR: "Error de Base de Datos",
    ErrorType.CONNECTION_ERROR: "Error de Conexión",
    ErrorType.INTEGRITY_VIOLATION: "Error de Integridad",
    ErrorType.SYNTAX_OR_ACCESS_ERROR: "Error de Sintaxis o Permisos",
    ErrorType.UNKNOWN: "Error Desconocido",
}

INTEGRITY_SQLSTATE_CLASS = "23"
SYNTAX_OR_ACCESS_SQLSTATE_CLASS = "42"
CONNECTION_SQLSTATE_CLASS = "08"
AUTHORIZATION_SQLSTATE_CLASS = "28"
UNKNOWN_DATABASE_SQLSTATE = "3D000"

DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,  # includes ConnectionRefusedError, socket.gaierror and TimeoutError
)

_HOST_KEYWORDS = (
    "communications link failure",
    "connection refused",
    "connect call failed",
    "could not connect",
    "could not translate host name",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "unknown host",
    "no route to host",
    "network is unreachable",
    "unreachable",
)

# Host failures only when raised client-side.
_TIMEOUT_KEYWORDS = (
    "timed out",
    "timeout",
)

_AUTH_KEYWORDS = (
    "access denied",
    "password authentication failed",
    "authentication failed",
    "invalid password",
    "no pg_hba.conf entry",
)

_DATABASE_KEYWORDS = (
    "unknown database",
    "no such database",
)

_MISSING_DATABASE_RE = re.compile(r'database "[^"]*" does not exist', re.IGNORECASE)


def _match_any(msg: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in msg for keyword in keywords)


def _has_class(sqlstate: str | None, prefix: str) -> bool:
    return (sqlstate or "").upper().startswith(prefix)


def classify_error(
    message: str | None,
    sqlstate: str | None = None,
    *,
    driver_error: bool = True,
    server_reported: bool = False,
) -> ErrorType:
    """Map a driver error description to an :class:`ErrorType`.

    Rules are ordered and the first match wins: host reachability, then
    authentication, then unknown database, then integrity (``23``) and
    syntax/access (``42``) state classes. Anything else is a generic
    connection error, or ``UNKNOWN`` when the failure did not come from the
    driver at all.

    Timeout wording counts as a host failure only when the error was not
    reported by the server (``server_reported``); a statement or lock timeout
    means the server answered.
    """

    normalized = (message or "").lower()

    if (
        _match_any(normalized, _HOST_KEYWORDS)
        or (not server_reported and _match_any(normalized, _TIMEOUT_KEYWORDS))
        or _has_class(sqlstate, CONNECTION_SQLSTATE_CLASS)
    ):
        return ErrorType.HOST_ERROR

    if _match_any(normalized, _AUTH_KEYWORDS) or _has_class(sqlstate, AUTHORIZATION_SQLSTATE_CLASS):
        return ErrorType.AUTHENTICATION_ERROR

    if (
        _match_any(normalized, _DATABASE_KEYWORDS)
        or _MISSING_DATABASE_RE.search(normalized)
        or (sqlstate or "").upper() == UNKNOWN_DATABASE_SQLSTATE
    ):
        return ErrorType.DATABASE_ERROR

    if _has_class(sqlstate, INTEGRITY_SQLSTATE_CLASS):
        return ErrorType.INTEGRITY_VIOLATION

    if _has_class(sqlstate, SYNTAX_OR_ACCESS_SQLSTATE_CLASS):
        return ErrorType.SYNTAX_OR_ACCESS_ERROR

    return ErrorType.CONNECTION_ERROR if driver_error else ErrorType.UNKNOWN


def error_message(exc: BaseException) -> str:
    """Driver message for ``exc``; falls back to the class name (e.g. timeouts)."""

    return str(exc).strip() or type(exc).__name__


def error_sqlstate(exc: BaseException) -> str | None:
    sqlstate = getattr(exc, "sqlstate", None)
    return sqlstate if isinstance(sqlstate, str) else None


def is_driver_error(exc: BaseException) -> bool:
    return isinstance(exc, DRIVER_ERRORS)


def classify_exception(exc: BaseException) -> ErrorType:
    """Classify a raised exception using its message and state code."""

    return classify_error(
        error_message(exc),
        error_sqlstate(exc),
        driver_error=is_driver_error(exc),
        server_reported=isinstance(exc, asyncpg.PostgresError),
    )


def describe_error(error_type: ErrorType, config: ConnectionConfig, detail: str | None = None) -> str:
    """Human-readable explanation of ``error_type`` for the attempted config.

    Only host, port, username and database are templated in; the password is
    never part of the text.
    """

    host = f"{config.host}:{config.port}"
    if error_type is ErrorType.SUCCESS:
        return f"Conexión establecida correctamente.\n\n{config.describe()}"
    if error_type is ErrorType.HOST_ERROR:
        return (
            f"No se puede conectar al servidor '{host}'.\n\n"
            "Verifique que:\n"
            "• La dirección del servidor es correcta\n"
            "• El servidor PostgreSQL está en ejecución\n"
            f"• El puerto {config.port} es accesible desde este equipo (firewall, red)"
        )
    if error_type is ErrorType.AUTHENTICATION_ERROR:
        return (
            f"Acceso denegado para el usuario '{config.username}'.\n\n"
            "Verifique que:\n"
            "• El nombre de usuario es correcto\n"
            "• La contraseña es correcta\n"
            "• El usuario tiene permiso para conectarse desde este equipo"
        )
    if error_type is ErrorType.DATABASE_ERROR:
        return (
            f"La base de datos '{config.database}' no existe en el servidor '{host}'.\n\n"
            "Verifique que:\n"
            "• El nombre de la base de datos es correcto\n"
            "• La base de datos ha sido creada\n"
            f"• El usuario '{config.username}' tiene acceso a ella"
        )
    if error_type is ErrorType.INTEGRITY_VIOLATION:
        return "La operación viola una restricción de integridad de los datos."
    if error_type is ErrorType.SYNTAX_OR_ACCESS_ERROR:
        return (
            "La consulta no es válida o el usuario "
            f"'{config.username}' no tiene permisos suficientes sobre '{config.database}'."
        )
    suffix = f"\n\nDetalle: {detail}" if detail else ""
    if error_type is ErrorType.CONNECTION_ERROR:
        return f"Error de conexión con el servidor '{host}'.{suffix}"
    return f"Error desconocido al conectar con '{host}'.{suffix}"


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    """Outcome of a one-shot connection attempt."""

    success: bool
    error_type: ErrorType
    message: str

    def __post_init__(self) -> None:
        if self.success != (self.error_type is ErrorType.SUCCESS):
            raise ValueError("success must coincide with ErrorType.SUCCESS")

    @classmethod
    def ok(cls, config: ConnectionConfig) -> ConnectionTestResult:
        return cls(True, ErrorType.SUCCESS, describe_error(ErrorType.SUCCESS, config))

    @classmethod
    def from_exception(cls, exc: BaseException, config: ConnectionConfig) -> ConnectionTestResult:
        error_type = classify_exception(exc)
        return cls(False, error_type, describe_error(error_type, config, error_message(exc)))


__all__ = [
    "ConnectionTestResult",
    "DRIVER_ERRORS",
    "ErrorType",
    "classify_error",
    "classify_exception",
    "describe_error",
    "error_message",
    "error_sqlstate",
    "is_driver_error",
]
