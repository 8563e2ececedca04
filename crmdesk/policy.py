"""Uniform translation of driver failures into the domain error taxonomy."""

from __future__ import annotations

import logging
from typing import Callable, NoReturn, TypeVar

import asyncpg

from .diagnostics import (
    ErrorType,
    classify_exception,
    error_message,
    error_sqlstate,
    is_driver_error,
)
from .errors import (
    CrmError,
    DatabaseOperationError,
    IntegrityViolationError,
    NotFoundOnMutateError,
    SyntaxOrAccessError,
    TransientConnectionError,
    UnexpectedDatabaseError,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")

_UNREACHABLE_TYPES = frozenset(
    {ErrorType.HOST_ERROR, ErrorType.AUTHENTICATION_ERROR, ErrorType.DATABASE_ERROR}
)

_INTEGRITY_KINDS = {
    "23505": "valor duplicado",
    "23503": "referencia inexistente",
    "23502": "campo obligatorio vacío",
    "23514": "regla de negocio incumplida",
}


def affected_rows(result: int | str | None) -> int:
    """Row count from an int or an asyncpg status tag (``"UPDATE 1"``, ``"INSERT 0 1"``)."""

    if result is None:
        return 0
    if isinstance(result, int):
        return result
    tail = result.strip().rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def _is_unreachable(exc: Exception, error_type: ErrorType) -> bool:
    if error_type in _UNREACHABLE_TYPES:
        return True
    # Server-side errors with an unrelated state code are not connectivity problems.
    return error_type is ErrorType.CONNECTION_ERROR and not isinstance(exc, asyncpg.PostgresError)


class RepositoryErrorPolicy:
    """Runs repository closures and maps whatever they raise.

    Domain errors pass through untouched; driver errors are classified and
    re-raised as domain errors with the original chained as ``__cause__``.
    """

    def execute(self, operation: Callable[[], T], operation_name: str) -> T:
        try:
            return operation()
        except CrmError:
            raise
        except Exception as exc:
            self._raise_mapped(exc, operation_name, None, integrity=False)

    def execute_with_integrity_handling(
        self,
        operation: Callable[[], T],
        operation_name: str,
        entity: str | None = None,
    ) -> T:
        """Like :meth:`execute` but distinguishes constraint and syntax failures."""

        try:
            return operation()
        except CrmError:
            raise
        except Exception as exc:
            self._raise_mapped(exc, operation_name, entity, integrity=True)

    def execute_with_row_validation(
        self,
        operation: Callable[[], int | str | None],
        operation_name: str,
        expected_rows: int = 1,
        entity: str | None = None,
    ) -> int:
        """Run a mutation and fail when it touched fewer than ``expected_rows`` rows."""

        count = affected_rows(self.execute_with_integrity_handling(operation, operation_name, entity))
        if count < expected_rows:
            LOG.warning(
                "Mutation affected fewer rows than expected",
                extra={"operation": operation_name, "expected": expected_rows, "affected": count, "entity": entity},
            )
            raise NotFoundOnMutateError(
                f"La operación '{operation_name}' no afectó ningún registro"
                + (f" ({entity})" if entity else ""),
                expected_rows=expected_rows,
                affected_rows=count,
                operation=operation_name,
                entity=entity,
            )
        return count

    def _raise_mapped(self, exc: Exception, operation_name: str, entity: str | None, *, integrity: bool) -> NoReturn:
        if not is_driver_error(exc):
            LOG.exception("Unexpected error in repository operation", extra={"operation": operation_name})
            raise UnexpectedDatabaseError(
                f"Error inesperado en '{operation_name}': {error_message(exc)}",
                operation=operation_name,
                entity=entity,
                error_type=ErrorType.UNKNOWN,
            ) from exc

        error_type = classify_exception(exc)
        sqlstate = error_sqlstate(exc)
        context = {"operation": operation_name, "entity": entity, "sqlstate": sqlstate, "error_type": error_type.value}

        if _is_unreachable(exc, error_type):
            LOG.warning("Database unreachable during repository operation", extra=context)
            raise TransientConnectionError(
                f"No hay conexión con la base de datos durante '{operation_name}'",
                operation=operation_name,
                entity=entity,
                sqlstate=sqlstate,
                error_type=error_type,
            ) from exc

        if integrity and error_type is ErrorType.INTEGRITY_VIOLATION:
            constraint = getattr(exc, "constraint_name", None)
            kind = _INTEGRITY_KINDS.get(sqlstate or "", "restricción de integridad")
            LOG.info("Integrity violation", extra={**context, "constraint": constraint})
            message = f"No se pudo completar '{operation_name}': {kind}"
            if entity:
                message += f" ({entity})"
            if constraint:
                message += f" [restricción: {constraint}]"
            raise IntegrityViolationError(
                message,
                constraint=constraint,
                operation=operation_name,
                entity=entity,
                sqlstate=sqlstate,
                error_type=error_type,
            ) from exc

        if integrity and error_type is ErrorType.SYNTAX_OR_ACCESS_ERROR:
            LOG.error("SQL syntax or access error", extra=context, exc_info=exc)
            raise SyntaxOrAccessError(
                f"Consulta inválida o sin permisos en '{operation_name}'",
                operation=operation_name,
                entity=entity,
                sqlstate=sqlstate,
                error_type=error_type,
            ) from exc

        LOG.error("Database operation failed", extra=context, exc_info=exc)
        raise DatabaseOperationError(
            f"Error de base de datos en '{operation_name}': {error_message(exc)}",
            operation=operation_name,
            entity=entity,
            sqlstate=sqlstate,
            error_type=error_type,
        ) from exc


__all__ = ["RepositoryErrorPolicy", "affected_rows"]
