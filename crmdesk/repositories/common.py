"""Helpers shared by the repository implementations."""

from __future__ import annotations

import logging
from typing import Callable

from ..errors import ConcurrentModificationError, NotFoundError, NotFoundOnMutateError
from ..policy import RepositoryErrorPolicy

LOG = logging.getLogger(__name__)


def is_valid_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def mutate_existing(
    policy: RepositoryErrorPolicy,
    *,
    exists: Callable[[], bool],
    mutate: Callable[[], str],
    operation_name: str,
    entity: str,
    entity_id: int,
) -> int:
    """Confirm the row exists, then run ``mutate`` expecting exactly one row.

    A row that disappears between the check and the mutation surfaces as
    :class:`ConcurrentModificationError`.
    """

    if not policy.execute(exists, f"{operation_name}.exists"):
        LOG.info("Entity not found", extra={"operation": operation_name, "entity": entity, "id": entity_id})
        raise NotFoundError(
            f"No existe {entity} con id {entity_id}",
            entity_id=entity_id,
            operation=operation_name,
            entity=entity,
        )
    try:
        return policy.execute_with_row_validation(mutate, operation_name, 1, f"{entity} {entity_id}")
    except ConcurrentModificationError:
        raise
    except NotFoundOnMutateError as exc:
        LOG.warning(
            "Entity vanished before mutation",
            extra={"operation": operation_name, "entity": entity, "id": entity_id},
        )
        raise ConcurrentModificationError(
            f"{entity.capitalize()} con id {entity_id} fue modificado o eliminado por otra operación",
            expected_rows=exc.expected_rows,
            affected_rows=exc.affected_rows,
            operation=operation_name,
            entity=exc.entity,
        ) from exc
