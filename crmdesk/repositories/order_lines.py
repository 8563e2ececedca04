"""Persistence for :class:`~crmdesk.models.OrderLine`."""

from __future__ import annotations

import logging

from ..connections import ConnectionManager
from ..errors import ValidationFailedError
from ..models import OrderLine
from ..policy import RepositoryErrorPolicy
from .common import is_valid_id, mutate_existing

LOG = logging.getLogger(__name__)

_COLUMNS = "id, order_id, product_type, description, quantity, unit_cost, unit_price, subtotal, gross_profit"


class OrderLineRepository:
    """CRUD access to the ``order_lines`` table."""

    def __init__(self, manager: ConnectionManager, policy: RepositoryErrorPolicy) -> None:
        self._manager = manager
        self._policy = policy

    def save(self, line: OrderLine | None) -> OrderLine:
        """Insert a line; the returned copy carries the computed amounts."""

        if line is None:
            raise ValidationFailedError("La línea de pedido no puede ser nula", operation="order_lines.save")
        if line.id is not None:
            raise ValidationFailedError("La línea de pedido ya tiene id; use update", operation="order_lines.save")

        def _insert() -> object:
            return self._manager.acquire().fetchrow(
                "INSERT INTO order_lines (order_id, product_type, description, quantity, unit_cost, unit_price) "
                f"VALUES ($1, $2, $3, $4, $5, $6) RETURNING {_COLUMNS}",
                line.order_id,
                line.product_type,
                line.description,
                line.quantity,
                line.unit_cost,
                line.unit_price,
            )

        record = self._policy.execute_with_integrity_handling(
            _insert, "order_lines.save", f"línea del pedido {line.order_id}"
        )
        saved = OrderLine.from_record(record)
        LOG.info("Order line created", extra={"id": saved.id, "order_id": saved.order_id})
        return saved

    def find_by_id(self, line_id: int | None) -> OrderLine | None:
        if not is_valid_id(line_id):
            LOG.warning("Invalid order line id", extra={"id": line_id})
            return None
        record = self._policy.execute(
            lambda: self._manager.acquire().fetchrow(f"SELECT {_COLUMNS} FROM order_lines WHERE id = $1", line_id),
            "order_lines.find_by_id",
        )
        return OrderLine.from_record(record) if record is not None else None

    def find_all(self) -> list[OrderLine]:
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(f"SELECT {_COLUMNS} FROM order_lines ORDER BY order_id, id"),
            "order_lines.find_all",
        )
        return [OrderLine.from_record(record) for record in records]

    def find_by_order(self, order_id: int | None) -> list[OrderLine]:
        if not is_valid_id(order_id):
            LOG.warning("Invalid order id", extra={"id": order_id})
            return []
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(
                f"SELECT {_COLUMNS} FROM order_lines WHERE order_id = $1 ORDER BY subtotal DESC, id",
                order_id,
            ),
            "order_lines.find_by_order",
        )
        return [OrderLine.from_record(record) for record in records]

    def update(self, line: OrderLine | None) -> OrderLine:
        """Update a line; returns the stored row so computed amounts are fresh."""

        if line is None or not is_valid_id(line.id):
            raise ValidationFailedError(
                "La línea de pedido a actualizar requiere un id válido", operation="order_lines.update"
            )
        assert line.id is not None

        def _update() -> str:
            return self._manager.acquire().execute(
                "UPDATE order_lines SET order_id = $1, product_type = $2, description = $3, "
                "quantity = $4, unit_cost = $5, unit_price = $6 WHERE id = $7",
                line.order_id,
                line.product_type,
                line.description,
                line.quantity,
                line.unit_cost,
                line.unit_price,
                line.id,
            )

        mutate_existing(
            self._policy,
            exists=lambda: self._exists(line.id),
            mutate=_update,
            operation_name="order_lines.update",
            entity="línea de pedido",
            entity_id=line.id,
        )
        LOG.info("Order line updated", extra={"id": line.id})
        return self.find_by_id(line.id) or line

    def delete(self, line_id: int | None) -> None:
        if not is_valid_id(line_id):
            raise ValidationFailedError(f"Id de línea de pedido inválido: {line_id}", operation="order_lines.delete")
        assert line_id is not None
        mutate_existing(
            self._policy,
            exists=lambda: self._exists(line_id),
            mutate=lambda: self._manager.acquire().execute("DELETE FROM order_lines WHERE id = $1", line_id),
            operation_name="order_lines.delete",
            entity="línea de pedido",
            entity_id=line_id,
        )
        LOG.info("Order line deleted", extra={"id": line_id})

    def find_principal_line(self, order_id: int | None) -> OrderLine | None:
        """The line with the largest subtotal in the order."""

        if not is_valid_id(order_id):
            LOG.warning("Invalid order id", extra={"id": order_id})
            return None
        record = self._policy.execute(
            lambda: self._manager.acquire().fetchrow(
                f"SELECT {_COLUMNS} FROM order_lines WHERE order_id = $1 ORDER BY subtotal DESC, id LIMIT 1",
                order_id,
            ),
            "order_lines.find_principal_line",
        )
        return OrderLine.from_record(record) if record is not None else None

    def find_principal_product(self, order_id: int | None) -> str | None:
        """Product type of the order's largest-subtotal line."""

        if not is_valid_id(order_id):
            LOG.warning("Invalid order id", extra={"id": order_id})
            return None
        return self._policy.execute(
            lambda: self._manager.acquire().fetchval(
                "SELECT product_type FROM order_lines WHERE order_id = $1 ORDER BY subtotal DESC, id LIMIT 1",
                order_id,
            ),
            "order_lines.find_principal_product",
        )

    def _exists(self, line_id: int) -> bool:
        return bool(
            self._manager.acquire().fetchval("SELECT EXISTS(SELECT 1 FROM order_lines WHERE id = $1)", line_id)
        )
