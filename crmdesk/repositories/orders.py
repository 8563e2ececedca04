"""Persistence for :class:`~crmdesk.models.Order` and order-level reports."""

from __future__ import annotations

from decimal import Decimal
import logging

from ..connections import ConnectionManager
from ..errors import ValidationFailedError
from ..models import CustomerProfit, Order
from ..policy import RepositoryErrorPolicy
from .common import is_valid_id, mutate_existing

LOG = logging.getLogger(__name__)

_COLUMNS = "id, customer_id, order_date, total, status"

_TOP_CUSTOMERS_QUERY = """
    SELECT c.id AS customer_id,
           c.first_name || ' ' || c.last_name AS customer_name,
           COALESCE(SUM(l.gross_profit), 0) AS gross_profit
    FROM customers c
    JOIN orders o ON o.customer_id = c.id
    JOIN order_lines l ON l.order_id = o.id
    GROUP BY c.id, c.first_name, c.last_name
    ORDER BY gross_profit DESC, c.id
    LIMIT $1
"""


class OrderRepository:
    """CRUD access to the ``orders`` table."""

    def __init__(self, manager: ConnectionManager, policy: RepositoryErrorPolicy) -> None:
        self._manager = manager
        self._policy = policy

    def save(self, order: Order | None) -> Order:
        if order is None:
            raise ValidationFailedError("El pedido no puede ser nulo", operation="orders.save")
        if order.id is not None:
            raise ValidationFailedError("El pedido ya tiene id; use update", operation="orders.save")

        def _insert() -> int:
            return self._manager.acquire().fetchval(
                "INSERT INTO orders (customer_id, order_date, total, status) VALUES ($1, $2, $3, $4) RETURNING id",
                order.customer_id,
                order.order_date,
                order.total,
                order.status,
            )

        new_id = self._policy.execute_with_integrity_handling(
            _insert, "orders.save", f"pedido del cliente {order.customer_id}"
        )
        LOG.info("Order created", extra={"id": new_id, "customer_id": order.customer_id})
        return order.with_id(new_id)

    def find_by_id(self, order_id: int | None) -> Order | None:
        if not is_valid_id(order_id):
            LOG.warning("Invalid order id", extra={"id": order_id})
            return None
        record = self._policy.execute(
            lambda: self._manager.acquire().fetchrow(f"SELECT {_COLUMNS} FROM orders WHERE id = $1", order_id),
            "orders.find_by_id",
        )
        return Order.from_record(record) if record is not None else None

    def find_all(self) -> list[Order]:
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(f"SELECT {_COLUMNS} FROM orders ORDER BY order_date DESC, id DESC"),
            "orders.find_all",
        )
        return [Order.from_record(record) for record in records]

    def find_by_customer(self, customer_id: int | None) -> list[Order]:
        if not is_valid_id(customer_id):
            LOG.warning("Invalid customer id", extra={"id": customer_id})
            return []
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(
                f"SELECT {_COLUMNS} FROM orders WHERE customer_id = $1 ORDER BY order_date DESC, id DESC",
                customer_id,
            ),
            "orders.find_by_customer",
        )
        return [Order.from_record(record) for record in records]

    def update(self, order: Order | None) -> Order:
        if order is None or not is_valid_id(order.id):
            raise ValidationFailedError("El pedido a actualizar requiere un id válido", operation="orders.update")
        assert order.id is not None

        def _update() -> str:
            return self._manager.acquire().execute(
                "UPDATE orders SET customer_id = $1, order_date = $2, total = $3, status = $4 WHERE id = $5",
                order.customer_id,
                order.order_date,
                order.total,
                order.status,
                order.id,
            )

        mutate_existing(
            self._policy,
            exists=lambda: self._exists(order.id),
            mutate=_update,
            operation_name="orders.update",
            entity="pedido",
            entity_id=order.id,
        )
        LOG.info("Order updated", extra={"id": order.id})
        return order

    def delete(self, order_id: int | None) -> None:
        if not is_valid_id(order_id):
            raise ValidationFailedError(f"Id de pedido inválido: {order_id}", operation="orders.delete")
        assert order_id is not None
        mutate_existing(
            self._policy,
            exists=lambda: self._exists(order_id),
            mutate=lambda: self._manager.acquire().execute("DELETE FROM orders WHERE id = $1", order_id),
            operation_name="orders.delete",
            entity="pedido",
            entity_id=order_id,
        )
        LOG.info("Order deleted", extra={"id": order_id})

    def count_all(self) -> int:
        count = self._policy.execute(
            lambda: self._manager.acquire().fetchval("SELECT count(*) FROM orders"),
            "orders.count_all",
        )
        return int(count or 0)

    def count_by_customer(self, customer_id: int | None) -> int:
        if not is_valid_id(customer_id):
            LOG.warning("Invalid customer id", extra={"id": customer_id})
            return 0
        count = self._policy.execute(
            lambda: self._manager.acquire().fetchval("SELECT count(*) FROM orders WHERE customer_id = $1", customer_id),
            "orders.count_by_customer",
        )
        return int(count or 0)

    def sum_total_by_customer(self, customer_id: int | None) -> Decimal:
        if not is_valid_id(customer_id):
            LOG.warning("Invalid customer id", extra={"id": customer_id})
            return Decimal("0")
        total = self._policy.execute(
            lambda: self._manager.acquire().fetchval(
                "SELECT COALESCE(SUM(total), 0) FROM orders WHERE customer_id = $1", customer_id
            ),
            "orders.sum_total_by_customer",
        )
        return Decimal(total or 0)

    def top_customers_by_gross_profit(self, limit: int = 5) -> list[CustomerProfit]:
        """Customers ranked by the gross profit of all their order lines."""

        if limit < 1:
            LOG.warning("Invalid ranking limit", extra={"limit": limit})
            return []
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(_TOP_CUSTOMERS_QUERY, limit),
            "orders.top_customers_by_gross_profit",
        )
        return [CustomerProfit.from_record(record) for record in records]

    def _exists(self, order_id: int) -> bool:
        return bool(self._manager.acquire().fetchval("SELECT EXISTS(SELECT 1 FROM orders WHERE id = $1)", order_id))
