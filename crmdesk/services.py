"""Application services sitting between the shell and the data layer."""

from __future__ import annotations

import logging

from .config import ConfigStore, ConnectionConfig
from .connections import ConnectionManager
from .diagnostics import ConnectionTestResult
from .errors import ValidationFailedError
from .models import CustomerProfit, CustomerStatistics
from .repositories import OrderRepository
from .repositories.common import is_valid_id

LOG = logging.getLogger(__name__)


class ConfigurationService:
    """Reads, tests, persists and applies connection settings."""

    def __init__(self, store: ConfigStore, manager: ConnectionManager) -> None:
        self._store = store
        self._manager = manager

    def current(self) -> ConnectionConfig:
        return self._store.get_config()

    def test(self, candidate: ConnectionConfig) -> ConnectionTestResult:
        """Probe ``candidate`` without disturbing the live connection."""

        return self._manager.test_connection(candidate)

    def save_and_apply(self, candidate: ConnectionConfig) -> None:
        """Persist ``candidate`` and make the manager reconnect with it."""

        self._store.save(candidate)
        self._manager.refresh_configuration()
        LOG.info("Connection configuration applied", extra={"host": candidate.host, "database": candidate.database})

    def restore_defaults(self) -> ConnectionConfig:
        self._store.restore_defaults()
        self._manager.refresh_configuration()
        return self._store.get_config()

    def has_saved_configuration(self) -> bool:
        return self._store.has_saved_configuration()

    def connection_info(self) -> str:
        return self._manager.connection_info()


class ReportService:
    def __init__(self, orders: OrderRepository) -> None:
        self._orders = orders

    def top_customers(self, limit: int = 5) -> list[CustomerProfit]:
        return self._orders.top_customers_by_gross_profit(limit)

    def count_orders(self) -> int:
        return self._orders.count_all()

    def customer_statistics(self, customer_id: int | None) -> CustomerStatistics:
        """Number of orders and total spent by one customer."""

        if not is_valid_id(customer_id):
            raise ValidationFailedError(f"Id de cliente inválido: {customer_id}", operation="reports.customer_statistics")
        assert customer_id is not None
        statistics = CustomerStatistics(
            customer_id=customer_id,
            order_count=self._orders.count_by_customer(customer_id),
            total_spent=self._orders.sum_total_by_customer(customer_id),
        )
        LOG.debug(
            "Customer statistics computed",
            extra={"id": customer_id, "orders": statistics.order_count, "total": str(statistics.total_spent)},
        )
        return statistics


__all__ = ["ConfigurationService", "ReportService"]
