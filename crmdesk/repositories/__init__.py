"""Repositories over the customer/order schema."""

from __future__ import annotations

from .customers import CustomerRepository
from .order_lines import OrderLineRepository
from .orders import OrderRepository

__all__ = ["CustomerRepository", "OrderLineRepository", "OrderRepository"]
