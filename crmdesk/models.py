"""Domain entities persisted by the repositories."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class Customer:
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def with_id(self, id: int) -> Customer:
        return replace(self, id=id)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Customer:
        return cls(
            id=record["id"],
            first_name=record["first_name"],
            last_name=record["last_name"],
            email=record["email"],
            phone=record["phone"],
        )


@dataclass(frozen=True, slots=True)
class Order:
    customer_id: int
    order_date: date
    total: Decimal = Decimal("0")
    status: str = "pending"
    id: int | None = None

    def with_id(self, id: int) -> Order:
        return replace(self, id=id)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Order:
        return cls(
            id=record["id"],
            customer_id=record["customer_id"],
            order_date=record["order_date"],
            total=Decimal(record["total"]),
            status=record["status"],
        )


@dataclass(frozen=True, slots=True)
class OrderLine:
    """A product line; ``subtotal`` and ``gross_profit`` are computed by the database."""

    order_id: int
    product_type: str
    description: str
    quantity: int
    unit_cost: Decimal
    unit_price: Decimal
    subtotal: Decimal | None = None
    gross_profit: Decimal | None = None
    id: int | None = None

    def with_id(self, id: int) -> OrderLine:
        return replace(self, id=id)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> OrderLine:
        return cls(
            id=record["id"],
            order_id=record["order_id"],
            product_type=record["product_type"],
            description=record["description"],
            quantity=record["quantity"],
            unit_cost=Decimal(record["unit_cost"]),
            unit_price=Decimal(record["unit_price"]),
            subtotal=_decimal_or_none(record["subtotal"]),
            gross_profit=_decimal_or_none(record["gross_profit"]),
        )


@dataclass(frozen=True, slots=True)
class CustomerProfit:
    """Row of the gross-profit ranking report."""

    customer_id: int
    customer_name: str
    gross_profit: Decimal

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> CustomerProfit:
        return cls(
            customer_id=record["customer_id"],
            customer_name=record["customer_name"],
            gross_profit=Decimal(record["gross_profit"]),
        )


@dataclass(frozen=True, slots=True)
class CustomerStatistics:
    customer_id: int
    order_count: int
    total_spent: Decimal


def _decimal_or_none(value: Any) -> Decimal | None:
    return None if value is None else Decimal(value)


__all__ = ["Customer", "CustomerProfit", "CustomerStatistics", "Order", "OrderLine"]
