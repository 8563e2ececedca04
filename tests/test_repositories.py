"""Tests for the repositories running against the scripted asyncpg fake."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import asyncpg
import pytest

from crmdesk.connections import ConnectionManager
from crmdesk.errors import (
    ConcurrentModificationError,
    IntegrityViolationError,
    NotFoundError,
    NotFoundOnMutateError,
    TransientConnectionError,
    UnexpectedDatabaseError,
    ValidationFailedError,
)
from crmdesk.models import Customer, Order, OrderLine
from crmdesk.policy import RepositoryErrorPolicy
from crmdesk.repositories import CustomerRepository, OrderLineRepository, OrderRepository

CUSTOMER_EXISTS = "SELECT EXISTS(SELECT 1 FROM customers WHERE id"
ORDER_EXISTS = "SELECT EXISTS(SELECT 1 FROM orders WHERE id"
LINE_EXISTS = "SELECT EXISTS(SELECT 1 FROM order_lines WHERE id"


def _customer_row(customer_id: int, first: str = "Ana", last: str = "García") -> dict[str, object]:
    return {
        "id": customer_id,
        "first_name": first,
        "last_name": last,
        "email": f"{first.lower()}@example.com",
        "phone": None,
    }


def _line_row(line_id: int, order_id: int = 1, subtotal: str = "45.00") -> dict[str, object]:
    return {
        "id": line_id,
        "order_id": order_id,
        "product_type": "Camiseta",
        "description": "Camiseta estampada",
        "quantity": 3,
        "unit_cost": Decimal("6.50"),
        "unit_price": Decimal("15.00"),
        "subtotal": Decimal(subtotal),
        "gross_profit": Decimal("25.50"),
    }


@pytest.fixture
def policy() -> RepositoryErrorPolicy:
    return RepositoryErrorPolicy()


@pytest.fixture
def customers(manager: ConnectionManager, policy: RepositoryErrorPolicy) -> CustomerRepository:
    return CustomerRepository(manager, policy)


@pytest.fixture
def orders(manager: ConnectionManager, policy: RepositoryErrorPolicy) -> OrderRepository:
    return OrderRepository(manager, policy)


@pytest.fixture
def order_lines(manager: ConnectionManager, policy: RepositoryErrorPolicy) -> OrderLineRepository:
    return OrderLineRepository(manager, policy)


def test_save_customer_returns_generated_id(fake_db, customers: CustomerRepository) -> None:
    fake_db.on("INSERT INTO customers", 17)

    saved = customers.save(Customer("Ana", "García", "ana@example.com"))

    assert saved.id == 17
    assert saved.email == "ana@example.com"


def test_save_rejects_missing_customer(fake_db, customers: CustomerRepository) -> None:
    with pytest.raises(ValidationFailedError):
        customers.save(None)

    assert fake_db.connect_calls == []


def test_duplicate_email_is_an_integrity_violation(fake_db, customers: CustomerRepository) -> None:
    error = asyncpg.exceptions.UniqueViolationError('duplicate key value violates unique constraint "customers_email_key"')
    error.constraint_name = "customers_email_key"
    fake_db.on("INSERT INTO customers", error)

    with pytest.raises(IntegrityViolationError) as excinfo:
        customers.save(Customer("Ana", "García", "ana@example.com"))

    assert excinfo.value.constraint == "customers_email_key"
    assert excinfo.value.entity == "ana@example.com"


def test_find_by_id_maps_record(fake_db, customers: CustomerRepository) -> None:
    fake_db.on("FROM customers WHERE id = $1", lambda customer_id: _customer_row(customer_id))

    customer = customers.find_by_id(4)

    assert customer == Customer("Ana", "García", "ana@example.com", None, id=4)
    assert customer.full_name == "Ana García"


@pytest.mark.parametrize("invalid_id", [None, 0, -3])
def test_find_by_invalid_id_returns_none_without_querying(fake_db, customers: CustomerRepository, invalid_id) -> None:
    assert customers.find_by_id(invalid_id) is None
    assert fake_db.connect_calls == []


def test_find_all_customers(fake_db, customers: CustomerRepository) -> None:
    fake_db.on("FROM customers ORDER BY", [_customer_row(1), _customer_row(2, "Bruno", "López")])

    result = customers.find_all()

    assert [customer.id for customer in result] == [1, 2]


def test_update_missing_customer_raises_not_found(fake_db, customers: CustomerRepository) -> None:
    fake_db.on(CUSTOMER_EXISTS, False)

    with pytest.raises(NotFoundError) as excinfo:
        customers.update(Customer("Ana", "García", "ana@example.com", id=9))

    assert excinfo.value.entity_id == 9
    assert not any("UPDATE customers" in query for query, _ in fake_db.statements)


def test_update_without_id_is_rejected(customers: CustomerRepository) -> None:
    with pytest.raises(ValidationFailedError):
        customers.update(Customer("Ana", "García", "ana@example.com"))


def test_concurrent_delete_between_check_and_update(fake_db, customers: CustomerRepository) -> None:
    fake_db.on(CUSTOMER_EXISTS, True)
    fake_db.on("UPDATE customers", "UPDATE 0")

    with pytest.raises(NotFoundOnMutateError) as excinfo:
        customers.update(Customer("Ana", "García", "ana@example.com", id=5))

    assert isinstance(excinfo.value, ConcurrentModificationError)
    assert not isinstance(excinfo.value, UnexpectedDatabaseError)
    assert excinfo.value.affected_rows == 0


def test_update_customer_succeeds(fake_db, customers: CustomerRepository) -> None:
    fake_db.on(CUSTOMER_EXISTS, True)
    fake_db.on("UPDATE customers", "UPDATE 1")
    customer = Customer("Ana", "García", "ana@new.example.com", "600", id=5)

    assert customers.update(customer) is customer


def test_delete_customer(fake_db, customers: CustomerRepository) -> None:
    fake_db.on(CUSTOMER_EXISTS, True)
    fake_db.on("DELETE FROM customers", "DELETE 1")

    customers.delete(5)

    assert ("DELETE FROM customers WHERE id = $1", (5,)) in fake_db.statements


def test_delete_customer_with_orders_is_an_integrity_violation(fake_db, customers: CustomerRepository) -> None:
    fake_db.on(CUSTOMER_EXISTS, True)
    fake_db.on(
        "DELETE FROM customers",
        asyncpg.exceptions.ForeignKeyViolationError('update or delete on table "customers" violates foreign key'),
    )

    with pytest.raises(IntegrityViolationError):
        customers.delete(5)


def test_exists_by_email(fake_db, customers: CustomerRepository) -> None:
    fake_db.on("lower(email) = lower($1) AND id <> $2", lambda email, customer_id: customer_id != 1)
    fake_db.on("lower(email) = lower($1)", True)

    assert customers.exists_by_email("ANA@example.com") is True
    assert customers.exists_by_email("  ") is False
    assert customers.exists_by_email_excluding("ana@example.com", 1) is False
    assert customers.exists_by_email_excluding("ana@example.com", 2) is True


def test_unreachable_database_surfaces_as_transient(fake_db, customers: CustomerRepository, sleeps) -> None:
    fake_db.connect_failures = [ConnectionRefusedError(111, "Connection refused")] * 3

    with pytest.raises(TransientConnectionError) as excinfo:
        customers.find_all()

    assert excinfo.value.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_save_order(fake_db, orders: OrderRepository) -> None:
    fake_db.on("INSERT INTO orders", 3)

    saved = orders.save(Order(customer_id=1, order_date=date(2024, 5, 1), total=Decimal("45.00")))

    assert saved.id == 3


def test_order_for_missing_customer_is_an_integrity_violation(fake_db, orders: OrderRepository) -> None:
    fake_db.on(
        "INSERT INTO orders",
        asyncpg.exceptions.ForeignKeyViolationError('violates foreign key constraint "orders_customer_id_fkey"'),
    )

    with pytest.raises(IntegrityViolationError):
        orders.save(Order(customer_id=99, order_date=date(2024, 5, 1)))


def test_order_aggregates(fake_db, orders: OrderRepository) -> None:
    fake_db.on("SELECT count(*) FROM orders WHERE customer_id", 2)
    fake_db.on("COALESCE(SUM(total), 0)", Decimal("61.00"))

    assert orders.count_by_customer(1) == 2
    assert orders.sum_total_by_customer(1) == Decimal("61.00")
    assert orders.count_by_customer(0) == 0
    assert orders.sum_total_by_customer(None) == Decimal("0")


def test_find_orders_by_customer(fake_db, orders: OrderRepository) -> None:
    fake_db.on(
        "FROM orders WHERE customer_id = $1",
        [{"id": 8, "customer_id": 1, "order_date": date(2024, 5, 1), "total": Decimal("10"), "status": "shipped"}],
    )

    result = orders.find_by_customer(1)

    assert result[0].status == "shipped"
    assert orders.find_by_customer(-1) == []


def test_top_customers_by_gross_profit(fake_db, orders: OrderRepository) -> None:
    fake_db.on(
        "GROUP BY c.id",
        lambda limit: [
            {"customer_id": 2, "customer_name": "Bruno López", "gross_profit": Decimal("80.00")},
            {"customer_id": 1, "customer_name": "Ana García", "gross_profit": Decimal("25.50")},
        ][:limit],
    )

    ranking = orders.top_customers_by_gross_profit(1)

    assert [row.customer_name for row in ranking] == ["Bruno López"]
    assert orders.top_customers_by_gross_profit(0) == []


def test_delete_missing_order(fake_db, orders: OrderRepository) -> None:
    fake_db.on(ORDER_EXISTS, False)

    with pytest.raises(NotFoundError):
        orders.delete(12)


def test_save_order_line_returns_computed_amounts(fake_db, order_lines: OrderLineRepository) -> None:
    fake_db.on("INSERT INTO order_lines", _line_row(5))

    saved = order_lines.save(
        OrderLine(
            order_id=1,
            product_type="Camiseta",
            description="Camiseta estampada",
            quantity=3,
            unit_cost=Decimal("6.50"),
            unit_price=Decimal("15.00"),
        )
    )

    assert saved.id == 5
    assert saved.subtotal == Decimal("45.00")
    assert saved.gross_profit == Decimal("25.50")


def test_principal_line_and_product(fake_db, order_lines: OrderLineRepository) -> None:
    fake_db.on("SELECT product_type FROM order_lines", "Camiseta")
    fake_db.on("ORDER BY subtotal DESC, id LIMIT 1", _line_row(5, subtotal="45.00"))

    assert order_lines.find_principal_product(1) == "Camiseta"
    line = order_lines.find_principal_line(1)
    assert line is not None and line.id == 5
    assert order_lines.find_principal_product(0) is None


def test_update_order_line_vanished(fake_db, order_lines: OrderLineRepository) -> None:
    fake_db.on(LINE_EXISTS, True)
    fake_db.on("UPDATE order_lines", "UPDATE 0")
    line = OrderLine(
        order_id=1,
        product_type="Taza",
        description="Taza personalizada",
        quantity=2,
        unit_cost=Decimal("2.10"),
        unit_price=Decimal("8.00"),
        id=6,
    )

    with pytest.raises(ConcurrentModificationError):
        order_lines.update(line)
