"""Persistence for :class:`~crmdesk.models.Customer`."""

from __future__ import annotations

import logging

from ..connections import ConnectionManager
from ..errors import ValidationFailedError
from ..models import Customer
from ..policy import RepositoryErrorPolicy
from .common import is_valid_id, mutate_existing

LOG = logging.getLogger(__name__)

_COLUMNS = "id, first_name, last_name, email, phone"


class CustomerRepository:
    """CRUD access to the ``customers`` table."""

    def __init__(self, manager: ConnectionManager, policy: RepositoryErrorPolicy) -> None:
        self._manager = manager
        self._policy = policy

    def save(self, customer: Customer | None) -> Customer:
        """Insert a new customer and return it with its generated id."""

        if customer is None:
            raise ValidationFailedError("El cliente no puede ser nulo", operation="customers.save")
        if customer.id is not None:
            raise ValidationFailedError(
                "El cliente ya tiene id; use update",
                operation="customers.save",
                entity=customer.email,
            )

        def _insert() -> int:
            return self._manager.acquire().fetchval(
                "INSERT INTO customers (first_name, last_name, email, phone) VALUES ($1, $2, $3, $4) RETURNING id",
                customer.first_name,
                customer.last_name,
                customer.email,
                customer.phone,
            )

        new_id = self._policy.execute_with_integrity_handling(_insert, "customers.save", customer.email)
        LOG.info("Customer created", extra={"id": new_id})
        return customer.with_id(new_id)

    def find_by_id(self, customer_id: int | None) -> Customer | None:
        if not is_valid_id(customer_id):
            LOG.warning("Invalid customer id", extra={"id": customer_id})
            return None
        record = self._policy.execute(
            lambda: self._manager.acquire().fetchrow(f"SELECT {_COLUMNS} FROM customers WHERE id = $1", customer_id),
            "customers.find_by_id",
        )
        return Customer.from_record(record) if record is not None else None

    def find_all(self) -> list[Customer]:
        records = self._policy.execute(
            lambda: self._manager.acquire().fetch(
                f"SELECT {_COLUMNS} FROM customers ORDER BY last_name, first_name, id"
            ),
            "customers.find_all",
        )
        return [Customer.from_record(record) for record in records]

    def update(self, customer: Customer | None) -> Customer:
        if customer is None or not is_valid_id(customer.id):
            raise ValidationFailedError("El cliente a actualizar requiere un id válido", operation="customers.update")
        assert customer.id is not None

        def _update() -> str:
            return self._manager.acquire().execute(
                "UPDATE customers SET first_name = $1, last_name = $2, email = $3, phone = $4 WHERE id = $5",
                customer.first_name,
                customer.last_name,
                customer.email,
                customer.phone,
                customer.id,
            )

        mutate_existing(
            self._policy,
            exists=lambda: self._exists(customer.id),
            mutate=_update,
            operation_name="customers.update",
            entity="cliente",
            entity_id=customer.id,
        )
        LOG.info("Customer updated", extra={"id": customer.id})
        return customer

    def delete(self, customer_id: int | None) -> None:
        if not is_valid_id(customer_id):
            raise ValidationFailedError(f"Id de cliente inválido: {customer_id}", operation="customers.delete")
        assert customer_id is not None
        mutate_existing(
            self._policy,
            exists=lambda: self._exists(customer_id),
            mutate=lambda: self._manager.acquire().execute("DELETE FROM customers WHERE id = $1", customer_id),
            operation_name="customers.delete",
            entity="cliente",
            entity_id=customer_id,
        )
        LOG.info("Customer deleted", extra={"id": customer_id})

    def exists_by_email(self, email: str | None) -> bool:
        if not email or not email.strip():
            return False
        return bool(
            self._policy.execute(
                lambda: self._manager.acquire().fetchval(
                    "SELECT EXISTS(SELECT 1 FROM customers WHERE lower(email) = lower($1))",
                    email.strip(),
                ),
                "customers.exists_by_email",
            )
        )

    def exists_by_email_excluding(self, email: str | None, customer_id: int | None) -> bool:
        """Whether another customer (not ``customer_id``) already uses ``email``."""

        if not email or not email.strip():
            return False
        if not is_valid_id(customer_id):
            return self.exists_by_email(email)
        return bool(
            self._policy.execute(
                lambda: self._manager.acquire().fetchval(
                    "SELECT EXISTS(SELECT 1 FROM customers WHERE lower(email) = lower($1) AND id <> $2)",
                    email.strip(),
                    customer_id,
                ),
                "customers.exists_by_email_excluding",
            )
        )

    def _exists(self, customer_id: int) -> bool:
        return bool(
            self._manager.acquire().fetchval("SELECT EXISTS(SELECT 1 FROM customers WHERE id = $1)", customer_id)
        )
