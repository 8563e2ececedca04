"""Customer listing backed by :class:`~crmdesk.repositories.CustomerRepository`."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Static

from crmdesk.diagnostics import ErrorType
from crmdesk.errors import CrmError
from crmdesk.models import Customer
from crmdesk.repositories import CustomerRepository

_COLUMNS = ("ID", "Nombre", "Apellido", "Correo", "Teléfono")


class CustomerTable(Container):
    """Table of customers loaded off the UI thread."""

    DEFAULT_CSS = """
    CustomerTable {
        layout: vertical;
        border: round $primary 40%;
        padding: 1 2;
        height: 1fr;
    }

    CustomerTable .panel-title {
        text-style: bold;
    }

    #customer-status {
        color: $text-muted;
    }
    """

    def __init__(self, repository: CustomerRepository) -> None:
        super().__init__(id="customer-table")
        self._repository = repository
        self.status_text = ""

    def compose(self) -> ComposeResult:
        yield Static("Clientes", classes="panel-title")
        yield Static("", id="customer-status")
        yield DataTable(id="customer-rows", zebra_stripes=True, cursor_type="row")

    async def on_mount(self) -> None:
        self._ensure_columns()

    def load(self) -> None:
        """Reload customers in a thread worker."""

        self._set_status("Cargando clientes…")
        self.run_worker(self._fetch, thread=True, exclusive=True, group="customers")

    def populate(self, customers: list[Customer]) -> None:
        table = self._ensure_columns()
        table.clear()
        for customer in customers:
            table.add_row(
                str(customer.id),
                customer.first_name,
                customer.last_name,
                customer.email,
                customer.phone or "",
                key=str(customer.id),
            )
        self._set_status(f"{len(customers)} cliente(s)")

    def show_error(self, error: CrmError) -> None:
        self.query_one("#customer-rows", DataTable).clear()
        title = (error.error_type or ErrorType.UNKNOWN).title
        self._set_status(f"{title}: {error.message.splitlines()[0]}")

    def _set_status(self, text: str) -> None:
        self.status_text = text
        self.query_one("#customer-status", Static).update(text)

    def _ensure_columns(self) -> DataTable:
        table = self.query_one("#customer-rows", DataTable)
        if not table.columns:
            table.add_columns(*_COLUMNS)
        return table

    def _fetch(self) -> None:
        try:
            customers = self._repository.find_all()
        except CrmError as exc:
            self.app.call_from_thread(self.show_error, exc)
            return
        self.app.call_from_thread(self.populate, customers)


__all__ = ["CustomerTable"]
