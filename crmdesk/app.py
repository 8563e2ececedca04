"""Textual application entry point for crmdesk."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header

from .config import AppConfig, ConfigStore, load_config
from .connections import ConnectionManager
from .errors import CrmError
from .logging import configure_logging
from .policy import RepositoryErrorPolicy
from .repositories import CustomerRepository, OrderLineRepository, OrderRepository
from .services import ConfigurationService, ReportService
from .widgets import ConfigurationApplied, ConnectionPanel, CustomerTable, StatusBar

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    return load_config()


class CrmApp(App[None]):
    """Customer/order desk: connection settings on the left, customers on the right."""

    TITLE = "crmdesk"
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Salir"),
        ("ctrl+r", "reload", "Recargar clientes"),
        ("ctrl+t", "top_customers", "Mejores clientes"),
    ]

    def __init__(self, *, manager: ConnectionManager | None = None) -> None:
        super().__init__()
        self._config = _load_app_config()
        configure_logging(self._config)
        self._store = ConfigStore(self._config)
        # One manager per process, shared by every repository.
        self._manager = manager or ConnectionManager(self._store.get_config)
        policy = RepositoryErrorPolicy()
        self.customers = CustomerRepository(self._manager, policy)
        self.orders = OrderRepository(self._manager, policy)
        self.order_lines = OrderLineRepository(self._manager, policy)
        self.configuration = ConfigurationService(self._store, self._manager)
        self.reports = ReportService(self.orders)
        self._customer_table: CustomerTable | None = None

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._manager

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        self._customer_table = CustomerTable(self.customers)
        yield Horizontal(ConnectionPanel(self.configuration), self._customer_table, id="content")
        yield StatusBar(self._manager)
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = "textual-light" if self._config.theme == "light" else "textual-dark"
        if not self.configuration.has_saved_configuration():
            self.notify("Usando la configuración de conexión por defecto", severity="warning")
        self.action_reload()

    def on_unmount(self) -> None:
        self._manager.shutdown()

    def action_reload(self) -> None:
        if self._customer_table is not None:
            self._customer_table.load()

    def action_top_customers(self) -> None:
        self.run_worker(self._load_top_customers, thread=True, exclusive=True, group="reports")

    def on_configuration_applied(self, message: ConfigurationApplied) -> None:
        self.action_reload()

    def _load_top_customers(self) -> None:
        try:
            ranking = self.reports.top_customers()
        except CrmError as exc:
            self.call_from_thread(self.notify, exc.message, title="Mejores clientes", severity="error")
            return
        if ranking:
            lines = [f"{index}. {row.customer_name}: {row.gross_profit}" for index, row in enumerate(ranking, 1)]
            text = "\n".join(lines)
        else:
            text = "Sin pedidos registrados"
        self.call_from_thread(self.notify, text, title="Mejores clientes por beneficio bruto")


def main() -> None:
    """Invoke the Textual application."""

    CrmApp().run()


if __name__ == "__main__":
    main()
