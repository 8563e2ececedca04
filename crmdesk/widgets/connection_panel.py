"""Form for editing, testing and applying the database connection settings."""

from __future__ import annotations

import logging

from pydantic import SecretStr, ValidationError
from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.message import Message
from textual.widgets import Button, Input, Static

from crmdesk.config import ConnectionConfig
from crmdesk.diagnostics import ConnectionTestResult
from crmdesk.errors import CrmError
from crmdesk.services import ConfigurationService

LOG = logging.getLogger(__name__)

_FIELDS = ("host", "port", "username", "password", "database")


class ConfigurationApplied(Message):
    """Posted after new settings were saved and the manager refreshed."""


class ConnectionPanel(Container):
    """Connection settings form with Test / Save / Restore actions."""

    DEFAULT_CSS = """
    ConnectionPanel {
        layout: vertical;
        border: round $primary 40%;
        padding: 1 2;
        width: 44;
        height: 1fr;
    }

    ConnectionPanel .panel-title {
        text-style: bold;
    }

    ConnectionPanel .connection-actions {
        height: auto;
        margin-top: 1;
    }

    ConnectionPanel .connection-actions > * {
        margin-right: 1;
    }

    #connection-result {
        margin-top: 1;
        height: auto;
    }
    """

    def __init__(self, service: ConfigurationService) -> None:
        super().__init__(id="connection-panel")
        self._service = service
        self.last_message = ""

    def compose(self) -> ComposeResult:
        config = self._service.current()
        yield Static("Conexión", classes="panel-title")
        yield Input(config.host, placeholder="Servidor", id="conn-host")
        yield Input(str(config.port), placeholder="Puerto", id="conn-port", type="integer")
        yield Input(config.username, placeholder="Usuario", id="conn-username")
        yield Input(
            config.password.get_secret_value(),
            placeholder="Contraseña",
            id="conn-password",
            password=True,
        )
        yield Input(config.database, placeholder="Base de datos", id="conn-database")
        yield Horizontal(
            Button("Probar", id="conn-test", variant="primary"),
            Button("Guardar", id="conn-save", variant="success"),
            Button("Restaurar", id="conn-restore"),
            classes="connection-actions",
        )
        yield Static("", id="connection-result")

    def candidate(self) -> ConnectionConfig | None:
        """Build a config from the form; reports and returns ``None`` if invalid."""

        values = {name: self.query_one(f"#conn-{name}", Input).value for name in _FIELDS}
        try:
            return ConnectionConfig(
                host=values["host"],
                port=values["port"] or 0,
                username=values["username"],
                password=SecretStr(values["password"]),
                database=values["database"],
            )
        except ValidationError as exc:
            fields = ", ".join(str(error["loc"][0]) for error in exc.errors() if error["loc"])
            self.show_message(f"Configuración inválida: revise {fields}", error=True)
            return None

    def fill(self, config: ConnectionConfig) -> None:
        self.query_one("#conn-host", Input).value = config.host
        self.query_one("#conn-port", Input).value = str(config.port)
        self.query_one("#conn-username", Input).value = config.username
        self.query_one("#conn-password", Input).value = config.password.get_secret_value()
        self.query_one("#conn-database", Input).value = config.database

    def show_message(self, message: str, *, error: bool = False) -> None:
        prefix = "✖" if error else "✔"
        self.last_message = message
        self.query_one("#connection-result", Static).update(f"{prefix} {message}")

    def show_result(self, result: ConnectionTestResult) -> None:
        self.show_message(f"{result.error_type.title}\n\n{result.message}", error=not result.success)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id
        if button_id == "conn-restore":
            self.show_message("Restaurando configuración por defecto…")
            self.run_worker(self._restore_defaults, thread=True, exclusive=True, group="connection")
            return
        candidate = self.candidate()
        if candidate is None:
            return
        if button_id == "conn-test":
            self.show_message(f"Probando conexión con {candidate.host}…")
            self.run_worker(lambda: self._test(candidate), thread=True, exclusive=True, group="connection")
        elif button_id == "conn-save":
            self.run_worker(lambda: self._save(candidate), thread=True, exclusive=True, group="connection")

    def _test(self, candidate: ConnectionConfig) -> None:
        result = self._service.test(candidate)
        self.app.call_from_thread(self.show_result, result)

    def _save(self, candidate: ConnectionConfig) -> None:
        try:
            self._service.save_and_apply(candidate)
        except (CrmError, OSError) as exc:
            LOG.exception("Failed to save configuration")
            self.app.call_from_thread(self.show_message, f"No se pudo guardar: {exc}", error=True)
            return
        self.app.call_from_thread(self.show_message, "Configuración guardada y aplicada")
        self.post_message(ConfigurationApplied())

    def _restore_defaults(self) -> None:
        config = self._service.restore_defaults()
        self.app.call_from_thread(self.fill, config)
        self.app.call_from_thread(self.show_message, "Configuración por defecto restaurada")
        self.post_message(ConfigurationApplied())


__all__ = ["ConfigurationApplied", "ConnectionPanel"]
