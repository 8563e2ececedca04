"""Status bar widget that mirrors the connection state."""

from __future__ import annotations

from typing import Callable

from textual.message import Message
from textual.widgets import Static

from crmdesk.connections import ConnectionManager, ConnectionStatus

_STATE_LABELS = {
    "connected": "Conectado",
    "refreshed": "Configuración actualizada",
    "closed": "Desconectado",
    "failed": "Error",
}


class ConnectionStatusChanged(Message):
    """Posted (from any thread) when the connection manager reports a change."""

    def __init__(self, status: ConnectionStatus) -> None:
        super().__init__()
        self.status = status


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, manager: ConnectionManager) -> None:
        super().__init__("", id="status-bar")
        self._manager = manager
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        config = self._manager.config
        self.update(f"Servidor: {config.host}:{config.port} | Base de datos: {config.database} | Estado: Desconectado")
        self._unsubscribe = self._manager.subscribe(self._handle_status)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_status(self, status: ConnectionStatus) -> None:
        # Listeners run on worker threads; post_message is thread-safe.
        self.post_message(ConnectionStatusChanged(status))

    def on_connection_status_changed(self, message: ConnectionStatusChanged) -> None:
        self.update(self.render_status(message.status))

    @staticmethod
    def render_status(status: ConnectionStatus) -> str:
        parts = [
            f"Servidor: {status.host}",
            f"Base de datos: {status.database}",
            f"Estado: {_STATE_LABELS.get(status.state, status.state)}",
        ]
        if status.validated_at is not None:
            parts.append(f"Validado: {status.validated_at.astimezone().strftime('%H:%M:%S')}")
        if status.error:
            parts.append(f"Error: {status.error.splitlines()[0][:80]}")
        return " | ".join(parts)


__all__ = ["ConnectionStatusChanged", "StatusBar"]
