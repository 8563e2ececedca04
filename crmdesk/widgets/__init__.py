"""Widget library for the Textual UI."""

from __future__ import annotations

from .connection_panel import ConfigurationApplied, ConnectionPanel
from .customer_table import CustomerTable
from .status_bar import ConnectionStatusChanged, StatusBar

__all__ = ["ConfigurationApplied", "ConnectionPanel", "ConnectionStatusChanged", "CustomerTable", "StatusBar"]
