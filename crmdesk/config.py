"""App configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import tomllib

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

CONFIG_FILE = Path.home() / ".config" / "crmdesk" / "config.toml"
DEFAULT_LOG_FILE = Path.home() / ".config" / "crmdesk" / "crmdesk.log"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin"
DEFAULT_DATABASE = "kilombo"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

LOG = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Parameters needed to open the application's database connection."""

    model_config = {"frozen": True}

    host: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr
    database: str = Field(min_length=1)
    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536)

    @field_validator("host", "username", "database", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    def connection_url(self, *, include_password: bool = False) -> str:
        """Return a ``postgresql://`` URL; the password is masked by default."""

        secret = self.password.get_secret_value() if include_password else "***"
        return f"postgresql://{self.username}:{secret}@{self.host}:{self.port}/{self.database}"

    def connect_kwargs(self) -> dict[str, object]:
        """Keyword arguments understood by ``asyncpg.connect``."""

        return {
            "host": self.host,
            "port": self.port,
            "user": self.username,
            "password": self.password.get_secret_value(),
            "database": self.database,
        }

    def describe(self) -> str:
        """Password-free, multi-line summary for status displays."""

        return f"Host: {self.host}:{self.port}\nBase de datos: {self.database}\nUsuario: {self.username}"


def default_connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        username=DEFAULT_USERNAME,
        password=SecretStr(DEFAULT_PASSWORD),
        database=DEFAULT_DATABASE,
    )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    log_level: LogLevel = "INFO"
    log_file: Path | None = DEFAULT_LOG_FILE
    database: ConnectionConfig = Field(default_factory=default_connection_config)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.upper()
        return value

    def with_database(self, database: ConnectionConfig) -> AppConfig:
        """Return a copy with the connection parameters replaced."""

        return self.model_copy(update={"database": database})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Unreadable config file, using defaults", extra={"path": str(CONFIG_FILE)})
        return AppConfig()

    try:
        return AppConfig(**data)
    except ValidationError:
        LOG.warning("Invalid config file, using defaults", extra={"path": str(CONFIG_FILE)})
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'theme = "{config.theme}"',
        f'log_level = "{config.log_level}"',
    ]
    if config.log_file is not None:
        lines.append(f"log_file = {_quote(str(config.log_file))}")
    database = config.database
    lines.append("")
    lines.append("[database]")
    lines.append(f"host = {_quote(database.host)}")
    lines.append(f"port = {database.port}")
    lines.append(f"username = {_quote(database.username)}")
    lines.append(f"password = {_quote(database.password.get_secret_value())}")
    lines.append(f"database = {_quote(database.database)}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


class ConfigStore:
    """Holds the current configuration and persists changes to ``CONFIG_FILE``."""

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config if config is not None else load_config()

    @property
    def app_config(self) -> AppConfig:
        return self._config

    def get_config(self) -> ConnectionConfig:
        """Connection parameters currently in effect."""

        return self._config.database

    def save(self, database: ConnectionConfig) -> AppConfig:
        """Replace the connection parameters and write them to disk."""

        self._config = self._config.with_database(database)
        save_config(self._config)
        LOG.info(
            "Configuration saved",
            extra={"path": str(CONFIG_FILE), "host": database.host, "database": database.database},
        )
        return self._config

    def restore_defaults(self) -> AppConfig:
        """Reset connection parameters to defaults and drop the saved file."""

        self._config = self._config.with_database(default_connection_config())
        try:
            CONFIG_FILE.unlink()
        except FileNotFoundError:
            pass
        LOG.info("Default configuration restored")
        return self._config

    def has_saved_configuration(self) -> bool:
        return CONFIG_FILE.exists()


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if isinstance(raw, dict):
        theme = raw.get("theme")
        if isinstance(theme, str):
            data["theme"] = theme
        log_level = raw.get("log_level")
        if isinstance(log_level, str):
            data["log_level"] = log_level
        log_file = raw.get("log_file")
        if isinstance(log_file, str):
            data["log_file"] = Path(log_file).expanduser()
        database = raw.get("database")
        if isinstance(database, dict):
            parsed: dict[str, object] = {}
            for key in ("host", "username", "password", "database"):
                value = database.get(key)
                if isinstance(value, str):
                    parsed[key] = value
            port = database.get("port")
            if isinstance(port, int):
                parsed["port"] = port
            defaults = default_connection_config()
            parsed.setdefault("host", defaults.host)
            parsed.setdefault("username", defaults.username)
            parsed.setdefault("password", defaults.password.get_secret_value())
            parsed.setdefault("database", defaults.database)
            data["database"] = parsed
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConfigStore",
    "ConnectionConfig",
    "default_connection_config",
    "load_config",
    "save_config",
]
