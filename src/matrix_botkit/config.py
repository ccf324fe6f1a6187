"""Bot configuration loading and validation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

DEFAULT_CONFIG_PATH = Path("~/.matrix-botkit/bot.toml")
DEFAULT_DEVICE_NAME = "matrix-botkit"
DEFAULT_BOT_NAME = "Bot"


class ConfigError(ValueError):
    """Raised when the bot configuration is missing or invalid."""


@dataclass(frozen=True, slots=True)
class BotConfig:
    """Immutable bot configuration.

    Attributes:
        prefix: Command prefix, e.g. ``bot`` for ``!bot help``.
        base_url: Homeserver URL.
        username: Bot account localpart or full user id.
        password: Bot account password.
        data_directory: Where the nio stores live.
        admins: Full user ids of bot admins.
        users: Authorized user ids or server suffixes (``:example.org``).
            Empty means everybody is authorized.
    """

    prefix: str
    base_url: str
    username: str
    password: str
    data_directory: str
    admins: tuple[str, ...]
    users: tuple[str, ...] = ()
    device_name: str = DEFAULT_DEVICE_NAME
    bot_name: str = DEFAULT_BOT_NAME

    def validate(self) -> None:
        if not self.prefix.strip():
            raise ConfigError("Please verify that prefix is not empty!")
        if not (self.base_url.strip() and self.username.strip() and self.password.strip()):
            raise ConfigError(
                "Please verify that base_url, username, and password are not empty!"
            )
        if not self.data_directory.strip():
            raise ConfigError("Please verify that data_directory is not empty!")
        if not self.admins:
            raise ConfigError(
                "No admins specified. Please specify at least one admin."
            )

    def is_user(self, user_id: str | None) -> bool:
        """Whether ``user_id`` is an authorized user."""
        if user_id is None:
            return False
        if not self.users:
            return True
        return any(user_id.endswith(suffix) for suffix in self.users)

    def is_bot_admin(self, user_id: str | None) -> bool:
        return user_id is not None and user_id in self.admins

    @property
    def store_path(self) -> Path:
        return Path(self.data_directory).expanduser() / "store"


def _string_list(value: Any, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ConfigError(f"'{key}' must be a list of strings")
    items = tuple(value)
    if not all(isinstance(item, str) for item in items):
        raise ConfigError(f"'{key}' must be a list of strings")
    return items


def _string(table: dict[str, Any], key: str, default: str = "") -> str:
    value = table.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string")
    return value


def parse_config(data: dict[str, Any]) -> BotConfig:
    """Build a validated config from the ``[bot]`` table of a parsed document."""
    table = data.get("bot")
    if not isinstance(table, dict):
        raise ConfigError("missing [bot] table")

    config = BotConfig(
        prefix=_string(table, "prefix"),
        base_url=_string(table, "base_url"),
        username=_string(table, "username"),
        password=_string(table, "password"),
        data_directory=_string(table, "data_directory"),
        admins=_string_list(table.get("admins"), "admins"),
        users=_string_list(table.get("users"), "users"),
        device_name=_string(table, "device_name", DEFAULT_DEVICE_NAME),
        bot_name=_string(table, "bot_name", DEFAULT_BOT_NAME),
    )
    config.validate()
    return config


def load_config(path: Path) -> BotConfig:
    """Read and validate a TOML config file."""
    path = path.expanduser()
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    try:
        document = tomlkit.parse(text)
    except TOMLKitError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    return parse_config(document.unwrap())
