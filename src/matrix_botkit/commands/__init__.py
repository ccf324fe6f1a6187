"""Command handling for the bot.

This module provides command parsing, routing, and the built-in commands.
"""

from __future__ import annotations

from .builtin import (
    ACK_EMOJI,
    ChangeUsernameCommand,
    Command,
    HelpCommand,
    LogoutCommand,
    QuitCommand,
    default_commands,
)
from .dispatch import (
    execute_command,
    handle_command,
    handle_encrypted_command,
    register_commands,
    resolve_command,
)
from .parse import parse_command

__all__ = [
    "ACK_EMOJI",
    "ChangeUsernameCommand",
    "Command",
    "HelpCommand",
    "LogoutCommand",
    "QuitCommand",
    "default_commands",
    "execute_command",
    "handle_command",
    "handle_encrypted_command",
    "parse_command",
    "register_commands",
    "resolve_command",
]
