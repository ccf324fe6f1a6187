"""Command parsing utilities."""

from __future__ import annotations

import re

from ..types import ParsedCommand

_FIRST_WHITESPACE = re.compile(r"\s+")


def command_marker(prefix: str) -> str:
    return f"!{prefix}"


def parse_command(body: str, prefix: str) -> ParsedCommand | None:
    """Parse ``!<prefix> <name> [parameters]`` from a message body.

    Args:
        body: The message text.
        prefix: The configured command prefix.

    Returns:
        The parsed invocation, or None if the body does not start with the
        command marker.
    """
    marker = command_marker(prefix)
    if not body.startswith(marker):
        return None
    remainder = body[len(marker) :].strip()
    parts = _FIRST_WHITESPACE.split(remainder, maxsplit=1)
    name = parts[0]
    parameters = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=name, parameters=parameters, remainder=remainder)
