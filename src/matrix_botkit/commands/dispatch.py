"""Command routing for prefixed room messages."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import anyio

from ..config import BotConfig
from ..logging_config import get_logger
from ..types import EncryptedContent, InboundEvent, TextContent
from ..waiting import first_with_timeout, poll
from .builtin import ACK_EMOJI, Command
from .parse import parse_command

if TYPE_CHECKING:
    from ..bot import MatrixBot

logger = get_logger(__name__)


def find_command(commands: Sequence[Command], name: str) -> Command | None:
    """First command whose name matches exactly, in sequence order."""
    for command in commands:
        if command.name == name:
            return command
    return None


def resolve_command(
    commands: Sequence[Command],
    body: str,
    prefix: str,
    default_command: str | None = None,
) -> tuple[Command, str] | None:
    """Resolve a message body to ``(command, parameters)``.

    When no command matches and ``default_command`` is set, the default
    command receives the whole text after the prefix as parameters.
    """
    parsed = parse_command(body, prefix)
    if parsed is None:
        return None
    command = find_command(commands, parsed.name)
    if command is not None:
        return command, parsed.parameters
    if default_command is not None:
        command = find_command(commands, default_command)
        if command is not None:
            return command, parsed.remainder
    return None


async def handle_command(
    commands: Sequence[Command],
    event: InboundEvent,
    bot: MatrixBot,
    config: BotConfig,
    default_command: str | None = None,
) -> None:
    """Route a plain text message event to its command."""
    if not isinstance(event.content, TextContent):
        return
    await execute_command(commands, event, bot, config, default_command)


async def decrypt_message(event: InboundEvent, bot: MatrixBot) -> InboundEvent | None:
    """Wait (bounded) until an encrypted event can be decrypted."""
    logger.debug("command.decrypt.waiting", event_id=event.event_id)
    decrypted = await first_with_timeout(
        poll(lambda: bot.client.decrypt(event)),
        lambda value: value is not None,
        timeout=bot.wait_timeout,
    )
    if decrypted is None:
        logger.error(
            "command.decrypt.timeout",
            room_id=event.room_id,
            event_id=event.event_id,
            sender=event.sender,
        )
        return None
    logger.debug("command.decrypt.success", event_id=event.event_id)
    return decrypted


async def handle_encrypted_command(
    commands: Sequence[Command],
    event: InboundEvent,
    bot: MatrixBot,
    config: BotConfig,
    default_command: str | None = None,
) -> None:
    """Decrypt an encrypted message event, then route it like a plain one."""
    if not isinstance(event.content, EncryptedContent):
        return
    decrypted = await decrypt_message(event, bot)
    if decrypted is None or not isinstance(decrypted.content, TextContent):
        return
    await execute_command(commands, decrypted, bot, config, default_command)


async def _acknowledge(bot: MatrixBot, room_id: str, event_id: str) -> None:
    try:
        await bot.client.send_reaction(room_id, event_id, ACK_EMOJI)
    except Exception as exc:
        logger.warning(
            "command.ack.failed",
            room_id=room_id,
            event_id=event_id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def execute_command(
    commands: Sequence[Command],
    event: InboundEvent,
    bot: MatrixBot,
    config: BotConfig,
    default_command: str | None = None,
) -> None:
    content = event.content
    if not isinstance(content, TextContent):
        return
    room_id = event.room_id
    sender = event.sender
    event_id = event.event_id
    if room_id is None or sender is None or event_id is None:
        return

    resolved = resolve_command(commands, content.body, config.prefix, default_command)
    if resolved is None:
        return
    command, parameters = resolved

    async with anyio.create_task_group() as tg:
        if command.auto_acknowledge:
            # The reaction is issued first but the command does not wait for it
            tg.start_soon(_acknowledge, bot, room_id, event_id)
            await anyio.sleep(0)

        try:
            await command.execute(bot, sender, room_id, parameters, event_id, event)
        except Exception as exc:
            logger.exception(
                "command.failed",
                command=command.name,
                room_id=room_id,
                sender=sender,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )


def register_commands(
    bot: MatrixBot,
    commands: Sequence[Command],
    default_command: str | None = None,
) -> None:
    """Subscribe the command router to plain and encrypted messages."""
    config = bot.config

    async def on_text(event: InboundEvent) -> None:
        await handle_command(commands, event, bot, config, default_command)

    async def on_encrypted(event: InboundEvent) -> None:
        await handle_encrypted_command(commands, event, bot, config, default_command)

    bot.subscribe_content(TextContent, on_text)
    bot.subscribe_content(EncryptedContent, on_encrypted)
