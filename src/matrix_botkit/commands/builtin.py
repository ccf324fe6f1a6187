"""Command base class and the built-in bot commands."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from ..config import BotConfig
from ..logging_config import get_logger
from ..markdown import prepare_markdown
from ..power import can_send_messages, is_moderator
from ..types import InboundEvent
from .parse import command_marker

if TYPE_CHECKING:
    from ..bot import MatrixBot

logger = get_logger(__name__)

ACK_EMOJI = "✔️"

NOT_ADMIN = "You are not an admin."
NOT_MODERATOR = "You are not a moderator in this room."
MISSING_NAME = "Please provide a new name for the bot."


class Command(ABC):
    """A named bot command invoked as ``!<prefix> <name> [parameters]``.

    Attributes:
        name: Exact, case-sensitive command name.
        params: Parameter description for the help text.
        help: What the command does.
        auto_acknowledge: React with ``ACK_EMOJI`` before executing.
    """

    name: str
    params: str = ""
    help: str
    auto_acknowledge: bool = False

    @abstractmethod
    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        """Execute the command.

        Args:
            bot: The bot executing the command.
            sender: The user who sent the command.
            room_id: The room the command was sent in.
            parameters: Everything after the command name, trimmed.
            event_id: The id of the command message.
            event: The command message itself.
        """


async def _reply(bot: MatrixBot, room_id: str, text: str) -> None:
    await bot.client.send_message(room_id, text)


class ChangeUsernameCommand(Command):
    """Change the bot's display name in the room, or globally for bot admins
    when ``globally`` is set."""

    name = "name"
    params = "{NEW_NAME}"
    help = (
        "sets the display name of the bot to NEW_NAME "
        "(for this channel, or globally when configured)"
    )

    def __init__(self, config: BotConfig, globally: bool = False) -> None:
        self._config = config
        self._globally = globally

    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        if not await can_send_messages(bot, room_id):
            logger.error("command.name.cannot_send", room_id=room_id)
            return

        if not parameters.strip():
            await _reply(bot, room_id, MISSING_NAME)
            return

        if self._globally and self._config.is_bot_admin(sender):
            await bot.rename(parameters)
            return
        if self._globally:
            logger.info("command.name.global_denied", sender=sender)

        if not await is_moderator(bot, sender, room_id):
            await _reply(bot, room_id, NOT_MODERATOR)
            return

        await bot.rename_in_room(room_id, parameters)


class HelpCommand(Command):
    name = "help"
    help = "shows this help message"

    def __init__(
        self,
        config: BotConfig,
        bot_name: str,
        command_getter: Callable[[], Sequence[Command]],
    ) -> None:
        self._config = config
        self._bot_name = bot_name
        self._command_getter = command_getter

    def render(self) -> str:
        marker = command_marker(self._config.prefix)
        lines = [f"This is {self._bot_name}. You can use the following commands:", ""]
        for command in self._command_getter():
            usage = " ".join(part for part in (marker, command.name, command.params) if part)
            lines.append(f"* `{usage}` - {command.help}")
        return "\n".join(lines)

    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        body, formatted_body = prepare_markdown(self.render())
        await bot.client.send_message(room_id, body, formatted_body)


class QuitCommand(Command):
    name = "quit"
    help = "quits the bot without logging out"
    auto_acknowledge = True

    def __init__(self, config: BotConfig) -> None:
        self._config = config

    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        if not self._config.is_bot_admin(sender):
            await _reply(bot, room_id, NOT_ADMIN)
            return
        await bot.quit()


class LogoutCommand(Command):
    """Quit the bot and log out all sessions. Bot admins only."""

    name = "logout"
    help = "quits the bot and logs out all sessions"
    auto_acknowledge = True

    def __init__(self, config: BotConfig) -> None:
        self._config = config

    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        if not self._config.is_bot_admin(sender):
            await _reply(bot, room_id, NOT_ADMIN)
            return
        await bot.quit(logout=True)


def default_commands(config: BotConfig, *, globally: bool = False) -> list[Command]:
    """The standard command set: help, name, quit and logout."""
    commands: list[Command] = []
    commands.append(HelpCommand(config, config.bot_name, lambda: commands))
    commands.extend(
        [
            ChangeUsernameCommand(config, globally=globally),
            QuitCommand(config),
            LogoutCommand(config),
        ]
    )
    return commands
