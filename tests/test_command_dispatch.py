"""Tests for command routing, acknowledgement and encrypted commands."""

from __future__ import annotations

import anyio
import pytest

from matrix_botkit.bot import MatrixBot
from matrix_botkit.commands import Command, register_commands, resolve_command
from matrix_botkit.commands.builtin import ACK_EMOJI
from matrix_botkit.types import InboundEvent
from matrix_fixtures import (
    MATRIX_EVENT_ID,
    MATRIX_OUTSIDER,
    MATRIX_ROOM_ID,
    MATRIX_SENDER,
    START_TS,
    FakeMatrixClient,
    encrypted_event,
    make_config,
    text_event,
)


class RecordingCommand(Command):
    """Command that records its invocations."""

    def __init__(
        self,
        name: str,
        *,
        auto_acknowledge: bool = False,
        fail: bool = False,
        client: FakeMatrixClient | None = None,
    ) -> None:
        self.name = name
        self.help = f"{name} help"
        self.auto_acknowledge = auto_acknowledge
        self._fail = fail
        self._client = client
        self.invocations: list[tuple[str, str, str, str]] = []
        self.reactions_before: list[int] = []

    async def execute(
        self,
        bot: MatrixBot,
        sender: str,
        room_id: str,
        parameters: str,
        event_id: str,
        event: InboundEvent,
    ) -> None:
        if self._client is not None:
            self.reactions_before.append(len(self._client.calls_named("send_reaction")))
        self.invocations.append((sender, room_id, parameters, event_id))
        if self._fail:
            raise RuntimeError("boom")


def _bot(client: FakeMatrixClient) -> MatrixBot:
    return MatrixBot(
        client,
        make_config(),
        now_ms=lambda: START_TS,
        handle_signals=False,
        wait_timeout=0.3,
    )


# --- resolve_command tests ---


def test_resolve_command_by_name() -> None:
    """Commands are found by exact name."""
    help_cmd = RecordingCommand("help")
    name_cmd = RecordingCommand("name")
    resolved = resolve_command([help_cmd, name_cmd], "!bot name New", "bot")
    assert resolved == (name_cmd, "New")


def test_resolve_command_is_case_sensitive() -> None:
    """Names must match exactly."""
    assert resolve_command([RecordingCommand("help")], "!bot HELP", "bot") is None


def test_resolve_command_default_receives_remainder() -> None:
    """Unknown commands fall back to the default with the whole remainder."""
    help_cmd = RecordingCommand("help")
    resolved = resolve_command([help_cmd], "!bot blah blah", "bot", "help")
    assert resolved == (help_cmd, "blah blah")


def test_resolve_command_unknown_default() -> None:
    """A default naming a missing command resolves nothing."""
    assert resolve_command([RecordingCommand("help")], "!bot x", "bot", "nope") is None


def test_resolve_command_first_match_wins() -> None:
    """Duplicate names resolve to the first registered command."""
    first = RecordingCommand("dup")
    second = RecordingCommand("dup")
    resolved = resolve_command([first, second], "!bot dup", "bot")
    assert resolved is not None
    assert resolved[0] is first


# --- Plain command dispatch tests ---


@pytest.mark.anyio
async def test_dispatch_executes_command() -> None:
    """A prefixed message from a user runs the matching command."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("echo")
    register_commands(bot, [command])

    await client.emit(text_event("!bot echo hello world"))

    assert command.invocations == [
        (MATRIX_SENDER, MATRIX_ROOM_ID, "hello world", MATRIX_EVENT_ID)
    ]


@pytest.mark.anyio
async def test_dispatch_default_command() -> None:
    """The default command handles unknown command names."""
    client = FakeMatrixClient()
    bot = _bot(client)
    help_cmd = RecordingCommand("help")
    register_commands(bot, [help_cmd], default_command="help")

    await client.emit(text_event("!bot blah blah"))

    assert [params for _, _, params, _ in help_cmd.invocations] == ["blah blah"]


@pytest.mark.anyio
async def test_dispatch_ignores_plain_messages() -> None:
    """Messages without the prefix do not run or acknowledge anything."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("help", auto_acknowledge=True)
    register_commands(bot, [command], default_command="help")

    await client.emit(text_event("just chatting"))

    assert command.invocations == []
    assert client.calls == []


@pytest.mark.anyio
async def test_dispatch_ignores_unadmitted_events() -> None:
    """Commands from non-users or from before start are dropped."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("echo")
    register_commands(bot, [command])

    await client.emit(text_event("!bot echo", sender=MATRIX_OUTSIDER))
    await client.emit(text_event("!bot echo", ts=START_TS - 1))

    assert command.invocations == []


@pytest.mark.anyio
async def test_dispatch_acknowledges_before_execute() -> None:
    """Auto-acknowledged commands get the reaction before they run."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("quit", auto_acknowledge=True, client=client)
    register_commands(bot, [command])

    await client.emit(text_event("!bot quit"))

    assert client.calls_named("send_reaction") == [
        (MATRIX_ROOM_ID, MATRIX_EVENT_ID, ACK_EMOJI)
    ]
    assert command.reactions_before == [1]


@pytest.mark.anyio
async def test_dispatch_does_not_wait_for_acknowledgement() -> None:
    """A slow reaction does not hold up the command."""
    client = FakeMatrixClient(reaction_delay=0.1)
    bot = _bot(client)
    completed_at_execute: list[int] = []

    class QuickCommand(RecordingCommand):
        async def execute(self, *args: object) -> None:
            completed_at_execute.append(client.reactions_completed)

    register_commands(bot, [QuickCommand("quit", auto_acknowledge=True)])

    with anyio.fail_after(2):
        await client.emit(text_event("!bot quit"))

    assert completed_at_execute == [0]
    assert client.reactions_completed == 1


@pytest.mark.anyio
async def test_dispatch_ack_failure_still_executes() -> None:
    """A rejected reaction does not stop the command."""
    client = FakeMatrixClient(fail_reactions=True)
    bot = _bot(client)
    command = RecordingCommand("quit", auto_acknowledge=True)
    register_commands(bot, [command])

    await client.emit(text_event("!bot quit"))

    assert len(command.invocations) == 1


@pytest.mark.anyio
async def test_dispatch_swallows_command_errors() -> None:
    """A failing command is logged and the next message is still handled."""
    client = FakeMatrixClient()
    bot = _bot(client)
    failing = RecordingCommand("fail", fail=True)
    echo = RecordingCommand("echo")
    register_commands(bot, [failing, echo])

    await client.emit(text_event("!bot fail"))
    await client.emit(text_event("!bot echo again"))

    assert len(failing.invocations) == 1
    assert [params for _, _, params, _ in echo.invocations] == ["again"]


# --- Encrypted command tests ---


@pytest.mark.anyio
async def test_encrypted_command_is_decrypted_and_run() -> None:
    """Encrypted messages run once their plaintext is available."""
    client = FakeMatrixClient()
    client.decrypted[MATRIX_EVENT_ID] = text_event("!bot echo secret")
    bot = _bot(client)
    command = RecordingCommand("echo")
    register_commands(bot, [command])

    with anyio.fail_after(2):
        await client.emit(encrypted_event())

    assert [params for _, _, params, _ in command.invocations] == ["secret"]


@pytest.mark.anyio
async def test_encrypted_command_waits_for_keys() -> None:
    """Decryption is retried until the room key arrives."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("echo")
    register_commands(bot, [command])

    async def key_arrives() -> None:
        await anyio.sleep(0.05)
        client.decrypted[MATRIX_EVENT_ID] = text_event("!bot echo late")

    with anyio.fail_after(2):
        async with anyio.create_task_group() as tg:
            tg.start_soon(key_arrives)
            await client.emit(encrypted_event())

    assert [params for _, _, params, _ in command.invocations] == ["late"]


@pytest.mark.anyio
async def test_encrypted_command_timeout() -> None:
    """Undecryptable messages are dropped after the wait timeout."""
    client = FakeMatrixClient()
    bot = _bot(client)
    command = RecordingCommand("echo")
    register_commands(bot, [command])

    with anyio.fail_after(2):
        await client.emit(encrypted_event())

    assert command.invocations == []
    assert client.calls == []
