"""Tests for room power levels and permission checks."""

from __future__ import annotations

import pytest

from matrix_botkit.bot import MatrixBot
from matrix_botkit.power import (
    ADMIN_POWER_LEVEL,
    MIN_POWER_LEVEL,
    PowerLevels,
    can_invite,
    can_send_messages,
    can_send_state_events,
    is_admin_in_room,
    is_moderator,
    power_level,
)
from matrix_fixtures import (
    MATRIX_ROOM_ID,
    MATRIX_SENDER,
    MATRIX_USER_ID,
    START_TS,
    FakeMatrixClient,
    make_config,
    set_power_levels,
)


def _bot(client: FakeMatrixClient) -> MatrixBot:
    return MatrixBot(
        client, make_config(), now_ms=lambda: START_TS, handle_signals=False
    )


# --- PowerLevels tests ---


def test_power_levels_defaults() -> None:
    """Missing keys fall back to the protocol defaults."""
    levels = PowerLevels.from_content({})
    assert levels.invite == 0
    assert levels.state_default == 50
    assert levels.events_default == 0
    assert levels.users_default == 0
    assert levels.user_level("@anyone:example.org") == 0


def test_power_levels_event_specific_levels() -> None:
    """Type-specific event levels override the defaults."""
    levels = PowerLevels.from_content(
        {
            "events": {"m.room.name": 75, "m.reaction": 10},
            "state_default": 40,
            "events_default": 5,
        }
    )
    assert levels.state_level("m.room.name") == 75
    assert levels.state_level("m.room.topic") == 40
    assert levels.state_level() == 40
    assert levels.message_level("m.reaction") == 10
    assert levels.message_level("m.room.message") == 5


def test_power_levels_ignores_malformed_values() -> None:
    """Non-integer levels do not break parsing."""
    levels = PowerLevels.from_content(
        {"users": {"@a:x": "30", "@b:x": None}, "invite": "nope"}
    )
    assert levels.user_level("@a:x") == 30
    assert levels.user_level("@b:x") == MIN_POWER_LEVEL
    assert levels.invite == 0


# --- Permission check tests ---


@pytest.mark.anyio
async def test_power_level_defaults_to_bot() -> None:
    """Without a user id the bot's own level is looked up."""
    client = FakeMatrixClient()
    set_power_levels(client, {MATRIX_USER_ID: 100, MATRIX_SENDER: 50})
    bot = _bot(client)
    assert await power_level(bot, MATRIX_ROOM_ID) == 100
    assert await power_level(bot, MATRIX_ROOM_ID, MATRIX_SENDER) == 50


@pytest.mark.anyio
async def test_power_level_unavailable_is_minimum() -> None:
    """A room without readable power levels reports the minimum level."""
    bot = _bot(FakeMatrixClient())
    assert await power_level(bot, MATRIX_ROOM_ID, MATRIX_SENDER) == MIN_POWER_LEVEL
    assert not await can_invite(bot, MATRIX_ROOM_ID)
    assert not await can_send_messages(bot, MATRIX_ROOM_ID)
    assert not await can_send_state_events(bot, MATRIX_ROOM_ID)


@pytest.mark.anyio
async def test_admin_and_moderator_thresholds() -> None:
    """Admin needs 100, moderator needs 50."""
    client = FakeMatrixClient()
    set_power_levels(
        client, {"@admin:x": ADMIN_POWER_LEVEL, "@mod:x": 50, "@user:x": 49}
    )
    bot = _bot(client)
    assert await is_admin_in_room(bot, "@admin:x", MATRIX_ROOM_ID)
    assert not await is_admin_in_room(bot, "@mod:x", MATRIX_ROOM_ID)
    assert await is_moderator(bot, "@mod:x", MATRIX_ROOM_ID)
    assert not await is_moderator(bot, "@user:x", MATRIX_ROOM_ID)


@pytest.mark.anyio
async def test_can_send_state_events_per_type() -> None:
    """State event checks honour type-specific levels."""
    client = FakeMatrixClient()
    set_power_levels(
        client,
        {MATRIX_USER_ID: 50},
        events={"m.room.power_levels": 100},
    )
    bot = _bot(client)
    assert await can_send_state_events(bot, MATRIX_ROOM_ID)
    assert not await can_send_state_events(
        bot, MATRIX_ROOM_ID, event_type="m.room.power_levels"
    )
    assert await can_send_messages(bot, MATRIX_ROOM_ID)
    assert await can_invite(bot, MATRIX_ROOM_ID)


@pytest.mark.anyio
async def test_default_level_is_neither_admin_nor_moderator() -> None:
    """A user without an entry gets users_default 0 and no privileges."""
    client = FakeMatrixClient()
    set_power_levels(client, {MATRIX_USER_ID: 100})
    bot = _bot(client)
    assert await power_level(bot, MATRIX_ROOM_ID, MATRIX_SENDER) == 0
    assert not await is_admin_in_room(bot, MATRIX_SENDER, MATRIX_ROOM_ID)
    assert not await is_moderator(bot, MATRIX_SENDER, MATRIX_ROOM_ID)
