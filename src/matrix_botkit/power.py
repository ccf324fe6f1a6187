"""Room power levels and permission checks.

Every check fetches the room's ``m.room.power_levels`` state event afresh.
Callers that need several checks against one consistent snapshot should use
``get_power_levels`` once and query the returned ``PowerLevels``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .bot import MatrixBot

POWER_LEVELS_EVENT_TYPE = "m.room.power_levels"

ADMIN_POWER_LEVEL = 100
MOD_POWER_LEVEL = 50
MIN_POWER_LEVEL = 0

DEFAULT_STATE_LEVEL = 50


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _int_map(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    return {
        str(key): _int_or(level, MIN_POWER_LEVEL)
        for key, level in value.items()
    }


@dataclass(frozen=True, slots=True)
class PowerLevels:
    """Snapshot of a room's authorization table."""

    users: dict[str, int] = field(default_factory=dict)
    users_default: int = MIN_POWER_LEVEL
    invite: int = MIN_POWER_LEVEL
    events: dict[str, int] = field(default_factory=dict)
    state_default: int = DEFAULT_STATE_LEVEL
    events_default: int = MIN_POWER_LEVEL

    @classmethod
    def from_content(cls, content: Mapping[str, Any]) -> PowerLevels:
        """Parse ``m.room.power_levels`` content; missing keys use Matrix defaults."""
        return cls(
            users=_int_map(content.get("users")),
            users_default=_int_or(content.get("users_default"), MIN_POWER_LEVEL),
            invite=_int_or(content.get("invite"), MIN_POWER_LEVEL),
            events=_int_map(content.get("events")),
            state_default=_int_or(content.get("state_default"), DEFAULT_STATE_LEVEL),
            events_default=_int_or(content.get("events_default"), MIN_POWER_LEVEL),
        )

    def user_level(self, user_id: str) -> int:
        return self.users.get(user_id, self.users_default)

    def state_level(self, event_type: str | None = None) -> int:
        if event_type is not None and event_type in self.events:
            return self.events[event_type]
        return self.state_default

    def message_level(self, event_type: str | None = None) -> int:
        if event_type is not None and event_type in self.events:
            return self.events[event_type]
        return self.events_default


async def get_power_levels(bot: MatrixBot, room_id: str) -> PowerLevels | None:
    content = await bot.get_state_event(POWER_LEVELS_EVENT_TYPE, room_id)
    if content is None:
        return None
    return PowerLevels.from_content(content)


async def power_level(bot: MatrixBot, room_id: str, user_id: str | None = None) -> int:
    """Get the power level of a user (the bot itself by default) in a room.

    Returns ``MIN_POWER_LEVEL`` if the power levels cannot be fetched.
    """
    levels = await get_power_levels(bot, room_id)
    if levels is None:
        return MIN_POWER_LEVEL
    return levels.user_level(user_id or bot.self_id())


async def can_invite(bot: MatrixBot, room_id: str, user_id: str | None = None) -> bool:
    levels = await get_power_levels(bot, room_id)
    if levels is None:
        return False
    return levels.user_level(user_id or bot.self_id()) >= levels.invite


async def can_send_state_events(
    bot: MatrixBot,
    room_id: str,
    user_id: str | None = None,
    event_type: str | None = None,
) -> bool:
    """Check whether a user may send state events of ``event_type``.

    Without ``event_type`` the room's general ``state_default`` applies.
    """
    levels = await get_power_levels(bot, room_id)
    if levels is None:
        return False
    return levels.user_level(user_id or bot.self_id()) >= levels.state_level(event_type)


async def can_send_messages(
    bot: MatrixBot,
    room_id: str,
    user_id: str | None = None,
    event_type: str | None = None,
) -> bool:
    """Check whether a user may send message events of ``event_type``.

    Without ``event_type`` the room's general ``events_default`` applies.
    """
    levels = await get_power_levels(bot, room_id)
    if levels is None:
        return False
    return levels.user_level(user_id or bot.self_id()) >= levels.message_level(event_type)


async def is_admin_in_room(bot: MatrixBot, user_id: str, room_id: str) -> bool:
    return await power_level(bot, room_id, user_id) >= ADMIN_POWER_LEVEL


async def is_moderator(bot: MatrixBot, user_id: str, room_id: str) -> bool:
    return await power_level(bot, room_id, user_id) >= MOD_POWER_LEVEL
