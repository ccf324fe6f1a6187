"""Room id, alias and matrix.to link helpers."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .bot import MatrixBot

MATRIX_TO_PREFIX = "https://matrix.to/#/"
CANONICAL_ALIAS_EVENT_TYPE = "m.room.canonical_alias"

_ROOM_ID_RE = re.compile(r"^![a-zA-Z0-9]+:[a-zA-Z0-9.]+$")
_ROOM_ALIAS_RE = re.compile(r"^#[a-zA-Z0-9_-]+:[a-zA-Z0-9._-]+$")


def room_matrix_to(room_id: str) -> str:
    """matrix.to link for a room, routed via the room id's server."""
    _, sep, server = room_id.partition(":")
    return f"{MATRIX_TO_PREFIX}{room_id}?via={server if sep else room_id}"


def user_matrix_to(user_id: str) -> str:
    return f"{MATRIX_TO_PREFIX}{user_id}"


def _strip_matrix_to(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith(MATRIX_TO_PREFIX):
        cleaned = cleaned[len(MATRIX_TO_PREFIX) :].split("?", 1)[0]
    return cleaned


def is_room_id_syntax(text: str) -> bool:
    """Whether ``text`` looks like a room id or alias, bare or as matrix.to link."""
    cleaned = _strip_matrix_to(text)
    return bool(_ROOM_ID_RE.match(cleaned) or _ROOM_ALIAS_RE.match(cleaned))


async def resolve_public_room_id(bot: MatrixBot, alias: str) -> str | None:
    """Find the joined room whose canonical or alternative aliases include ``alias``."""
    for room_id in await bot.client.joined_rooms():
        content = await bot.get_state_event(CANONICAL_ALIAS_EVENT_TYPE, room_id)
        if content is None:
            continue
        if content.get("alias") == alias:
            return room_id
        alt_aliases = content.get("alt_aliases") or []
        if isinstance(alt_aliases, list) and alias in alt_aliases:
            return room_id
    return None


async def to_internal_room_id(bot: MatrixBot, text: str) -> str | None:
    """Turn a room id, alias, or matrix.to link into a room id.

    Aliases are only resolved against rooms the bot has joined.
    """
    cleaned = _strip_matrix_to(text)
    if cleaned.startswith("#"):
        return await resolve_public_room_id(bot, cleaned)
    if _ROOM_ID_RE.match(cleaned):
        return cleaned
    return None
