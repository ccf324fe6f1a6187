"""Value types shared by the bot runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Membership = Literal["invite", "join", "leave", "ban", "knock"]


@dataclass(frozen=True, slots=True)
class TextContent:
    """Plain text message content (``m.room.message`` with ``m.text``)."""

    body: str
    formatted_body: str | None = None


@dataclass(frozen=True, slots=True)
class EncryptedContent:
    """Megolm payload that has not been decrypted yet."""

    session_id: str | None = None
    algorithm: str | None = None


@dataclass(frozen=True, slots=True)
class MembershipContent:
    """``m.room.member`` content."""

    membership: str
    displayname: str | None = None


@dataclass(frozen=True, slots=True)
class OtherContent:
    event_type: str | None = None


EventContent = Union[TextContent, EncryptedContent, MembershipContent, OtherContent]


@dataclass(frozen=True, slots=True)
class InboundEvent:
    """Normalized view of a room event delivered by the sync loop.

    Membership events taken from invite stripped state carry neither an
    event id nor an origin timestamp.
    """

    event_id: str | None
    sender: str | None
    room_id: str | None
    origin_server_ts: int | None
    content: EventContent
    state_key: str | None = None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    """Command invocation parsed from a prefixed message body.

    ``remainder`` is the trimmed text after the prefix, used as parameters
    when a default command takes over.
    """

    name: str
    parameters: str
    remainder: str


@dataclass(slots=True)
class BotSession:
    """Process-wide bot state, owned by the lifecycle controller.

    Attributes:
        start_timestamp: Creation time in epoch milliseconds. Events older
            than this are never processed.
        running: True between ``start_blocking`` entry and shutdown.
        logout_requested: Set by any ``quit(logout=True)`` call.
    """

    start_timestamp: int
    running: bool = False
    logout_requested: bool = False
