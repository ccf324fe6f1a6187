"""Normalization of nio room events into ``InboundEvent``."""

from __future__ import annotations

from typing import Any

import nio

from .types import (
    EncryptedContent,
    EventContent,
    InboundEvent,
    MembershipContent,
    OtherContent,
    TextContent,
)


def _event_type(event: Any) -> str | None:
    source = getattr(event, "source", None)
    if isinstance(source, dict):
        event_type = source.get("type")
        if isinstance(event_type, str):
            return event_type
    return None


def _parse_content(event: Any) -> EventContent:
    if isinstance(event, nio.RoomMessageText):
        return TextContent(body=event.body, formatted_body=event.formatted_body)
    if isinstance(event, nio.MegolmEvent):
        return EncryptedContent(session_id=event.session_id, algorithm=event.algorithm)
    if isinstance(event, (nio.RoomMemberEvent, nio.InviteMemberEvent)):
        content = event.content if isinstance(event.content, dict) else {}
        displayname = content.get("displayname")
        return MembershipContent(
            membership=event.membership,
            displayname=displayname if isinstance(displayname, str) else None,
        )
    return OtherContent(event_type=_event_type(event))


def parse_event(room_id: str, event: Any) -> InboundEvent:
    """Build an ``InboundEvent`` from a nio event received in ``room_id``."""
    timestamp = getattr(event, "server_timestamp", None)
    state_key = getattr(event, "state_key", None)
    return InboundEvent(
        event_id=getattr(event, "event_id", None),
        sender=getattr(event, "sender", None),
        room_id=room_id,
        origin_server_ts=timestamp if isinstance(timestamp, int) else None,
        content=_parse_content(event),
        state_key=state_key if isinstance(state_key, str) else None,
        raw=event,
    )
