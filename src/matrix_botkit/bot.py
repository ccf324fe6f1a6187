"""High level bot runtime: lifecycle, event admission, and auto-join."""

from __future__ import annotations

import signal
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import anyio

from .client import ACTIVE_SYNC_STATES, EventHandler, SyncState
from .config import BotConfig
from .logging_config import get_logger
from .types import (
    BotSession,
    EncryptedContent,
    EventContent,
    InboundEvent,
    Membership,
    MembershipContent,
)
from .waiting import DEFAULT_TIMEOUT, ReleaseGate, first_with_timeout, poll

logger = get_logger(__name__)

MEMBER_EVENT_TYPE = "m.room.member"
SHUTDOWN_POLL_INTERVAL = 0.5


class BotClient(Protocol):
    """What the bot needs from the protocol client (see ``MatrixClient``)."""

    @property
    def user_id(self) -> str: ...

    @property
    def sync_state(self) -> SyncState: ...

    def start_sync(self, task_group: Any) -> None: ...

    def stop_sync(self) -> None: ...

    def subscribe(self, content_type: type[EventContent], handler: EventHandler) -> None: ...

    def room_membership(self, room_id: str) -> Membership | None: ...

    def decrypt(self, event: InboundEvent) -> InboundEvent | None: ...

    async def send_message(
        self, room_id: str, body: str, formatted_body: str | None = None
    ) -> str | None: ...

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> str | None: ...

    async def join_room(self, room_id: str) -> bool: ...

    async def get_state_event(
        self, event_type: str, room_id: str, state_key: str = ""
    ) -> dict[str, Any] | None: ...

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        content: dict[str, Any],
        state_key: str = "",
    ) -> str | None: ...

    async def joined_rooms(self) -> list[str]: ...

    async def set_display_name(self, name: str) -> bool: ...

    async def get_event(self, room_id: str, event_id: str) -> InboundEvent | None: ...

    async def logout_all(self) -> bool: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class MatrixBot:
    """Wraps a protocol client and its ``BotConfig`` into a bot interface.

    The bot joins rooms it gets invited to by authorized users. Handlers
    registered with ``subscribe_content`` only see events admitted by
    ``is_valid_event_from_user``.
    """

    def __init__(
        self,
        client: BotClient,
        config: BotConfig,
        *,
        now_ms: Callable[[], int] = _now_ms,
        handle_signals: bool = True,
        wait_timeout: float = DEFAULT_TIMEOUT,
        shutdown_poll_interval: float = SHUTDOWN_POLL_INTERVAL,
    ) -> None:
        self._client = client
        self._config = config
        self._handle_signals = handle_signals
        self._wait_timeout = wait_timeout
        self._shutdown_poll_interval = shutdown_poll_interval
        self._gate = ReleaseGate()
        self.session = BotSession(start_timestamp=now_ms())

        client.subscribe(MembershipContent, self.handle_join_event)

    @property
    def client(self) -> BotClient:
        return self._client

    @property
    def config(self) -> BotConfig:
        return self._config

    @property
    def wait_timeout(self) -> float:
        return self._wait_timeout

    def self_id(self) -> str:
        return self._client.user_id

    # --- Lifecycle ---

    async def start_blocking(self) -> bool:
        """Start syncing and block until ``quit`` is called.

        Returns:
            True if the bot logged out all sessions, False if it simply quit.
        """
        self.session.running = True
        async with anyio.create_task_group() as tg:
            signal_scope = anyio.CancelScope()
            if self._handle_signals:
                tg.start_soon(self._watch_termination_signals, signal_scope)

            logger.info("bot.lifecycle.starting", user_id=self.self_id())
            self._client.start_sync(tg)

            logger.info("bot.lifecycle.waiting")
            await self._gate.wait()

            logger.info("bot.lifecycle.stopping")
            self._client.stop_sync()
            while self._client.sync_state in ACTIVE_SYNC_STATES:
                await anyio.sleep(self._shutdown_poll_interval)
            self.session.running = False

            if self.session.logout_requested:
                await self._client.logout_all()
            signal_scope.cancel()

        logger.info("bot.lifecycle.stopped", logout=self.session.logout_requested)
        return self.session.logout_requested

    async def quit(self, logout: bool = False) -> None:
        """Release ``start_blocking``. Safe to call any number of times.

        Args:
            logout: Also log out all sessions of the bot user.
        """
        if logout:
            self.session.logout_requested = True
        self._client.stop_sync()
        if self._gate.release():
            logger.info("bot.lifecycle.quit", logout=logout)

    async def _watch_termination_signals(self, scope: anyio.CancelScope) -> None:
        with scope:
            with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
                async for signum in signals:
                    logger.info("bot.lifecycle.signal", signal=signal.Signals(signum).name)
                    if self.session.running:
                        await self.quit()
                    return

    # --- Event admission ---

    def is_valid_event_from_user(
        self,
        event: InboundEvent,
        listen_non_users: bool = False,
        listen_bot_events: bool = False,
    ) -> bool:
        """Decide whether an event may be processed at all.

        Rejects events from non-users (unless ``listen_non_users``), the
        bot's own events (unless ``listen_bot_events``), and events without
        a timestamp or older than the bot's start.
        """
        if not self._config.is_user(event.sender) and not listen_non_users:
            return False
        if event.sender == self.self_id() and not listen_bot_events:
            return False
        timestamp = event.origin_server_ts
        return not (timestamp is None or timestamp < self.session.start_timestamp)

    def subscribe_content(
        self,
        content_type: type[EventContent],
        handler: Callable[[InboundEvent], Awaitable[None]],
        listen_non_users: bool = False,
        listen_bot_events: bool = False,
    ) -> None:
        """Subscribe to admitted events whose content is a ``content_type``."""

        async def admitted(event: InboundEvent) -> None:
            if self.is_valid_event_from_user(event, listen_non_users, listen_bot_events):
                await handler(event)

        self._client.subscribe(content_type, admitted)

    # --- Auto-join ---

    async def handle_join_event(self, event: InboundEvent) -> None:
        room_id = event.room_id
        state_key = event.state_key
        if room_id is None or state_key is None:
            return
        if state_key != self.self_id():
            return
        if not self._config.is_user(event.sender) or event.sender == self.self_id():
            return
        content = event.content
        if not isinstance(content, MembershipContent) or content.membership != "invite":
            return

        # The room may not be known locally yet; also guards against repeated invites
        membership = await first_with_timeout(
            poll(lambda: self._client.room_membership(room_id)),
            lambda value: value is not None,
            timeout=self._wait_timeout,
        )
        if membership != "invite":
            return

        logger.info("bot.join.invited", room_id=room_id, inviter=event.sender)
        await self._client.join_room(room_id)

    # --- Room access ---

    async def get_state_event(
        self, event_type: str, room_id: str, state_key: str = ""
    ) -> dict[str, Any] | None:
        return await self._client.get_state_event(event_type, room_id, state_key)

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        content: dict[str, Any],
        state_key: str = "",
    ) -> str | None:
        return await self._client.send_state_event(
            room_id, event_type, content, state_key
        )

    async def get_timeline_event(self, room_id: str, event_id: str) -> InboundEvent | None:
        """Get a (decrypted) timeline event.

        The event is fetched once; an encrypted one is then retried against
        the local keys until it decrypts or the wait times out.
        """
        fetched = await self._client.get_event(room_id, event_id)
        event: InboundEvent | None = fetched
        if fetched is not None and isinstance(fetched.content, EncryptedContent):
            event = await first_with_timeout(
                poll(lambda: self._client.decrypt(fetched)),
                lambda value: value is not None,
                timeout=self._wait_timeout,
            )
        if event is None:
            logger.error(
                "bot.timeline.unavailable",
                room_id=room_id,
                event_id=event_id,
            )
        return event

    async def rename(self, new_name: str) -> bool:
        """Set the bot's global display name."""
        return await self._client.set_display_name(new_name)

    async def rename_in_room(self, room_id: str, new_name_in_room: str) -> bool:
        """Set the bot's display name in one room."""
        own_id = self.self_id()
        member = await self.get_state_event(MEMBER_EVENT_TYPE, room_id, own_id)
        if member is None:
            return False
        content = {**member, "displayname": new_name_in_room}
        event_id = await self.send_state_event(
            room_id, MEMBER_EVENT_TYPE, content, state_key=own_id
        )
        return event_id is not None
