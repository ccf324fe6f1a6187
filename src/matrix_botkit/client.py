"""Thin matrix-nio adapter exposing the event source and room transport."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import anyio
import nio

from .config import BotConfig
from .events import parse_event
from .logging_config import get_logger
from .types import EncryptedContent, EventContent, InboundEvent, Membership

if TYPE_CHECKING:
    from anyio.abc import TaskGroup

logger = get_logger(__name__)

SYNC_TIMEOUT_MS = 30000
SYNC_RETRY_DELAY = 5.0

EventHandler = Callable[[InboundEvent], Awaitable[None]]


class SyncState(str, enum.Enum):
    STOPPED = "stopped"
    STARTED = "started"
    INITIAL_SYNC = "initial_sync"
    RUNNING = "running"
    ERROR = "error"


ACTIVE_SYNC_STATES = frozenset(
    {SyncState.STARTED, SyncState.INITIAL_SYNC, SyncState.RUNNING}
)


def check_e2ee_available() -> bool:
    """Whether matrix-nio was installed with its ``e2e`` extra."""
    try:
        from nio.crypto import ENCRYPTION_ENABLED
    except ImportError:
        return False
    return bool(ENCRYPTION_ENABLED)


def _error_message(response: Any) -> str:
    return getattr(response, "message", None) or str(response)


class MatrixClient:
    """matrix-nio client wrapper used by the bot runtime.

    Runs the sync loop, turns nio callbacks into ``InboundEvent`` handler
    tasks, and exposes the room transport calls. Transport failures are
    logged and reported as None or False, never raised.
    """

    def __init__(
        self,
        homeserver: str,
        user: str,
        *,
        password: str | None = None,
        device_name: str = "matrix-botkit",
        store_path: Path | None = None,
        sync_timeout_ms: int = SYNC_TIMEOUT_MS,
        retry_delay: float = SYNC_RETRY_DELAY,
        e2ee: bool | None = None,
        nio_client: nio.AsyncClient | None = None,
    ) -> None:
        self.homeserver = homeserver.rstrip("/")
        self._password = password
        self._device_name = device_name
        self._sync_timeout_ms = sync_timeout_ms
        self._retry_delay = retry_delay
        self._e2ee = check_e2ee_available() if e2ee is None else e2ee

        if nio_client is None:
            nio_client = self._build_nio_client(user, store_path)
        self._nio = nio_client
        self._nio.add_event_callback(self._on_room_event, nio.Event)
        self._nio.add_event_callback(self._on_room_event, nio.InviteMemberEvent)

        self._subscriptions: list[tuple[type[EventContent], EventHandler]] = []
        self._task_group: TaskGroup | None = None
        self._sync_scope: anyio.CancelScope | None = None
        self._stop_requested = False
        self._sync_state = SyncState.STOPPED
        self._requested_sessions: set[str] = set()

    @classmethod
    def from_config(cls, config: BotConfig) -> MatrixClient:
        store_path = config.store_path
        store_path.mkdir(parents=True, exist_ok=True)
        return cls(
            config.base_url,
            config.username,
            password=config.password,
            device_name=config.device_name,
            store_path=store_path,
        )

    def _build_nio_client(self, user: str, store_path: Path | None) -> nio.AsyncClient:
        if store_path is not None and self._e2ee:
            return nio.AsyncClient(
                self.homeserver,
                user,
                store_path=str(store_path),
                config=nio.AsyncClientConfig(
                    store_sync_tokens=True,
                    encryption_enabled=True,
                ),
            )
        return nio.AsyncClient(
            self.homeserver,
            user,
            config=nio.AsyncClientConfig(encryption_enabled=False),
        )

    @property
    def user_id(self) -> str:
        return self._nio.user_id

    @property
    def e2ee_available(self) -> bool:
        return self._e2ee

    @property
    def sync_state(self) -> SyncState:
        return self._sync_state

    # --- Login ---

    async def login(self) -> bool:
        """Password login, followed by a device key upload when E2EE is on."""
        if not self._password:
            logger.error("matrix.login.no_credentials")
            return False

        response = await self._nio.login(
            password=self._password,
            device_name=self._device_name,
        )
        if not isinstance(response, nio.LoginResponse):
            logger.error("matrix.login.failed", error=_error_message(response))
            return False

        logger.info(
            "matrix.login.password",
            user_id=response.user_id,
            device_id=response.device_id,
        )
        if self._e2ee and self._nio.should_upload_keys:
            upload = await self._nio.keys_upload()
            if isinstance(upload, nio.KeysUploadError):
                logger.error("matrix.e2ee.keys_upload_failed", error=upload.message)
        return True

    # --- Event source ---

    def subscribe(self, content_type: type[EventContent], handler: EventHandler) -> None:
        """Run ``handler`` as its own task for every event with that content."""
        self._subscriptions.append((content_type, handler))

    async def _on_room_event(self, room: nio.MatrixRoom, event: Any) -> None:
        inbound = parse_event(room.room_id, event)
        for content_type, handler in self._subscriptions:
            if isinstance(inbound.content, content_type):
                self._spawn(handler, inbound)

    def _spawn(self, handler: EventHandler, event: InboundEvent) -> None:
        if self._task_group is None:
            logger.warning("matrix.event.no_task_group", event_id=event.event_id)
            return
        self._task_group.start_soon(self._run_handler, handler, event)

    async def _run_handler(self, handler: EventHandler, event: InboundEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.exception(
                "matrix.event.handler_failed",
                room_id=event.room_id,
                event_id=event.event_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def start_sync(self, task_group: TaskGroup) -> None:
        """Start the sync loop; handler tasks also run in ``task_group``."""
        if self._sync_state in ACTIVE_SYNC_STATES:
            return
        self._task_group = task_group
        self._stop_requested = False
        self._sync_state = SyncState.STARTED
        task_group.start_soon(self._sync_loop)

    def stop_sync(self) -> None:
        self._stop_requested = True
        if self._sync_scope is not None:
            self._sync_scope.cancel()

    async def _sync_loop(self) -> None:
        try:
            with anyio.CancelScope() as scope:
                self._sync_scope = scope
                if self._stop_requested:
                    return
                first = True
                while True:
                    if first:
                        self._sync_state = SyncState.INITIAL_SYNC
                    if await self._sync_once(full_state=first):
                        first = False
                        self._sync_state = SyncState.RUNNING
                    else:
                        self._sync_state = SyncState.ERROR
                        await anyio.sleep(self._retry_delay)
        finally:
            self._sync_scope = None
            self._sync_state = SyncState.STOPPED
            logger.debug("matrix.sync.stopped")

    async def _sync_once(self, *, full_state: bool) -> bool:
        try:
            response = await self._nio.sync(
                timeout=self._sync_timeout_ms,
                full_state=full_state,
            )
        except Exception as exc:
            logger.error(
                "matrix.sync.error",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return False
        if not isinstance(response, nio.SyncResponse):
            logger.error("matrix.sync.failed", error=_error_message(response))
            return False
        if self._e2ee:
            await self._maintain_keys()
        return True

    async def _maintain_keys(self) -> None:
        client = self._nio
        if client.should_upload_keys:
            await client.keys_upload()
        if client.should_query_keys:
            await client.keys_query()
        if client.should_claim_keys:
            await client.keys_claim(client.get_users_for_key_claiming())
        await client.send_to_device_messages()

    def room_membership(self, room_id: str) -> Membership | None:
        """Current locally known membership, or None if the room is unknown.

        nio keeps left rooms in ``rooms``; a pending invite takes precedence
        and disappears from ``invited_rooms`` once the join is synced.
        """
        if room_id in self._nio.invited_rooms:
            return "invite"
        if room_id in self._nio.rooms:
            return "join"
        return None

    # --- Room transport ---

    async def send_message(
        self,
        room_id: str,
        body: str,
        formatted_body: str | None = None,
    ) -> str | None:
        content: dict[str, Any] = {"msgtype": "m.text", "body": body}
        if formatted_body:
            content["format"] = "org.matrix.custom.html"
            content["formatted_body"] = formatted_body
        return await self._room_send(room_id, "m.room.message", content)

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> str | None:
        content = {
            "m.relates_to": {
                "rel_type": "m.annotation",
                "event_id": event_id,
                "key": key,
            }
        }
        return await self._room_send(room_id, "m.reaction", content)

    async def _room_send(
        self, room_id: str, message_type: str, content: dict[str, Any]
    ) -> str | None:
        try:
            response = await self._nio.room_send(
                room_id=room_id,
                message_type=message_type,
                content=content,
                ignore_unverified_devices=True,
            )
        except Exception as exc:
            logger.error(
                "matrix.send.error",
                room_id=room_id,
                message_type=message_type,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return None
        if isinstance(response, nio.RoomSendResponse):
            return response.event_id
        logger.error(
            "matrix.send.failed",
            room_id=room_id,
            message_type=message_type,
            error=_error_message(response),
        )
        return None

    async def join_room(self, room_id: str) -> bool:
        try:
            response = await self._nio.join(room_id)
        except Exception as exc:
            logger.error(
                "matrix.join.error",
                room_id=room_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return False
        if isinstance(response, nio.JoinResponse):
            logger.info("matrix.join.success", room_id=room_id)
            return True
        logger.error(
            "matrix.join.failed",
            room_id=room_id,
            error=_error_message(response),
        )
        return False

    async def get_state_event(
        self, event_type: str, room_id: str, state_key: str = ""
    ) -> dict[str, Any] | None:
        try:
            response = await self._nio.room_get_state_event(room_id, event_type, state_key)
        except Exception as exc:
            logger.error(
                "matrix.state.error",
                room_id=room_id,
                event_type=event_type,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return None
        if isinstance(response, nio.RoomGetStateEventResponse):
            return response.content
        # Absent state events are expected (e.g. rooms without an alias)
        log = logger.debug if response.status_code == "M_NOT_FOUND" else logger.error
        log(
            "matrix.state.failed",
            room_id=room_id,
            event_type=event_type,
            error=_error_message(response),
        )
        return None

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        content: dict[str, Any],
        state_key: str = "",
    ) -> str | None:
        try:
            response = await self._nio.room_put_state(
                room_id, event_type, content, state_key=state_key
            )
        except Exception as exc:
            logger.error(
                "matrix.state.put_error",
                room_id=room_id,
                event_type=event_type,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return None
        if isinstance(response, nio.RoomPutStateResponse):
            return response.event_id
        logger.error(
            "matrix.state.put_failed",
            room_id=room_id,
            event_type=event_type,
            error=_error_message(response),
        )
        return None

    async def joined_rooms(self) -> list[str]:
        try:
            response = await self._nio.joined_rooms()
        except Exception as exc:
            logger.error(
                "matrix.joined_rooms.error",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return []
        if isinstance(response, nio.JoinedRoomsResponse):
            return list(response.rooms)
        logger.error("matrix.joined_rooms.failed", error=_error_message(response))
        return []

    async def set_display_name(self, name: str) -> bool:
        try:
            response = await self._nio.set_displayname(name)
        except Exception as exc:
            logger.error(
                "matrix.profile.rename_error",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return False
        if isinstance(response, nio.ProfileSetDisplayNameResponse):
            return True
        logger.error("matrix.profile.rename_failed", error=_error_message(response))
        return False

    async def get_event(self, room_id: str, event_id: str) -> InboundEvent | None:
        """Fetch one timeline event, decrypting it when possible."""
        try:
            response = await self._nio.room_get_event(room_id, event_id)
        except Exception as exc:
            logger.error(
                "matrix.get_event.error",
                room_id=room_id,
                event_id=event_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return None
        if not isinstance(response, nio.RoomGetEventResponse):
            logger.debug(
                "matrix.get_event.failed",
                room_id=room_id,
                event_id=event_id,
                error=_error_message(response),
            )
            return None
        event = parse_event(room_id, response.event)
        if isinstance(event.content, EncryptedContent):
            return self.decrypt(event) or event
        return event

    def decrypt(self, event: InboundEvent) -> InboundEvent | None:
        """Try to decrypt a Megolm event with the keys known right now.

        On failure the missing room key is requested once per session.
        """
        raw = event.raw
        if not self._e2ee or not isinstance(raw, nio.MegolmEvent):
            return None
        if event.room_id is not None:
            raw.room_id = event.room_id
        try:
            decrypted = self._nio.decrypt_event(raw)
        except nio.EncryptionError as exc:
            logger.debug(
                "matrix.decrypt.failed",
                event_id=event.event_id,
                error=str(exc),
            )
            self._request_room_key(raw)
            return None
        parsed = parse_event(event.room_id or raw.room_id, decrypted)
        return InboundEvent(
            event_id=event.event_id,
            sender=event.sender,
            room_id=event.room_id,
            origin_server_ts=event.origin_server_ts,
            content=parsed.content,
            state_key=event.state_key,
            raw=decrypted,
        )

    def _request_room_key(self, event: nio.MegolmEvent) -> None:
        if self._task_group is None or event.session_id in self._requested_sessions:
            return
        self._requested_sessions.add(event.session_id)
        self._task_group.start_soon(self._send_room_key_request, event)

    async def _send_room_key_request(self, event: nio.MegolmEvent) -> None:
        try:
            await self._nio.request_room_key(event)
        except nio.LocalProtocolError as exc:
            logger.debug("matrix.e2ee.key_request_skipped", error=str(exc))
            return
        logger.debug(
            "matrix.e2ee.key_requested",
            event_id=event.event_id,
            sender=event.sender,
        )

    async def logout_all(self) -> bool:
        try:
            response = await self._nio.logout(all_devices=True)
        except Exception as exc:
            logger.error(
                "matrix.logout.error",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return False
        if isinstance(response, nio.LogoutResponse):
            logger.info("matrix.logout.all_devices")
            return True
        logger.error("matrix.logout.failed", error=_error_message(response))
        return False

    async def close(self) -> None:
        await self._nio.close()
