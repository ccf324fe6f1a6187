"""Command bot runtime on top of matrix-nio."""

__version__ = "0.1.0"

from .bot import MatrixBot
from .client import MatrixClient, SyncState
from .config import BotConfig, ConfigError, load_config
from .rooms import (
    is_room_id_syntax,
    resolve_public_room_id,
    room_matrix_to,
    to_internal_room_id,
    user_matrix_to,
)
from .types import BotSession, InboundEvent

__all__ = [
    "BotConfig",
    "BotSession",
    "ConfigError",
    "InboundEvent",
    "MatrixBot",
    "MatrixClient",
    "SyncState",
    "is_room_id_syntax",
    "load_config",
    "resolve_public_room_id",
    "room_matrix_to",
    "to_internal_room_id",
    "user_matrix_to",
]
