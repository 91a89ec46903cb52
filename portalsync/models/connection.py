"""Push channel state and status events."""

from enum import Enum
from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Lifecycle state of the push channel."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"  # Retries exhausted; only an explicit connect() recovers


class ConnectionStatus(str, Enum):
    """Status values published to status subscribers."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    FAILED = "failed"


class StatusEvent(BaseModel):
    """Published on every status change of the push channel."""
    status: ConnectionStatus
    state: ConnectionState
    attempt: int = Field(0, description="Reconnect attempts made since the last successful open")
