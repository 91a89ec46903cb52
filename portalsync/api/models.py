"""Response models for the status surface."""

from typing import Optional
from pydantic import BaseModel, Field

from portalsync.models.connection import ConnectionState


class ConnectionStatusResponse(BaseModel):
    """Push channel status as seen by the UI shell."""
    state: ConnectionState
    attempt: int = Field(..., description="Reconnect attempts since the last successful open")
    retry_pending: bool
    url: str


class HealthResponse(BaseModel):
    status: str
    service: str = "portal-sync"
    version: str = "1.0.0"
    push: Optional[ConnectionStatusResponse] = None


class AcknowledgeResponse(BaseModel):
    has_new: bool
