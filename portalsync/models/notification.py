"""Notification feed records and the merged notification items built from them."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SourceType(str, Enum):
    """Feed a notification came from."""
    MESSAGE = "message"
    ACTIVITY = "activity"
    TRACKING = "tracking"


class _FeedRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: int
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class MessageRecord(_FeedRecord):
    """Entry of the recent-messages feed."""
    subject: Optional[str] = None
    content: Optional[str] = None
    is_read: bool = False


class ActivityRecord(_FeedRecord):
    """Entry of the recent-activities feed."""
    type: Optional[str] = None
    description: str = ""
    project_id: Optional[int] = None
    is_read: bool = False


class TrackingItemRecord(_FeedRecord):
    """Entry of the tracking-items feed."""
    name: str = ""
    is_active: bool = False
    updated_at: Optional[datetime] = None

    @field_validator("updated_at")
    @classmethod
    def _updated_assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class NotificationItem(BaseModel):
    """One row of the merged notification list."""
    model_config = ConfigDict(frozen=True)

    source_type: SourceType
    source_id: int
    title: str
    description: str
    created_at: datetime
    is_read: bool = False

    @property
    def key(self) -> Tuple[SourceType, int]:
        return (self.source_type, self.source_id)


class NotificationDelta(BaseModel):
    """Passed to new-notification callbacks when the unread total grows."""
    previous_total: int
    current_total: int
    feed_deltas: Dict[SourceType, int] = Field(default_factory=dict)

    @property
    def increase(self) -> int:
        return self.current_total - self.previous_total


class NotificationSnapshot(BaseModel):
    """Read model for the notification list consumer."""
    items: List[NotificationItem] = Field(default_factory=list)
    unread_count: int = 0
    feed_counts: Dict[SourceType, int] = Field(default_factory=dict)
    has_new: bool = False
