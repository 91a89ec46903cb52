from .message import (
    Message,
    NewMessage,
    ConversationKey,
    ProjectConversation,
    DirectConversation,
)
from .connection import ConnectionState, ConnectionStatus, StatusEvent
from .notification import (
    SourceType,
    MessageRecord,
    ActivityRecord,
    TrackingItemRecord,
    NotificationItem,
    NotificationDelta,
    NotificationSnapshot,
)

__all__ = [
    "Message",
    "NewMessage",
    "ConversationKey",
    "ProjectConversation",
    "DirectConversation",
    "ConnectionState",
    "ConnectionStatus",
    "StatusEvent",
    "SourceType",
    "MessageRecord",
    "ActivityRecord",
    "TrackingItemRecord",
    "NotificationItem",
    "NotificationDelta",
    "NotificationSnapshot",
]
