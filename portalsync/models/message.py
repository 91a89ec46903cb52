"""Portal chat message model and conversation identity."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class ProjectConversation:
    """Project chat: every message carrying the same project id."""
    project_id: int


@dataclass(frozen=True)
class DirectConversation:
    """Direct chat between two users; the pair is unordered."""
    participants: FrozenSet[int]

    @classmethod
    def between(cls, user_a: int, user_b: int) -> "DirectConversation":
        return cls(frozenset((user_a, user_b)))


ConversationKey = Union[ProjectConversation, DirectConversation]


class Message(BaseModel):
    """A chat message as served by the portal (pull path) or relayed over the push channel.

    Field names are snake_case in Python and camelCase on the wire.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",  # e.g. the embedded ``sender`` user record
    )

    id: Optional[int] = Field(None, description="Server-assigned id; absent before persistence")
    sender_id: int
    recipient_id: Optional[int] = None
    project_id: Optional[int] = None
    content: str
    attachments: Optional[List[Any]] = None
    is_read: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps come from the portal database in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_direct(self) -> bool:
        # Direct messages are stored with projectId 0 (or none) and a recipient
        return self.recipient_id is not None and not self.project_id

    @property
    def conversation_key(self) -> ConversationKey:
        if self.is_direct:
            return DirectConversation.between(self.sender_id, self.recipient_id)
        return ProjectConversation(self.project_id or 0)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class NewMessage(BaseModel):
    """Outbound message before the portal assigns an id."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    content: str = Field(..., min_length=1)
    sender_id: int
    project_id: Optional[int] = None
    recipient_id: Optional[int] = None
    attachments: Optional[List[Any]] = None

    @property
    def is_direct(self) -> bool:
        return self.recipient_id is not None and not self.project_id

    def to_wire(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        if self.is_direct:
            payload["projectId"] = 0
        return payload
