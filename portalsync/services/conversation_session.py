"""One open conversation view: history fetch, live merge, and the send path."""

import logging
from typing import Any, Callable, List, Optional

from portalsync.adapters.portal_api_client import PortalApiClient
from portalsync.models.message import (
    ConversationKey,
    DirectConversation,
    Message,
    NewMessage,
    ProjectConversation,
)
from portalsync.services.connection_manager import ConnectionManager
from portalsync.services.history_synchronizer import HistorySynchronizer, MergedHistory

logger = logging.getLogger(__name__)


class ConversationSession:
    """
    Glue between the pull path, the push channel and a HistorySynchronizer.

    Sending follows write-then-broadcast: the message is persisted through the portal
    API first, the canonical record is added to the local history, and only then is it
    mirrored over the push channel so other open sessions see it live. A failed write
    raises and nothing is mirrored.
    """

    def __init__(
        self,
        api: PortalApiClient,
        connection: ConnectionManager,
        current_user_id: int,
        project_id: Optional[int] = None,
        counterpart_id: Optional[int] = None,
        on_change: Optional[Callable[[MergedHistory], None]] = None,
    ):
        if (project_id is None) == (counterpart_id is None):
            raise ValueError("Exactly one of project_id or counterpart_id is required")
        self.api = api
        self.connection = connection
        self.current_user_id = current_user_id
        self.project_id = project_id
        self.counterpart_id = counterpart_id
        self._on_change = on_change
        self.synchronizer: Optional[HistorySynchronizer] = None

    @property
    def conversation_key(self) -> ConversationKey:
        if self.project_id is not None:
            return ProjectConversation(self.project_id)
        return DirectConversation.between(self.current_user_id, self.counterpart_id)

    @property
    def is_open(self) -> bool:
        return self.synchronizer is not None

    @property
    def history(self) -> MergedHistory:
        if self.synchronizer is None:
            return ()
        return self.synchronizer.history

    async def _fetch(self) -> List[Message]:
        if self.project_id is not None:
            return await self.api.fetch_project_history(self.project_id)
        return await self.api.fetch_direct_history(self.counterpart_id)

    async def open(self) -> MergedHistory:
        """Fetch the baseline and start merging live messages.

        Raises:
            PullRequestError: If the history fetch failed; the session stays closed
        """
        if self.synchronizer is not None:
            return self.synchronizer.history
        baseline = await self._fetch()
        self.synchronizer = HistorySynchronizer(self.conversation_key, baseline, on_change=self._on_change)
        self.synchronizer.attach(self.connection.dispatcher)
        logger.debug("Conversation opened", extra={"messages": len(self.synchronizer)})
        return self.synchronizer.history

    async def refresh(self) -> MergedHistory:
        """Re-query the pull source and replace the baseline."""
        self._require_open()
        baseline = await self._fetch()
        self.synchronizer.replace_baseline(baseline)
        return self.synchronizer.history

    async def send(self, content: str, attachments: Optional[List[Any]] = None) -> Message:
        """
        Persist a message, show it locally, then mirror it to other sessions.

        Returns:
            The canonical message

        Raises:
            PullRequestError: If the portal write failed; the message was not sent
            ValueError: If the content is empty
        """
        self._require_open()
        if not content or not content.strip():
            raise ValueError("Message content is empty")
        draft = NewMessage(
            content=content.strip(),
            sender_id=self.current_user_id,
            project_id=self.project_id,
            recipient_id=self.counterpart_id,
            attachments=attachments,
        )
        canonical = await self.api.create_message(draft)
        # The view may have been closed while the write was in flight
        if self.synchronizer is not None:
            self.synchronizer.add_local_message(canonical)

        mirrored = await self.connection.send(canonical)
        if not mirrored:
            logger.info("Push mirror skipped; other sessions will see the message on their next fetch",
                        extra={"message_id": canonical.id})
        return canonical

    def close(self) -> None:
        """Unsubscribe from live messages. Safe to call more than once."""
        if self.synchronizer is not None:
            self.synchronizer.close()
            self.synchronizer = None

    def _require_open(self) -> None:
        if self.synchronizer is None:
            raise RuntimeError("Conversation is not open")
