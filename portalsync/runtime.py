"""Composition root: builds and owns the process-wide sync components."""

import logging
from typing import Callable, Optional, Set

from portalsync.adapters.portal_api_client import PortalApiClient
from portalsync.adapters.push_transport import Connector, push_url_for, websocket_connector
from portalsync.infra.config import config
from portalsync.infra.scheduler import Scheduler
from portalsync.services.connection_manager import ConnectionManager
from portalsync.services.conversation_session import ConversationSession
from portalsync.services.dispatcher import Dispatcher
from portalsync.services.history_synchronizer import MergedHistory
from portalsync.services.notification_aggregator import NotificationAggregator

logger = logging.getLogger(__name__)


class SyncRuntime:
    """
    One per portal session.

    Holds the single ConnectionManager (and its channel) shared by every open
    conversation, plus the notification aggregator. Components are injected into
    consumers from here instead of living as module globals.
    """

    def __init__(
        self,
        current_user_id: Optional[int] = None,
        api: Optional[PortalApiClient] = None,
        connector: Optional[Connector] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.current_user_id = current_user_id if current_user_id is not None else config.CURRENT_USER_ID
        self.api = api or PortalApiClient()
        self.dispatcher = Dispatcher()

        if connector is None:
            headers = {"Authorization": f"Bearer {self.api.token}"} if self.api.token else None
            connector = websocket_connector(headers)

        self.connection = ConnectionManager(
            push_url_for(self.api.base_url, config.PUSH_PATH),
            connector=connector,
            dispatcher=self.dispatcher,
            scheduler=scheduler,
            max_retries=config.PUSH_MAX_RETRIES,
            base_delay_ms=config.PUSH_BASE_DELAY_MS,
            max_delay_ms=config.PUSH_MAX_DELAY_MS,
        )
        self.notifications = NotificationAggregator(
            self.api,
            poll_interval=config.NOTIFICATION_POLL_INTERVAL,
            scheduler=scheduler,
        )
        self._sessions: Set[ConversationSession] = set()

    @property
    def open_sessions(self) -> int:
        return len(self._sessions)

    def start(self) -> None:
        """Open the push channel and start notification polling. Needs a running loop."""
        logger.info("Sync runtime starting", extra={"push_url": self.connection.url})
        self.connection.connect()
        self.notifications.start()

    def stop(self) -> None:
        for session in list(self._sessions):
            session.close()
        self._sessions.clear()
        self.notifications.stop()
        self.connection.disconnect()
        logger.info("Sync runtime stopped")

    async def aclose(self) -> None:
        """Like stop(), but waits for the poll and connection tasks to finish unwinding."""
        for session in list(self._sessions):
            session.close()
        self._sessions.clear()
        await self.notifications.aclose()
        await self.connection.aclose()
        logger.info("Sync runtime closed")

    async def open_project_conversation(
        self,
        project_id: int,
        on_change: Optional[Callable[[MergedHistory], None]] = None,
    ) -> ConversationSession:
        return await self._open(ConversationSession(
            self.api, self.connection, self._require_user(), project_id=project_id, on_change=on_change,
        ))

    async def open_direct_conversation(
        self,
        counterpart_id: int,
        on_change: Optional[Callable[[MergedHistory], None]] = None,
    ) -> ConversationSession:
        return await self._open(ConversationSession(
            self.api, self.connection, self._require_user(), counterpart_id=counterpart_id, on_change=on_change,
        ))

    def close_conversation(self, session: ConversationSession) -> None:
        session.close()
        self._sessions.discard(session)

    async def _open(self, session: ConversationSession) -> ConversationSession:
        await session.open()
        self._sessions.add(session)
        return session

    def _require_user(self) -> int:
        if self.current_user_id is None:
            raise RuntimeError("No current user configured (set CURRENT_USER_ID)")
        return self.current_user_id
