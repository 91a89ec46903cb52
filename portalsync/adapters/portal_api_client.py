"""Pull-path client for the portal REST API."""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from portalsync.infra.config import config
from portalsync.infra.error_handler import ErrorCategory, PullRequestError, wrap_http_error
from portalsync.models.message import Message, NewMessage
from portalsync.models.notification import ActivityRecord, MessageRecord, TrackingItemRecord

logger = logging.getLogger(__name__)


class PortalApiClient:
    """Client for the portal's request/response endpoints.

    Every call opens a short-lived ``httpx.AsyncClient``. Failures are raised as
    ``PullRequestError``; nothing is retried here.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or config.PORTAL_BASE_URL).rstrip("/")
        self.token = token if token is not None else config.PORTAL_API_TOKEN
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        # SECURITY: Never log the token
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(method, url, json=json, headers=self._headers())
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()
            except httpx.HTTPError as e:
                logger.warning(f"Portal request failed: {operation}", extra={"path": path, "error": str(e)})
                raise wrap_http_error(e, operation)
            except ValueError as e:
                raise wrap_http_error(e, operation)

    async def _get_list(self, path: str, operation: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", path, operation)
        if data is None:
            return []
        if not isinstance(data, list):
            raise PullRequestError(f"{operation} returned {type(data).__name__}, expected a list",
                                   category=ErrorCategory.VALIDATION)
        return data

    @staticmethod
    def _parse(model, rows: List[Dict[str, Any]], operation: str) -> list:
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as e:
            raise PullRequestError(f"{operation} returned malformed records: {e.error_count()} error(s)",
                                   category=ErrorCategory.VALIDATION)

    # ---- conversation history ----------------------------------------------

    async def fetch_direct_history(self, counterpart_id: int) -> List[Message]:
        """Direct conversation with ``counterpart_id``, oldest first."""
        operation = "fetch direct history"
        rows = await self._get_list(f"/api/messages/direct/{int(counterpart_id)}", operation)
        return self._parse(Message, rows, operation)

    async def fetch_project_history(self, project_id: int) -> List[Message]:
        """Project conversation, oldest first."""
        operation = "fetch project history"
        rows = await self._get_list(f"/api/messages/project/{int(project_id)}", operation)
        return self._parse(Message, rows, operation)

    async def create_message(self, draft: NewMessage) -> Message:
        """
        Persist a message (authoritative write).

        Returns:
            Canonical Message with its server-assigned id

        Raises:
            PullRequestError: If the write failed; the message was NOT sent
        """
        operation = "create message"
        path = "/api/messages/direct" if draft.is_direct else "/api/messages"
        data = await self._request("POST", path, operation, json=draft.to_wire())
        if not isinstance(data, dict):
            raise PullRequestError(f"{operation} returned no message", category=ErrorCategory.VALIDATION)
        message = self._parse(Message, [data], operation)[0]
        if message.id is None:
            raise PullRequestError(f"{operation} returned a message without id",
                                   category=ErrorCategory.VALIDATION)
        return message

    # ---- notification feeds ------------------------------------------------

    async def fetch_recent_messages(self) -> List[MessageRecord]:
        operation = "fetch recent messages"
        return self._parse(MessageRecord, await self._get_list("/api/messages/recent", operation), operation)

    async def fetch_recent_activities(self) -> List[ActivityRecord]:
        operation = "fetch recent activities"
        return self._parse(ActivityRecord, await self._get_list("/api/activities/recent", operation), operation)

    async def fetch_tracking_items(self) -> List[TrackingItemRecord]:
        operation = "fetch tracking items"
        return self._parse(TrackingItemRecord, await self._get_list("/api/tracking/items", operation), operation)

    async def mark_activity_read(self, activity_id: int) -> None:
        await self._request("PATCH", f"/api/activities/{int(activity_id)}/read", "mark activity read")

    async def mark_message_read(self, message_id: int) -> None:
        await self._request("PATCH", f"/api/messages/{int(message_id)}/read", "mark message read")
