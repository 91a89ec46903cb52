"""Unit tests for the portal pull-path client."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from portalsync.adapters.portal_api_client import PortalApiClient
from portalsync.infra.error_handler import ErrorCategory, PullRequestError
from portalsync.models.message import NewMessage

BASE = "http://portal.test"


def make_response(method, path, status_code=200, json_body=None):
    """Real httpx response so raise_for_status behaves like production."""
    request = httpx.Request(method, f"{BASE}{path}")
    if json_body is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=json_body, request=request)


@pytest.fixture
def api():
    return PortalApiClient(base_url=BASE + "/", token="secret-token", timeout=5.0)


@pytest.fixture
def mock_http():
    """Patch httpx.AsyncClient; yields the client whose ``request`` tests configure."""
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_class.return_value = mock_client
        yield mock_client


class TestHistory:
    """Conversation history pulls."""

    @pytest.mark.asyncio
    async def test_fetch_project_history(self, api, mock_http):
        mock_http.request.return_value = make_response("GET", "/api/messages/project/7", json_body=[
            {"id": 1, "senderId": 10, "projectId": 7, "content": "a", "createdAt": "2024-05-06T09:00:00Z"},
            {"id": 2, "senderId": 11, "projectId": 7, "content": "b", "createdAt": "2024-05-06T09:05:00",
             "senderName": "Ann"},
        ])

        messages = await api.fetch_project_history(7)

        assert [m.id for m in messages] == [1, 2]
        assert messages[1].sender_id == 11
        assert messages[1].created_at.tzinfo is not None
        call_args = mock_http.request.call_args
        assert call_args[0] == ("GET", "http://portal.test/api/messages/project/7")
        assert call_args[1]["headers"]["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_fetch_direct_history(self, api, mock_http):
        mock_http.request.return_value = make_response("GET", "/api/messages/direct/20", json_body=[
            {"id": 5, "senderId": 10, "recipientId": 20, "projectId": 0, "content": "hi",
             "createdAt": "2024-05-06T09:00:00Z"},
        ])

        messages = await api.fetch_direct_history(20)

        assert messages[0].is_direct
        assert mock_http.request.call_args[0][1] == "http://portal.test/api/messages/direct/20"

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_history(self, api, mock_http):
        mock_http.request.return_value = make_response("GET", "/api/messages/project/7")

        assert await api.fetch_project_history(7) == []

    @pytest.mark.asyncio
    async def test_non_list_body_is_validation_error(self, api, mock_http):
        mock_http.request.return_value = make_response("GET", "/api/messages/project/7",
                                                       json_body={"error": "nope"})

        with pytest.raises(PullRequestError) as exc_info:
            await api.fetch_project_history(7)

        assert exc_info.value.category is ErrorCategory.VALIDATION

    @pytest.mark.asyncio
    async def test_malformed_record_is_validation_error(self, api, mock_http):
        mock_http.request.return_value = make_response("GET", "/api/messages/project/7",
                                                       json_body=[{"id": 1, "content": "no sender"}])

        with pytest.raises(PullRequestError) as exc_info:
            await api.fetch_project_history(7)

        assert exc_info.value.category is ErrorCategory.VALIDATION


class TestCreateMessage:
    """Authoritative writes."""

    @pytest.mark.asyncio
    async def test_project_message_posted(self, api, mock_http):
        mock_http.request.return_value = make_response("POST", "/api/messages", status_code=201, json_body={
            "id": 42, "senderId": 10, "projectId": 7, "content": "hello", "createdAt": "2024-05-06T09:00:00Z",
        })

        message = await api.create_message(NewMessage(content="hello", sender_id=10, project_id=7))

        assert message.id == 42
        call_args = mock_http.request.call_args
        assert call_args[0] == ("POST", "http://portal.test/api/messages")
        assert call_args[1]["json"]["projectId"] == 7
        assert call_args[1]["json"]["senderId"] == 10

    @pytest.mark.asyncio
    async def test_direct_message_posted_with_project_zero(self, api, mock_http):
        mock_http.request.return_value = make_response("POST", "/api/messages/direct", status_code=201, json_body={
            "id": 43, "senderId": 10, "recipientId": 20, "projectId": 0, "content": "hi",
            "createdAt": "2024-05-06T09:00:00Z",
        })

        await api.create_message(NewMessage(content="hi", sender_id=10, recipient_id=20))

        call_args = mock_http.request.call_args
        assert call_args[0][1] == "http://portal.test/api/messages/direct"
        assert call_args[1]["json"]["projectId"] == 0
        assert call_args[1]["json"]["recipientId"] == 20

    @pytest.mark.asyncio
    async def test_server_error_raises_with_status(self, api, mock_http):
        mock_http.request.return_value = make_response("POST", "/api/messages", status_code=500,
                                                       json_body={"message": "boom"})

        with pytest.raises(PullRequestError) as exc_info:
            await api.create_message(NewMessage(content="hello", sender_id=10, project_id=7))

        assert exc_info.value.category is ErrorCategory.API_ERROR
        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unauthorized_is_auth_error(self, api, mock_http):
        mock_http.request.return_value = make_response("POST", "/api/messages", status_code=401,
                                                       json_body={"message": "Unauthorized"})

        with pytest.raises(PullRequestError) as exc_info:
            await api.create_message(NewMessage(content="hello", sender_id=10, project_id=7))

        assert exc_info.value.category is ErrorCategory.AUTH_ERROR

    @pytest.mark.asyncio
    async def test_response_without_id_rejected(self, api, mock_http):
        mock_http.request.return_value = make_response("POST", "/api/messages", status_code=201, json_body={
            "senderId": 10, "projectId": 7, "content": "hello", "createdAt": "2024-05-06T09:00:00Z",
        })

        with pytest.raises(PullRequestError):
            await api.create_message(NewMessage(content="hello", sender_id=10, project_id=7))

    @pytest.mark.asyncio
    async def test_network_failure(self, api, mock_http):
        mock_http.request.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(PullRequestError) as exc_info:
            await api.create_message(NewMessage(content="hello", sender_id=10, project_id=7))

        assert exc_info.value.category is ErrorCategory.NETWORK
        assert exc_info.value.status_code is None


class TestNotificationFeeds:
    """Feeds read by the notification aggregator."""

    @pytest.mark.asyncio
    async def test_fetch_feeds(self, api, mock_http):
        responses = {
            "/api/messages/recent": [
                {"id": 1, "subject": "Quote", "isRead": False, "createdAt": "2024-05-06T09:00:00Z"},
            ],
            "/api/activities/recent": [
                {"id": 2, "type": "status", "description": "Shipped", "isRead": True,
                 "createdAt": "2024-05-06T09:00:00Z"},
            ],
            "/api/tracking/items": [
                {"id": 3, "name": "Crate", "isActive": True, "createdAt": "2024-05-06T09:00:00Z",
                 "updatedAt": "2024-05-06T10:00:00Z"},
            ],
        }

        async def route(method, url, **kwargs):
            path = url[len(BASE):]
            return make_response(method, path, json_body=responses[path])

        mock_http.request.side_effect = route

        messages = await api.fetch_recent_messages()
        activities = await api.fetch_recent_activities()
        tracking = await api.fetch_tracking_items()

        assert messages[0].subject == "Quote"
        assert activities[0].is_read is True
        assert tracking[0].is_active is True
        assert tracking[0].updated_at.hour == 10

    @pytest.mark.asyncio
    async def test_mark_activity_read(self, api, mock_http):
        mock_http.request.return_value = make_response("PATCH", "/api/activities/4/read",
                                                       json_body={"id": 4, "isRead": True})

        await api.mark_activity_read(4)

        assert mock_http.request.call_args[0] == ("PATCH", "http://portal.test/api/activities/4/read")

    @pytest.mark.asyncio
    async def test_mark_message_read(self, api, mock_http):
        mock_http.request.return_value = make_response("PATCH", "/api/messages/9/read")

        await api.mark_message_read(9)

        assert mock_http.request.call_args[0] == ("PATCH", "http://portal.test/api/messages/9/read")
