"""End-to-end wiring of the sync runtime with a fake push channel."""

import json
from unittest.mock import AsyncMock

import pytest

from portalsync.adapters.portal_api_client import PortalApiClient
from portalsync.models.connection import ConnectionState
from portalsync.runtime import SyncRuntime


@pytest.fixture
def api(make_message):
    client = PortalApiClient(base_url="https://portal.test", token="t")
    client.fetch_project_history = AsyncMock(return_value=[make_message(id=1)])
    client.fetch_direct_history = AsyncMock(return_value=[])
    client.fetch_recent_messages = AsyncMock(return_value=[])
    client.fetch_recent_activities = AsyncMock(return_value=[])
    client.fetch_tracking_items = AsyncMock(return_value=[])
    return client


@pytest.fixture
def runtime(api, connector, manual_scheduler):
    return SyncRuntime(current_user_id=10, api=api, connector=connector, scheduler=manual_scheduler)


class TestSyncRuntime:
    """Shared channel, conversations and polling under one owner."""

    @pytest.mark.asyncio
    async def test_live_frame_reaches_open_conversation(self, runtime, connector, settle):
        channel = connector.succeed()
        runtime.start()
        await settle()
        assert runtime.connection.state is ConnectionState.CONNECTED
        assert connector.urls == ["wss://portal.test/ws"]

        changes = []
        session = await runtime.open_project_conversation(7, on_change=changes.append)
        channel.push(json.dumps({
            "id": 2, "senderId": 11, "projectId": 7, "content": "hey", "createdAt": "2024-05-06T09:01:00Z",
        }))
        await settle()

        assert [m.id for m in session.synchronizer.messages] == [1, 2]
        assert len(changes) == 1
        assert runtime.open_sessions == 1

    @pytest.mark.asyncio
    async def test_two_conversations_share_one_channel(self, runtime, connector, settle):
        connector.succeed()
        runtime.start()
        await settle()

        await runtime.open_project_conversation(7)
        await runtime.open_direct_conversation(20)

        assert connector.calls == 1
        assert runtime.open_sessions == 2

    @pytest.mark.asyncio
    async def test_stop_tears_everything_down(self, runtime, connector, manual_scheduler, settle):
        channel = connector.succeed()
        runtime.start()
        await settle()
        session = await runtime.open_project_conversation(7)

        runtime.stop()
        await settle()

        assert not session.is_open
        assert runtime.open_sessions == 0
        assert not runtime.notifications.is_active
        assert runtime.connection.state is ConnectionState.DISCONNECTED
        assert channel.closed
        assert manual_scheduler.pending == []
        assert runtime.dispatcher.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_aclose_waits_for_background_tasks(self, runtime, connector, manual_scheduler, settle):
        channel = connector.succeed()
        runtime.start()
        await settle()
        session = await runtime.open_project_conversation(7)

        await runtime.aclose()

        assert not session.is_open
        assert runtime.open_sessions == 0
        assert not runtime.notifications.is_active
        assert runtime.connection.state is ConnectionState.DISCONNECTED
        assert channel.closed
        assert manual_scheduler.pending == []

    @pytest.mark.asyncio
    async def test_close_conversation(self, runtime):
        session = await runtime.open_project_conversation(7)

        runtime.close_conversation(session)

        assert runtime.open_sessions == 0
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_conversations_need_a_user(self, api, connector, manual_scheduler):
        runtime = SyncRuntime(current_user_id=None, api=api, connector=connector, scheduler=manual_scheduler)
        runtime.current_user_id = None

        with pytest.raises(RuntimeError):
            await runtime.open_project_conversation(7)
