"""Pytest configuration and fixtures."""

import asyncio
import os
from collections import deque
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")

from portalsync.models.message import Message  # noqa: E402


T0 = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)


class ManualTimer:
    """Timer handle recorded by ManualScheduler."""

    def __init__(self, when, delay, callback, args):
        self.when = when
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test advances it."""

    def __init__(self):
        self._now = 0.0
        self.timers = []

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self._now + delay, delay, callback, args)
        self.timers.append(timer)
        return timer

    def now(self):
        return self._now

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def delays(self):
        return [t.delay for t in self.timers]

    def fire_next(self):
        """Jump the clock to the earliest pending timer and run it."""
        pending = sorted(self.pending, key=lambda t: t.when)
        if not pending:
            raise AssertionError("No pending timer")
        timer = pending[0]
        self._now = max(self._now, timer.when)
        timer.fired = True
        timer.callback(*timer.args)
        return timer

    def advance(self, seconds):
        self._now += seconds
        for timer in sorted(self.pending, key=lambda t: t.when):
            if timer.when <= self._now and not timer.cancelled:
                timer.fired = True
                timer.callback(*timer.args)


class _Close:
    def __init__(self, error=None):
        self.error = error


class FakeChannel:
    """In-memory push channel."""

    def __init__(self):
        self._frames = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.fail_sends = False

    def push(self, frame):
        self._frames.put_nowait(frame)

    def drop(self, error=None):
        """End the stream: cleanly, or by raising ``error`` from iteration."""
        self._frames.put_nowait(_Close(error))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if isinstance(item, _Close):
            self.closed = True
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item

    async def send(self, message):
        if self.closed or self.fail_sends:
            raise ConnectionError("channel closed")
        self.sent.append(message)

    async def close(self):
        self.closed = True


class FakeConnector:
    """Connector that plays back queued outcomes, failing when none are queued."""

    def __init__(self):
        self.outcomes = deque()
        self.urls = []
        self.channels = []

    def succeed(self):
        channel = FakeChannel()
        self.outcomes.append(channel)
        return channel

    def fail(self, error=None):
        self.outcomes.append(error or ConnectionRefusedError("connection refused"))

    @property
    def calls(self):
        return len(self.urls)

    async def __call__(self, url):
        self.urls.append(url)
        outcome = self.outcomes.popleft() if self.outcomes else ConnectionRefusedError("connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        self.channels.append(outcome)
        return outcome


async def _settle(rounds: int = 20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def manual_scheduler():
    """Scheduler driven by the test."""
    return ManualScheduler()


@pytest.fixture
def connector():
    """Fake push channel connector."""
    return FakeConnector()


@pytest.fixture
def settle():
    """Let pending event-loop callbacks and tasks run."""
    return _settle


@pytest.fixture
def make_message():
    """Factory for Message instances."""

    def factory(
        id=1,
        minutes=0,
        sender_id=10,
        recipient_id=None,
        project_id=7,
        content="hello",
        **extra,
    ):
        return Message(
            id=id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            project_id=project_id,
            content=content,
            created_at=T0 + timedelta(minutes=minutes),
            **extra,
        )

    return factory
