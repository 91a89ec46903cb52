"""Three-feed notification polling and merge."""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple

from portalsync.infra.error_handler import PullRequestError
from portalsync.infra.metrics import notification_polls_total, notifications_unread
from portalsync.infra.scheduler import PeriodicTask, Scheduler
from portalsync.models.notification import (
    ActivityRecord,
    MessageRecord,
    NotificationDelta,
    NotificationItem,
    NotificationSnapshot,
    SourceType,
    TrackingItemRecord,
)
from portalsync.services.dispatcher import Dispatcher, EventKind, Subscription

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


class NotificationSource(Protocol):
    """The pull endpoints the aggregator reads. ``PortalApiClient`` satisfies it."""

    async def fetch_recent_messages(self) -> List[MessageRecord]: ...

    async def fetch_recent_activities(self) -> List[ActivityRecord]: ...

    async def fetch_tracking_items(self) -> List[TrackingItemRecord]: ...

    async def mark_activity_read(self, activity_id: int) -> None: ...

    async def mark_message_read(self, message_id: int) -> None: ...


def _message_items(records: List[MessageRecord]) -> Iterator[NotificationItem]:
    for record in records:
        if record.is_read:
            continue
        yield NotificationItem(
            source_type=SourceType.MESSAGE,
            source_id=record.id,
            title="Message",
            description=record.subject or "New message",
            created_at=record.created_at,
            is_read=False,
        )


def _activity_items(records: List[ActivityRecord]) -> Iterator[NotificationItem]:
    for record in records:
        if record.is_read:
            continue
        yield NotificationItem(
            source_type=SourceType.ACTIVITY,
            source_id=record.id,
            title="Activity",
            description=record.description,
            created_at=record.created_at,
            is_read=False,
        )


def _tracking_items(records: List[TrackingItemRecord]) -> Iterator[NotificationItem]:
    for record in records:
        if not record.is_active:
            continue
        # Active tracking items always count as unread
        yield NotificationItem(
            source_type=SourceType.TRACKING,
            source_id=record.id,
            title="Tracking",
            description=record.name,
            created_at=record.updated_at or record.created_at,
            is_read=False,
        )


def merge_notifications(
    messages: List[MessageRecord],
    activities: List[ActivityRecord],
    tracking: List[TrackingItemRecord],
) -> List[NotificationItem]:
    """
    Build the merged notification list, newest first.

    Items are keyed by ``(source_type, source_id)``; a later record with the same key
    replaces the earlier one.
    """
    by_key: Dict[Tuple[SourceType, int], NotificationItem] = {}
    for items in (_message_items(messages), _activity_items(activities), _tracking_items(tracking)):
        for item in items:
            by_key[item.key] = item
    return sorted(by_key.values(), key=lambda item: item.created_at, reverse=True)


class NotificationAggregator:
    """
    Polls unread messages, unread activities and active tracking items, and merges them.

    New-notification callbacks fire only when the total unread count grows compared to
    the previous tick. ``has_new`` stays set until the consumer calls ``acknowledge()``.
    """

    def __init__(
        self,
        source: NotificationSource,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        scheduler: Optional[Scheduler] = None,
    ):
        self.source = source
        self._events = Dispatcher()
        self._task = PeriodicTask(self.tick, poll_interval, scheduler=scheduler, name="notification-poll")
        self._items: List[NotificationItem] = []
        self._feed_counts: Dict[SourceType, int] = {kind: 0 for kind in SourceType}
        self._unread_total = 0
        self._has_new = False
        # Ticks can overlap (periodic poll vs. re-poll after a read); each takes a number
        # when it starts and only results newer than the last applied one are kept
        self._tick_seq = 0
        self._applied_seq = 0
        self.last_error: Optional[PullRequestError] = None

    # ---- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Tick now, then every poll interval."""
        self._task.start()

    def stop(self) -> None:
        self._task.stop()

    async def aclose(self) -> None:
        """Stop polling and wait for an in-flight tick to unwind."""
        await self._task.aclose()

    @property
    def is_active(self) -> bool:
        return self._task.is_active

    @property
    def poll_task(self) -> PeriodicTask:
        return self._task

    # ---- read side ---------------------------------------------------------

    @property
    def items(self) -> List[NotificationItem]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread_total

    @property
    def has_new(self) -> bool:
        return self._has_new

    def snapshot(self) -> NotificationSnapshot:
        return NotificationSnapshot(
            items=list(self._items),
            unread_count=self._unread_total,
            feed_counts=dict(self._feed_counts),
            has_new=self._has_new,
        )

    def on_new_notification(self, callback: Callable[[NotificationDelta], Any]) -> Subscription:
        return self._events.subscribe(EventKind.NOTIFICATION, callback)

    def acknowledge(self) -> None:
        """The consumer opened the notification list."""
        self._has_new = False

    # ---- polling -----------------------------------------------------------

    async def tick(self) -> List[NotificationItem]:
        """
        Re-query the three feeds and recompute the merged list.

        A tick that finishes after a later-started tick has been applied is discarded and
        returns the current items, so a stale poll never resurrects an item marked read.

        Raises:
            PullRequestError: If any feed failed; the previous state is kept
        """
        self._tick_seq += 1
        seq = self._tick_seq
        try:
            messages, activities, tracking = await asyncio.gather(
                self.source.fetch_recent_messages(),
                self.source.fetch_recent_activities(),
                self.source.fetch_tracking_items(),
            )
        except PullRequestError as e:
            self.last_error = e
            notification_polls_total.labels(status="failure").inc()
            logger.warning(f"Notification poll failed: {e.message}")
            raise
        if seq < self._applied_seq:
            logger.debug("Discarding stale notification poll", extra={"tick": seq, "applied": self._applied_seq})
            return list(self._items)
        self._applied_seq = seq
        self.last_error = None

        items = merge_notifications(messages, activities, tracking)
        feed_counts = {kind: 0 for kind in SourceType}
        for item in items:
            feed_counts[item.source_type] += 1
        total = len(items)

        previous_total = self._unread_total
        previous_counts = self._feed_counts
        self._items = items
        self._feed_counts = feed_counts
        self._unread_total = total
        notification_polls_total.labels(status="success").inc()
        notifications_unread.set(total)

        if total > previous_total:
            self._has_new = True
            delta = NotificationDelta(
                previous_total=previous_total,
                current_total=total,
                feed_deltas={kind: feed_counts[kind] - previous_counts.get(kind, 0) for kind in SourceType},
            )
            logger.info("New notifications", extra={"previous": previous_total, "current": total})
            self._events.publish(EventKind.NOTIFICATION, delta)
        return list(items)

    async def mark_activity_read(self, activity_id: int) -> List[NotificationItem]:
        """Mark an activity read through the portal, then re-poll."""
        await self.source.mark_activity_read(activity_id)
        return await self.tick()

    async def mark_message_read(self, message_id: int) -> List[NotificationItem]:
        await self.source.mark_message_read(message_id)
        return await self.tick()
