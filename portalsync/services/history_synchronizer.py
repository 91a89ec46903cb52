"""Merge of pull-fetched history and push-delivered messages for one conversation."""

import logging
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from portalsync.infra.metrics import live_messages_total
from portalsync.models.message import ConversationKey, Message
from portalsync.services.dispatcher import Dispatcher, EventKind, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateGroup:
    """Messages of one local calendar day, oldest first."""
    day: date
    messages: Tuple[Message, ...]


MergedHistory = Tuple[DateGroup, ...]


def group_by_day(messages: Iterable[Message], tz: Optional[tzinfo] = None) -> MergedHistory:
    """
    Partition time-ordered messages into day groups.

    A new group starts whenever the calendar day (in ``tz``, local time when None) of
    consecutive messages differs.
    """
    groups: List[DateGroup] = []
    current_day: Optional[date] = None
    bucket: List[Message] = []
    for message in messages:
        day = message.created_at.astimezone(tz).date()
        if current_day is not None and day != current_day:
            groups.append(DateGroup(current_day, tuple(bucket)))
            bucket = []
        current_day = day
        bucket.append(message)
    if bucket:
        groups.append(DateGroup(current_day, tuple(bucket)))
    return tuple(groups)


class HistorySynchronizer:
    """
    Keeps one conversation's messages ordered and free of duplicate ids.

    The pull-fetched baseline is authoritative; live messages from the push channel are
    merged into it by id. Every mutation re-sorts by ``created_at`` (stable, so equal
    timestamps keep arrival order) and rebuilds the day groups.
    """

    def __init__(
        self,
        conversation_key: ConversationKey,
        baseline: Iterable[Message] = (),
        on_change: Optional[Callable[[MergedHistory], None]] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.conversation_key = conversation_key
        self._on_change = on_change
        self._tz = tz
        self._by_id: Dict[int, Message] = {}
        self._live_ids: set = set()
        self._ordered: Tuple[Message, ...] = ()
        self._history: MergedHistory = ()
        self._subscription: Optional[Subscription] = None
        self._load_baseline(baseline)
        self._rebuild(notify=False)

    # ---- read side ---------------------------------------------------------

    @property
    def history(self) -> MergedHistory:
        return self._history

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._ordered

    @property
    def is_attached(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._by_id

    # ---- mutations ---------------------------------------------------------

    def accepts(self, message: Message) -> bool:
        """True if the message belongs to this conversation."""
        return message.conversation_key == self.conversation_key

    def apply_live_message(self, message: Message) -> bool:
        """
        Merge a push-delivered message.

        Messages for another conversation, messages without an id, and ids already
        present are ignored.

        Returns:
            True if the history changed
        """
        if not self.accepts(message):
            live_messages_total.labels(result="ignored").inc()
            return False
        if message.id is None:
            logger.debug("Ignoring live message without id", extra={"sender_id": message.sender_id})
            live_messages_total.labels(result="ignored").inc()
            return False
        if message.id in self._by_id:
            live_messages_total.labels(result="duplicate").inc()
            return False
        self._by_id[message.id] = message
        self._live_ids.add(message.id)
        live_messages_total.labels(result="merged").inc()
        self._rebuild()
        return True

    def add_local_message(self, message: Message) -> bool:
        """
        Add the canonical record returned by our own pull-path write.

        Same identity rules as live messages; a push echo of it arriving later is then
        absorbed as a duplicate.
        """
        return self.apply_live_message(message)

    def replace_baseline(self, messages: Iterable[Message]) -> None:
        """
        Swap in a fresh pull result.

        Live messages absent from the new baseline are kept only if they are newer than
        its latest entry, i.e. they arrived while the refetch was in flight.
        """
        previous_live = [self._by_id[i] for i in self._live_ids if i in self._by_id]
        self._by_id = {}
        self._live_ids = set()
        self._load_baseline(messages)

        latest = max((m.created_at for m in self._by_id.values()), default=None)
        for message in previous_live:
            if message.id in self._by_id:
                continue
            if latest is None or message.created_at > latest:
                self._by_id[message.id] = message
                self._live_ids.add(message.id)
        self._rebuild()

    # ---- dispatcher wiring -------------------------------------------------

    def attach(self, dispatcher: Dispatcher) -> Subscription:
        """Subscribe to live messages. Re-attaching replaces the previous subscription."""
        self.detach()
        self._subscription = dispatcher.subscribe(EventKind.MESSAGE, self.apply_live_message)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def close(self) -> None:
        """Stop receiving live messages and drop the change callback."""
        self.detach()
        self._on_change = None

    # ---- internals ---------------------------------------------------------

    def _load_baseline(self, messages: Iterable[Message]) -> None:
        for message in messages:
            if message.id is None:
                logger.warning("Skipping baseline message without id", extra={"sender_id": message.sender_id})
                continue
            # Last write wins for repeated ids within one pull result
            self._by_id[message.id] = message

    def _rebuild(self, notify: bool = True) -> None:
        self._ordered = tuple(sorted(self._by_id.values(), key=lambda m: m.created_at))
        self._history = group_by_day(self._ordered, self._tz)
        if notify and self._on_change is not None:
            self._on_change(self._history)
