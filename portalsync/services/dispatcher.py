"""Subscriber registry and fan-out for push channel events."""

import asyncio
import functools
import itertools
import logging
import weakref
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from portalsync.infra.metrics import dispatch_callback_errors_total

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Event streams a subscriber can register for."""
    MESSAGE = "message"
    STATUS = "status"
    NOTIFICATION = "notification"


class Subscription:
    """
    Handle returned by ``Dispatcher.subscribe``.

    Its only capability is cancellation. It keeps a weak reference to the dispatcher,
    so holding a subscription does not keep a dispatcher alive. Cancelling more than
    once is a no-op.
    """

    def __init__(self, dispatcher: "Dispatcher", token: int, kind: EventKind):
        self._dispatcher_ref = weakref.ref(dispatcher)
        self._token = token
        self.kind = kind
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        dispatcher = self._dispatcher_ref()
        if dispatcher is not None:
            dispatcher._remove(self._token)

    # Alias matching the push channel vocabulary
    unsubscribe = cancel

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"<Subscription {self.kind.value}#{self._token} {state}>"


class Dispatcher:
    """
    Registry of message/status subscribers with synchronous fan-out.

    Callbacks run in registration order on the publishing loop turn. Each publish
    iterates a snapshot of the registry taken before the first callback runs, so a
    callback that cancels itself or another subscription never causes a skip or a
    repeat within that publish. Events are not queued: late subscribers never see
    earlier events.
    """

    def __init__(self):
        self._tokens = itertools.count(1)
        # Insertion-ordered: token -> (kind, callback)
        self._registry: Dict[int, Tuple[EventKind, Callable[[Any], Any]]] = {}
        # Tasks of coroutine callbacks; referenced until done so failures are collected
        self._pending: Set[asyncio.Future] = set()

    def subscribe(self, kind: EventKind, callback: Callable[[Any], Any]) -> Subscription:
        """
        Register a callback for one event kind.

        Args:
            kind: Event stream to listen on
            callback: Called with each event; may return a coroutine, which is scheduled

        Returns:
            Subscription handle owned by the caller
        """
        kind = EventKind(kind)
        if not callable(callback):
            raise TypeError("callback must be callable")
        token = next(self._tokens)
        self._registry[token] = (kind, callback)
        return Subscription(self, token, kind)

    def publish(self, kind: EventKind, event: Any) -> int:
        """
        Deliver an event to every callback currently registered for ``kind``.

        Returns:
            Number of callbacks invoked
        """
        kind = EventKind(kind)
        snapshot: List[Callable[[Any], Any]] = [
            callback for registered_kind, callback in self._registry.values()
            if registered_kind is kind
        ]
        for callback in snapshot:
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(functools.partial(self._async_callback_done, kind))
            except Exception as e:
                dispatch_callback_errors_total.labels(kind=kind.value).inc()
                logger.exception(f"Subscriber callback failed for {kind.value} event: {str(e)}")
        return len(snapshot)

    @property
    def pending_callbacks(self) -> int:
        """Coroutine callbacks scheduled by publish that have not finished yet."""
        return len(self._pending)

    def subscriber_count(self, kind: Optional[EventKind] = None) -> int:
        if kind is None:
            return len(self._registry)
        kind = EventKind(kind)
        return sum(1 for registered_kind, _ in self._registry.values() if registered_kind is kind)

    def clear(self) -> None:
        """Drop every registration. Outstanding handles become no-ops."""
        self._registry.clear()

    def _remove(self, token: int) -> None:
        self._registry.pop(token, None)

    def _async_callback_done(self, kind: EventKind, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            dispatch_callback_errors_total.labels(kind=kind.value).inc()
            logger.error(f"Async subscriber callback failed for {kind.value} event: {str(error)}", exc_info=error)
