"""Push channel lifetime: connect, reconnect with backoff, frame decoding, status events."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from portalsync.adapters.push_transport import Connector, PushChannel, websocket_connector
from portalsync.infra.error_handler import MalformedFrameError, TransportError, compute_backoff_delay
from portalsync.infra.metrics import (
    push_connected,
    push_frames_dropped_total,
    push_frames_received_total,
    push_reconnect_attempts_total,
    push_status_events_total,
)
from portalsync.infra.scheduler import Scheduler, TimerHandle, default_scheduler
from portalsync.models.connection import ConnectionState, ConnectionStatus, StatusEvent
from portalsync.models.message import Message, NewMessage
from portalsync.services.dispatcher import Dispatcher, EventKind, Subscription

logger = logging.getLogger(__name__)


def decode_frame(raw: Union[str, bytes]) -> Message:
    """
    Decode one inbound push frame.

    Raises:
        MalformedFrameError: If the frame is not JSON or does not describe a Message
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError(f"Frame is not UTF-8: {str(e)}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(f"Frame is not JSON: {str(e)}", raw=raw)
    if not isinstance(data, dict):
        raise MalformedFrameError("Frame is not a JSON object", raw=raw)
    try:
        return Message.model_validate(data)
    except ValidationError as e:
        raise MalformedFrameError(f"Frame is not a message: {e.error_count()} validation error(s)", raw=raw)


def _as_transport_error(error: Exception, context: str) -> TransportError:
    if isinstance(error, TransportError):
        return error
    return TransportError(f"{context}: {str(error)}")


class ConnectionManager:
    """
    Owns one push channel connection and its recovery policy.

    State machine::

        disconnected --connect()--> connecting --open--> connected
        connecting|connected --close/error--> reconnecting   (attempt < max_retries)
                                          \\--> failed        (retries exhausted)
        reconnecting --timer--> connecting
        any --disconnect()--> disconnected

    The retry for attempt ``n`` (0-based) is scheduled after
    ``min(base_delay_ms * 2**n, max_delay_ms)``. Transport faults are reported only as
    status events; nothing here raises to callers.
    """

    def __init__(
        self,
        url: str,
        connector: Optional[Connector] = None,
        dispatcher: Optional[Dispatcher] = None,
        scheduler: Optional[Scheduler] = None,
        max_retries: int = 5,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
    ):
        self.url = url
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.dispatcher = dispatcher or Dispatcher()
        self._connector = connector or websocket_connector()
        self._scheduler = scheduler or default_scheduler
        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._channel: Optional[PushChannel] = None
        self._task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[TimerHandle] = None
        # Cause of the most recent channel loss; cleared on a successful open
        self.last_error: Optional[TransportError] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Reconnect attempts made since the last successful open."""
        return self._attempt

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ---- public API --------------------------------------------------------

    def connect(self) -> None:
        """Open the channel. No-op while connecting or connected.

        From ``reconnecting`` the pending retry is replaced by an immediate attempt;
        from ``failed`` the retry counter starts over.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_retry()
        if self._state is ConnectionState.FAILED:
            self._attempt = 0
        self._open()

    def disconnect(self) -> None:
        """Close the channel and stop recovering, whatever the current state."""
        self._cancel_retry()
        previous = self._state
        self._set_state(ConnectionState.DISCONNECTED)
        if self._task is not None and not self._task.done():
            # The task closes the channel on its way out
            self._task.cancel()
        self._task = None
        self._channel = None
        push_connected.set(0)
        if previous is ConnectionState.CONNECTED:
            self._emit_status(ConnectionStatus.DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect and wait for the connection task to close the channel."""
        task = self._task
        self.disconnect()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def send(self, payload: Union[Message, NewMessage, Dict[str, Any]]) -> bool:
        """
        Hand a frame to the open channel.

        Returns:
            True if the frame was handed to an open channel. False means the caller must
            rely on the pull path; it does not mean the message was lost.
        """
        channel = self._channel
        if channel is None or self._state is not ConnectionState.CONNECTED:
            return False
        try:
            wire = payload.to_wire() if hasattr(payload, "to_wire") else payload
            text = json.dumps(wire)
        except (TypeError, ValueError) as e:
            logger.warning(f"Push frame could not be encoded: {str(e)}")
            return False
        try:
            await channel.send(text)
        except Exception as e:
            logger.warning(f"Push frame send failed: {str(e)}")
            return False
        return True

    def on_message(self, callback: Callable[[Message], Any]) -> Subscription:
        return self.dispatcher.subscribe(EventKind.MESSAGE, callback)

    def on_status_change(self, callback: Callable[[StatusEvent], Any]) -> Subscription:
        return self.dispatcher.subscribe(EventKind.STATUS, callback)

    # ---- state machine -----------------------------------------------------

    def _open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            channel = await self._connector(self.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = _as_transport_error(e, "Push channel open failed")
            logger.warning(self.last_error.message, extra={"url": self.url, "attempt": self._attempt})
            if self._state is ConnectionState.CONNECTING:
                self._handle_channel_lost(ConnectionStatus.ERROR)
            return

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() won the race with the open
            await channel.close()
            return

        self._channel = channel
        self._attempt = 0
        self.last_error = None
        self._set_state(ConnectionState.CONNECTED)
        push_connected.set(1)
        self._emit_status(ConnectionStatus.CONNECTED)

        status = ConnectionStatus.DISCONNECTED
        try:
            async for frame in channel:
                self._handle_frame(frame)
        except asyncio.CancelledError:
            await channel.close()
            raise
        except Exception as e:
            self.last_error = _as_transport_error(e, "Push channel closed with error")
            logger.warning(self.last_error.message, extra={"url": self.url})
            status = ConnectionStatus.ERROR

        if self._channel is channel:
            self._channel = None
        push_connected.set(0)
        if self._state is ConnectionState.CONNECTED:
            self._handle_channel_lost(status)

    def _handle_channel_lost(self, status: ConnectionStatus) -> None:
        self._task = None
        if self._attempt < self.max_retries:
            delay_ms = compute_backoff_delay(self._attempt, self.base_delay_ms, self.max_delay_ms)
            self._attempt += 1
            self._set_state(ConnectionState.RECONNECTING)
            self._emit_status(status)
            push_reconnect_attempts_total.inc()
            logger.info(
                "Push channel reconnect scheduled",
                extra={"attempt": self._attempt, "delay_ms": delay_ms},
            )
            self._retry_handle = self._scheduler.call_later(delay_ms / 1000.0, self._retry)
        else:
            self._set_state(ConnectionState.FAILED)
            self._emit_status(ConnectionStatus.FAILED)
            logger.error(
                "Push channel gave up reconnecting",
                extra={"attempts": self._attempt, "url": self.url},
            )

    def _retry(self) -> None:
        self._retry_handle = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        self._open()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _handle_frame(self, raw: Union[str, bytes]) -> None:
        push_frames_received_total.inc()
        try:
            message = decode_frame(raw)
        except MalformedFrameError as e:
            push_frames_dropped_total.inc()
            logger.warning(f"Dropping malformed push frame: {e.message}")
            return
        self.dispatcher.publish(EventKind.MESSAGE, message)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(
            "Push channel state change",
            extra={"from_state": self._state.value, "to_state": state.value, "attempt": self._attempt},
        )
        self._state = state

    def _emit_status(self, status: ConnectionStatus) -> None:
        push_status_events_total.labels(status=status.value).inc()
        self.dispatcher.publish(
            EventKind.STATUS,
            StatusEvent(status=status, state=self._state, attempt=self._attempt),
        )
