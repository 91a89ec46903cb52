"""WebSocket transport for the portal push channel."""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol
from urllib.parse import urlparse, urlunparse

import websockets
from websockets.exceptions import WebSocketException

from portalsync.infra.error_handler import TransportError


class PushChannel(Protocol):
    """Open push channel: async-iterable of text frames, plus send/close.

    Iteration ends on a clean close and raises on an abnormal one.
    """

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[PushChannel]]


def push_url_for(base_url: str, path: str = "/ws") -> str:
    """
    Derive the push endpoint from the portal base URL.

    The transport follows the page's own scheme: ``https`` maps to ``wss`` and ``http``
    to ``ws``. A base URL that already uses ``ws``/``wss`` keeps its scheme.

    Raises:
        ValueError: If the base URL has an unsupported scheme or no host
    """
    parsed = urlparse(base_url)
    scheme = parsed.scheme.lower()
    mapped = {"https": "wss", "http": "ws", "wss": "wss", "ws": "ws"}.get(scheme)
    if mapped is None:
        raise ValueError(f"Unsupported portal URL scheme: {base_url}")
    if not parsed.netloc:
        raise ValueError(f"Portal URL has no host: {base_url}")
    if not path.startswith("/"):
        path = "/" + path
    return urlunparse((mapped, parsed.netloc, path, "", "", ""))


def websocket_connector(headers: Optional[Dict[str, str]] = None) -> Connector:
    """
    Build a connector that opens the push channel with the websockets client.

    Handshake rejections, socket errors and open timeouts are raised as TransportError.
    """

    async def connect(url: str) -> PushChannel:
        try:
            return await websockets.connect(
                url,
                additional_headers=headers or None,
                open_timeout=10,
            )
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"Push channel open failed: {str(e)}") from e

    return connect
