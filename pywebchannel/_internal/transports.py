"""
Reference Transports.

This module contains:
- InProcessTransport (callable bridge, used for embedding and tests)
- WebSocketTransport (websockets client connection)
- open_websocket
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..interfaces import MessageEvent

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)


class InProcessTransport:
    """Transport that hands outbound payloads to a callable.

    Inbound messages are pushed in with :meth:`deliver`. Useful when the host
    lives in the same process, or to script a host in tests.
    """

    def __init__(self, sender: Callable[[str], None]) -> None:
        self._sender = sender
        self.onmessage: Callable[[MessageEvent], None] | None = None

    def send(self, data: str) -> None:
        self._sender(data)

    def deliver(self, data: Any) -> None:
        """Hand one inbound message (JSON text or parsed mapping) to the channel."""
        if self.onmessage is None:
            raise RuntimeError("No channel is attached to this transport")
        self.onmessage(MessageEvent(data))


class WebSocketTransport:
    """Transport over a ``websockets`` client connection.

    ``send`` only enqueues; a writer task drains the outbox so the channel
    never blocks on the network. :meth:`run` reads frames and feeds them to
    ``onmessage`` one at a time, which keeps delivery in order.
    """

    def __init__(self, websocket: ClientConnection) -> None:
        self._websocket = websocket
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None
        self._closed = False
        self.onmessage: Callable[[MessageEvent], None] | None = None

    def send(self, data: str) -> None:
        if self._closed or (self._writer is not None and self._writer.done()):
            logger.error("WebSocket writer has stopped; dropping message: %s", data)
            return
        self._outbox.put_nowait(data)

    async def _drain_outbox(self) -> None:
        while True:
            item = await self._outbox.get()
            if item is None:
                break
            try:
                await self._websocket.send(item)
            except Exception as exc:
                logger.error("WebSocket send failed: %s", exc)
                break

    def start(self) -> None:
        """Start the writer task on the running loop."""
        if self._writer is None and not self._closed:
            self._writer = asyncio.get_running_loop().create_task(self._drain_outbox())

    async def run(self) -> None:
        """Read frames until the connection closes."""
        from websockets.exceptions import ConnectionClosed

        self.start()
        try:
            async for frame in self._websocket:
                if self.onmessage is None:
                    logger.warning("Dropping frame received before a channel was attached")
                    continue
                self.onmessage(MessageEvent(frame))
        except ConnectionClosed as exc:
            logger.info("WebSocket connection closed: %s", exc)
        finally:
            await self.close()

    async def close(self) -> None:
        """Flush queued messages and close the connection."""
        self._closed = True
        if self._writer is not None:
            self._outbox.put_nowait(None)
            with contextlib.suppress(Exception):
                await self._writer
            self._writer = None
        with contextlib.suppress(Exception):
            await self._websocket.close()


async def open_websocket(url: str, **connect_kwargs: Any) -> tuple[WebSocketTransport, asyncio.Task[None]]:
    """Connect to *url* and start reading.

    Returns the transport and the reader task, which finishes when the
    connection closes.
    """
    from websockets.asyncio.client import connect

    websocket = await connect(url, **connect_kwargs)
    logger.info("Connected to web channel host at %s", url)
    transport = WebSocketTransport(websocket)
    transport.start()
    reader = asyncio.get_running_loop().create_task(transport.run())
    return transport, reader
