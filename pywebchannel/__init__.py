"""
pywebchannel - Drive objects published by a Qt WebChannel host from Python.

A web channel host publishes objects with methods, properties and signals.
pywebchannel performs the Init handshake over any message transport, builds
one local proxy per published object and keeps those proxies in sync: method
calls return asyncio futures, property reads come from a cache the host keeps
up to date, and signal callbacks run when the host emits.

Key Features:
    - Transport agnostic: anything with ``send`` and an ``onmessage`` hook works
    - Identity-preserving proxies, including cyclic object graphs
    - Reference-counted signal subscriptions
    - PropertyUpdate/Idle flow control handled for you
    - Ready-made in-process and websocket transports

Basic Usage:
    >>> import asyncio
    >>> import pywebchannel
    >>> async def main():
    ...     transport, reader = await pywebchannel.open_websocket("ws://localhost:12345")
    ...     channel = await pywebchannel.connect_async(transport)
    ...     backend = channel.objects["backend"]
    ...     backend.messageReceived.connect(print)
    ...     print(await backend.greet("world"))
    ...     backend.title = "Hello"
    >>> asyncio.run(main())
"""

from ._internal.channel import WebChannel, connect, connect_async
from ._internal.messages import UNDEFINED, MessageType
from ._internal.qobject import QObject, Signal
from ._internal.transports import InProcessTransport, WebSocketTransport, open_websocket
from .config import ChannelConfig
from .errors import (
    ProtocolError,
    RemoteCallError,
    StaleObjectError,
    TransportError,
    WebChannelError,
)
from .interfaces import MessageEvent, Transport

__version__ = "0.1.0"

__all__ = [
    "WebChannel",
    "connect",
    "connect_async",
    "QObject",
    "Signal",
    "MessageType",
    "UNDEFINED",
    "ChannelConfig",
    "Transport",
    "MessageEvent",
    "InProcessTransport",
    "WebSocketTransport",
    "open_websocket",
    "WebChannelError",
    "TransportError",
    "ProtocolError",
    "RemoteCallError",
    "StaleObjectError",
]
