"""Public transport contract for pywebchannel.

The channel never moves bytes itself. Anything that can send a text payload to
the host and hand inbound payloads to an ``onmessage`` handler can carry it:
a websocket, an in-process bridge, a pipe. These interfaces use structural
typing so transports can be written without inheriting from concrete classes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class MessageEvent:
    """Inbound message envelope handed to ``Transport.onmessage``.

    Attributes:
        data: A JSON string, or an already-parsed message mapping.
    """

    data: Any


@runtime_checkable
class Transport(Protocol):
    """Protocol for message transports.

    Implementations must deliver inbound messages in the order the host sent
    them, one at a time, on the thread running the channel's event loop.
    """

    onmessage: Callable[[MessageEvent], None] | None
    """Inbound handler. The channel assigns this during construction."""

    def send(self, data: str) -> None:
        """Send one serialized message to the host."""
        ...
