"""Custom error types for pywebchannel."""

from __future__ import annotations


class WebChannelError(Exception):
    """Base class for all pywebchannel errors."""


class TransportError(WebChannelError, TypeError):
    """Raised when a channel is built on a transport without a usable ``send``."""


class ProtocolError(WebChannelError):
    """Raised for inbound payloads that cannot be decoded into a message."""


class RemoteCallError(WebChannelError):
    """Rejection of a method call whose Response carried no payload.

    The wire format cannot tell a failed invocation apart from a method that
    returned nothing, so no further detail is available.
    """


class StaleObjectError(WebChannelError, AttributeError):
    """Raised when a member of a destroyed remote object is accessed."""

    def __init__(self, object_id: str, name: str) -> None:
        self.object_id = object_id
        self.name = name
        super().__init__(f"Remote object {object_id!r} was destroyed; cannot access {name!r}")
