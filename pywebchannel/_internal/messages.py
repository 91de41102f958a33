"""
Wire Messages & Codec.

This module contains:
1. Data Structures: MessageType, the per-type message TypedDicts, UNDEFINED
2. Codec: encode_message, decode_message, debugprint
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from enum import IntEnum
from typing import Any, Literal, TypedDict, Union

from typing_extensions import NotRequired

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

# Key marking a dict on the wire as a reference to a host object.
OBJECT_MARKER = "__QObject*__"

# Signal names the host emits when an object goes away.
DESTROYED_SIGNAL_NAMES = frozenset({"destroyed", "destroyed()", "destroyed(QObject*)"})


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------

class MessageType(IntEnum):
    SIGNAL = 1
    PROPERTY_UPDATE = 2
    INIT = 3
    IDLE = 4
    DEBUG = 5
    INVOKE_METHOD = 6
    CONNECT_TO_SIGNAL = 7
    DISCONNECT_FROM_SIGNAL = 8
    SET_PROPERTY = 9
    RESPONSE = 10


class _Undefined:
    """Marker for a value the host left out, as opposed to an explicit ``null``."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED: Any = _Undefined()


class ObjectDescriptor(TypedDict):
    methods: list[list[Any]]
    properties: list[list[Any]]
    signals: list[list[Any]]
    enums: dict[str, Any]


class ObjectReference(TypedDict):
    id: str
    data: NotRequired[ObjectDescriptor]


class InitMessage(TypedDict):
    type: Literal[MessageType.INIT]
    id: NotRequired[int]


class IdleMessage(TypedDict):
    type: Literal[MessageType.IDLE]


class DebugMessage(TypedDict):
    type: Literal[MessageType.DEBUG]
    data: Any


class InvokeMethodMessage(TypedDict):
    type: Literal[MessageType.INVOKE_METHOD]
    id: NotRequired[int]
    object: str
    method: int | str
    args: list[Any]


class SignalConnectionMessage(TypedDict):
    type: Literal[MessageType.CONNECT_TO_SIGNAL, MessageType.DISCONNECT_FROM_SIGNAL]
    object: str
    signal: int | str


class SetPropertyMessage(TypedDict):
    type: Literal[MessageType.SET_PROPERTY]
    object: str
    property: int | str
    value: Any


class SignalMessage(TypedDict):
    type: Literal[MessageType.SIGNAL]
    object: str
    signal: int | str
    args: NotRequired[list[Any]]


class PropertyUpdateEntry(TypedDict):
    object: str
    signals: NotRequired[dict[str, Any]]
    properties: NotRequired[dict[str, Any]]


class PropertyUpdateMessage(TypedDict):
    type: Literal[MessageType.PROPERTY_UPDATE]
    data: list[PropertyUpdateEntry]


class ResponseMessage(TypedDict):
    type: Literal[MessageType.RESPONSE]
    id: int
    data: NotRequired[Any]


Message = Union[
    InitMessage,
    IdleMessage,
    DebugMessage,
    InvokeMethodMessage,
    SignalConnectionMessage,
    SetPropertyMessage,
    SignalMessage,
    PropertyUpdateMessage,
    ResponseMessage,
]


# ---------------------------------------------------------------------------
# Debug Logic
# ---------------------------------------------------------------------------

def debugprint(enabled: bool, *args: Any) -> None:
    if enabled:
        logger.debug(" ".join(str(arg) for arg in args))


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def index_key(key: Any) -> Any:
    """Normalize a member index taken from a JSON object key.

    JSON object keys are always strings, so ``{"0": ...}`` from a PropertyUpdate
    has to be folded back onto the integer index the descriptor declared.
    """
    if isinstance(key, str) and (key.isdigit() or (key[:1] == "-" and key[1:].isdigit())):
        return int(key)
    return key


def encode_message(message: Mapping[str, Any] | str, *, compact: bool = True) -> str:
    """Serialize *message* for the transport. Strings are passed through untouched."""
    if isinstance(message, str):
        return message
    separators = (",", ":") if compact else None
    return json.dumps(message, separators=separators)


def decode_message(payload: Any) -> dict[str, Any]:
    """Parse an inbound payload into a message dict.

    Accepts a JSON string, UTF-8 bytes, or an already-parsed mapping.

    Raises:
        ProtocolError: If the payload is not valid JSON or not a JSON object.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"Message is not valid UTF-8: {exc}") from exc

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Message is not valid JSON: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise ProtocolError(f"Message must be a JSON object, got {type(payload).__name__}")
    return dict(payload)


def message_type(message: Mapping[str, Any]) -> MessageType:
    """Return the :class:`MessageType` tag of *message*.

    Raises:
        ProtocolError: If the tag is missing or not a known message type.
    """
    raw = message.get("type")
    try:
        return MessageType(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Unknown message type: {raw!r}") from exc


def is_object_reference(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value.get(OBJECT_MARKER)) and value.get("id") is not None
