"""
Channel Controller.

This module contains:
- WebChannel (handshake, inbound dispatch, outbound requests)
- connect / connect_async entry points
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from ..config import ChannelConfig, resolve_config
from ..errors import ProtocolError, TransportError
from ..interfaces import Transport
from .messages import (
    UNDEFINED,
    MessageType,
    ObjectDescriptor,
    debugprint,
    decode_message,
    encode_message,
    message_type,
)
from .pending_calls import PendingCallTable
from .qobject import QObject
from .registry import ProxyRegistry

logger = logging.getLogger(__name__)

InitCallback = Callable[["WebChannel"], Any]


class WebChannel:
    """Client end of a web channel to one host.

    Construction sends the Init request. Once the host replies, one
    :class:`QObject` per published object is available in :attr:`objects`
    and *init_callback* is invoked with the channel.
    """

    def __init__(
        self,
        transport: Transport,
        init_callback: InitCallback | None = None,
        *,
        config: ChannelConfig | None = None,
    ) -> None:
        if transport is None or not callable(getattr(transport, "send", None)):
            logger.error("The WebChannel expects a transport object with a send function.")
            raise TransportError("The WebChannel expects a transport object with a send function.")

        self.config = resolve_config(config)
        self._debug = self.config["debug_messages"]
        self.objects = ProxyRegistry()
        self.pending = PendingCallTable(self.config["call_id_range"])
        self._background_tasks: set[asyncio.Future[Any]] = set()
        try:
            self.default_loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self.default_loop = None

        self.transport = transport
        self.transport.onmessage = self.handle_message

        self._init(init_callback)

    # -- handshake ---------------------------------------------------------

    def _init(self, init_callback: InitCallback | None) -> None:
        def on_init(data: Any) -> None:
            if not isinstance(data, Mapping):
                logger.error("Init response carried no object descriptors: %r", data)
                return

            published: list[QObject] = []
            for object_name, object_data in data.items():
                try:
                    published.append(QObject(object_name, object_data, self))
                except Exception:
                    logger.exception("Cannot publish object %s from malformed data: %r", object_name, object_data)

            for qobject in published:
                try:
                    qobject._unwrap_properties()
                except Exception:
                    logger.exception("Cannot unwrap properties of published object %s", qobject.object_id)
                    qobject._discard()

            if init_callback:
                try:
                    init_callback(self)
                except Exception:
                    logger.exception("WebChannel init callback failed")

            self.exec({"type": MessageType.IDLE})

        self.exec({"type": MessageType.INIT}, on_init)

    # -- outbound ----------------------------------------------------------

    def exec(self, data: dict[str, Any], callback: Callable[[Any], None] | None = None) -> int | None:
        """Send *data*; with *callback*, route the host's Response to it.

        Returns the correlation id assigned to the request, or None for
        fire-and-forget messages and rejected requests.
        """
        if callback is None:
            self.send(data)
            return None

        if "id" in data:
            logger.error("Cannot exec message with property id: %s", encode_message(data))
            return None

        call_id = self.pending.add(callback)
        data["id"] = call_id
        try:
            self.send(data)
        except Exception:
            self.pending.pop(call_id)
            raise
        return call_id

    def send(self, data: Any) -> None:
        payload = encode_message(data, compact=self.config["compact_json"])
        debugprint(self._debug, "WebChannel send:", payload)
        self.transport.send(payload)

    def debug(self, message: Any) -> None:
        """Forward *message* to the host's debug output."""
        self.exec({"type": MessageType.DEBUG, "data": message})

    # -- inbound -----------------------------------------------------------

    def handle_message(self, message: Any) -> None:
        """Process one inbound message.

        *message* is a :class:`~pywebchannel.interfaces.MessageEvent` or any
        object with a ``data`` attribute, or the raw payload itself. Faulty
        messages are logged and dropped; nothing raised here reaches the transport.
        """
        raw = getattr(message, "data", message)
        debugprint(self._debug, "WebChannel recv:", raw)
        try:
            data = decode_message(raw)
            kind = message_type(data)
        except ProtocolError as exc:
            logger.error("Invalid message received: %r (%s)", raw, exc)
            return

        try:
            if kind is MessageType.SIGNAL:
                self._handle_signal(data)
            elif kind is MessageType.RESPONSE:
                self._handle_response(data)
            elif kind is MessageType.PROPERTY_UPDATE:
                self._handle_property_update(data)
            elif kind is MessageType.DEBUG:
                logger.debug("Host debug message: %r", data.get("data"))
            else:
                logger.error("Invalid message received: %r", raw)
        except Exception:
            logger.exception("WebChannel failed to handle message: %r", raw)

    def _handle_signal(self, message: dict[str, Any]) -> None:
        qobject = self.objects.lookup(message.get("object"))
        if qobject is None:
            logger.warning("Unhandled signal: %s::%s", message.get("object"), message.get("signal"))
            return
        qobject._signal_emitted(message.get("signal"), message.get("args", []))

    def _handle_response(self, message: dict[str, Any]) -> None:
        pending_call = self.pending.pop(message.get("id"))
        if pending_call is None:
            logger.error("Callback not found for response id: %s", message.get("id"))
            return
        try:
            pending_call["completion"](message.get("data", UNDEFINED))
        except Exception:
            logger.exception("Completion for response id %s failed", message.get("id"))

    def _handle_property_update(self, message: dict[str, Any]) -> None:
        entries = message.get("data")
        if not isinstance(entries, list):
            logger.error("Property update without a data list: %r", message)
            entries = []

        for entry in entries:
            if not isinstance(entry, Mapping):
                logger.error("Malformed property update entry: %r", entry)
                continue
            qobject = self.objects.lookup(entry.get("object"))
            if qobject is None:
                logger.warning("Unhandled property update: %s", entry.get("object"))
                continue

            signals = entry.get("signals") or {}
            properties = entry.get("properties") or {}
            if not isinstance(signals, Mapping) or not isinstance(properties, Mapping):
                logger.error("Malformed property update entry: %r", entry)
                continue
            try:
                qobject._property_update(signals, properties)
            except Exception:
                logger.exception("Property update for object %s failed", entry.get("object"))

        self.exec({"type": MessageType.IDLE})

    # -- event loop --------------------------------------------------------

    def update_event_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Set the loop that method futures are created on when none is running."""
        self.default_loop = loop if loop is not None else asyncio.get_running_loop()
        logger.debug("WebChannel: Updated default_loop to %s", self.default_loop)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            pass

        if self.default_loop is not None and not self.default_loop.is_closed():
            return self.default_loop

        raise RuntimeError(
            "WebChannel: No valid event loop available. "
            "Call remote methods from a coroutine or call update_event_loop() first."
        )

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        try:
            task = asyncio.ensure_future(awaitable, loop=self._get_loop())
        except RuntimeError:
            logger.error("Cannot schedule coroutine signal callback: no event loop")
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(_log_task_failure)


def _log_task_failure(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Coroutine signal callback failed", exc_info=task.exception())


def connect(
    transport: Transport,
    on_ready: InitCallback | None = None,
    *,
    config: ChannelConfig | None = None,
) -> WebChannel:
    """Open a channel over *transport*; *on_ready* runs once the host's objects are available."""
    return WebChannel(transport, on_ready, config=config)


async def connect_async(transport: Transport, *, config: ChannelConfig | None = None) -> WebChannel:
    """Open a channel over *transport* and wait for the Init handshake to finish."""
    loop = asyncio.get_running_loop()
    ready: asyncio.Future[WebChannel] = loop.create_future()

    def on_ready(channel: WebChannel) -> None:
        if not ready.done():
            ready.set_result(channel)

    WebChannel(transport, on_ready, config=config)
    return await ready
