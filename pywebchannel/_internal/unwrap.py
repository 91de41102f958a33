"""Conversion between wire values and proxy-linked value graphs."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .messages import DESTROYED_SIGNAL_NAMES, is_object_reference
from .qobject import QObject

if TYPE_CHECKING:
    from .channel import WebChannel

logger = logging.getLogger(__name__)


def unwrap(value: Any, channel: WebChannel) -> Any:
    """Recursively replace object references in *value* with live proxies.

    A reference to an id the channel already knows resolves to the existing
    proxy. An unknown id needs the descriptor embedded under ``data``; without
    it the reference cannot be resolved and None is returned in its place.
    """
    if isinstance(value, (list, tuple)):
        return [unwrap(item, channel) for item in value]

    if not isinstance(value, Mapping):
        # Scalars and proxies already resolved pass through.
        return value

    if not is_object_reference(value):
        return {key: unwrap(item, channel) for key, item in value.items()}

    object_id = value["id"]
    existing = channel.objects.lookup(object_id)
    if existing is not None:
        return existing

    descriptor = value.get("data")
    if not descriptor:
        logger.error("Cannot unwrap unknown QObject %s without data.", object_id)
        return None

    try:
        proxy = QObject(object_id, descriptor, channel)
    except Exception:
        logger.exception("Cannot unwrap QObject %s from malformed data: %r", object_id, descriptor)
        return None

    try:
        _connect_destroyed(proxy, channel)
        proxy._unwrap_properties()
    except Exception:
        logger.exception("Cannot unwrap properties of QObject %s", object_id)
        proxy._discard()
        return None
    return proxy


def _connect_destroyed(proxy: QObject, channel: WebChannel) -> None:
    object_id = proxy.object_id

    def on_destroyed(*_args: Any) -> None:
        if channel.objects.remove(object_id, expected=proxy):
            logger.debug("Remote object %s destroyed", object_id)
            proxy._invalidate()

    for name in proxy.signal_names:
        if name in DESTROYED_SIGNAL_NAMES:
            proxy.signal(name).connect(on_destroyed)
            return
    logger.debug("Object %s declares no destroyed signal; it will stay registered", object_id)


def wrap_outbound(value: Any, channel: WebChannel) -> Any:
    """Degrade a top-level call argument or property value for the wire.

    Proxies become ``{"id": ...}`` stubs and callables are reduced to their
    name. Everything else is sent unchanged.
    """
    if isinstance(value, QObject):
        if channel.objects.lookup(value.object_id) is value:
            return {"id": value.object_id}
        logger.error("Cannot send stale QObject %s; sending an empty object instead", value.object_id)
        return {}
    if callable(value):
        return getattr(value, "__name__", repr(value))
    return value
