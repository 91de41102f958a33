"""
Object Proxy.

This module contains:
- QObject (local stand-in for one host object)
- Signal (connect/disconnect handle for one host signal)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import RemoteCallError, StaleObjectError
from .messages import (
    DESTROYED_SIGNAL_NAMES,
    UNDEFINED,
    MessageType,
    ObjectDescriptor,
    index_key,
)

if TYPE_CHECKING:
    from .channel import WebChannel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Signal
# ---------------------------------------------------------------------------

class Signal:
    """Subscription handle for one signal of a remote object.

    The host is asked to forward the signal when the first callback connects
    and told to stop when the last one disconnects. Property notify signals and
    ``destroyed`` are always forwarded, so they never generate wire traffic.
    """

    def __init__(self, owner: QObject, name: str, index: Any, is_property_notify: bool) -> None:
        self._owner = owner
        self.name = name
        self.index = index
        self.is_property_notify = is_property_notify

    @property
    def is_implicit(self) -> bool:
        """True if the host forwards this signal without an explicit subscription."""
        return self.is_property_notify or self.name in DESTROYED_SIGNAL_NAMES

    @property
    def connections(self) -> list[Callable[..., Any]]:
        return list(self._owner._object_signals.get(self.index, ()))

    def connect(self, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            logger.error("Bad callback given to connect to signal %s: %r", self.name, callback)
            return

        owner = self._owner
        if not owner._alive:
            raise StaleObjectError(owner._id, self.name)

        connections = owner._object_signals.setdefault(self.index, [])
        connections.append(callback)

        if self.is_implicit or len(connections) != 1:
            return
        owner._channel.exec(
            {
                "type": MessageType.CONNECT_TO_SIGNAL,
                "object": owner._id,
                "signal": self.index,
            }
        )

    def disconnect(self, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            logger.error("Bad callback given to disconnect from signal %s: %r", self.name, callback)
            return

        owner = self._owner
        connections = owner._object_signals.get(self.index, [])
        try:
            connections.remove(callback)
        except ValueError:
            logger.error(
                "Cannot find connection of signal %s to %s",
                self.name, getattr(callback, "__name__", repr(callback)),
            )
            return

        if self.is_implicit or connections or not owner._alive:
            return
        owner._channel.exec(
            {
                "type": MessageType.DISCONNECT_FROM_SIGNAL,
                "object": owner._id,
                "signal": self.index,
            }
        )

    def __repr__(self) -> str:
        return f"<Signal {self._owner._id}.{self.name} index={self.index!r}>"


# ---------------------------------------------------------------------------
# QObject
# ---------------------------------------------------------------------------

class QObject:
    """Local proxy for an object owned by the host.

    The member surface is built from the host's descriptor. Members are reached
    either reflectively (:meth:`call`, :meth:`get`, :meth:`set`, :meth:`signal`)
    or as attributes::

        await obj.call("greet", "world")   # same as: await obj.greet("world")
        obj.get("title")                   # same as: obj.title
        obj.set("title", "hello")          # same as: obj.title = "hello"
        obj.signal("clicked").connect(cb)  # same as: obj.clicked.connect(cb)

    Remote members whose names clash with this class's own attributes are only
    reachable through the reflective accessors.
    """

    def __init__(self, object_id: str, data: ObjectDescriptor, channel: WebChannel) -> None:
        self._id = object_id
        self._channel = channel
        self._alive = True
        self._methods: dict[str, Any] = {}
        self._property_indices: dict[str, Any] = {}
        self._property_cache: dict[Any, Any] = {}
        self._signals: dict[str, Signal] = {}
        self._object_signals: dict[Any, list[Callable[..., Any]]] = {}
        self._enums: dict[str, Any] = {}

        # Registration must precede unwrapping so cyclic references resolve to this instance.
        channel.objects.register(object_id, self)

        try:
            for method_data in data.get("methods") or []:
                self._methods[method_data[0]] = method_data[1]
            for property_info in data.get("properties") or []:
                self._bind_property(property_info)
            for signal_data in data.get("signals") or []:
                self._add_signal(signal_data[0], signal_data[1], is_property_notify=False)
            self._enums.update(data.get("enums") or {})
        except Exception:
            self._discard()
            raise

    # -- construction ------------------------------------------------------

    def _bind_property(self, property_info: list[Any]) -> None:
        property_index = property_info[0]
        property_name = property_info[1]
        notify_signal_data = property_info[2] if len(property_info) > 2 else None
        self._property_cache[property_index] = property_info[3] if len(property_info) > 3 else UNDEFINED
        self._property_indices[property_name] = property_index

        if notify_signal_data:
            signal_name, signal_index = notify_signal_data[0], notify_signal_data[1]
            # Hosts abbreviate the conventional "<property>Changed" name as 1.
            if signal_name == 1:
                signal_name = f"{property_name}Changed"
            self._add_signal(signal_name, signal_index, is_property_notify=True)

    def _add_signal(self, name: str, index: Any, is_property_notify: bool) -> None:
        self._signals[name] = Signal(self, name, index, is_property_notify)

    # -- introspection -----------------------------------------------------

    @property
    def object_id(self) -> str:
        return self._id

    @property
    def is_alive(self) -> bool:
        return self._alive

    @property
    def method_names(self) -> list[str]:
        return list(self._methods)

    @property
    def property_names(self) -> list[str]:
        return list(self._property_indices)

    @property
    def signal_names(self) -> list[str]:
        return list(self._signals)

    @property
    def enums(self) -> dict[str, Any]:
        return dict(self._enums)

    def _check_alive(self, name: str) -> None:
        if not self._alive:
            raise StaleObjectError(self._id, name)

    # -- reflective accessors ---------------------------------------------

    def call(self, name: str, *args: Any) -> asyncio.Future[Any]:
        """Invoke remote method *name*; the returned future resolves with its result."""
        self._check_alive(name)
        if name not in self._methods:
            raise AttributeError(f"Remote object {self._id!r} has no method {name!r}")
        return self._invoke(name, self._methods[name], args)

    def get(self, name: str) -> Any:
        """Return the cached value of property *name*."""
        self._check_alive(name)
        if name not in self._property_indices:
            raise AttributeError(f"Remote object {self._id!r} has no property {name!r}")

        value = self._property_cache.get(self._property_indices[name], UNDEFINED)
        if value is UNDEFINED:
            logger.warning('Undefined value in property cache for property "%s" in object %s', name, self._id)
            return None
        return value

    def set(self, name: str, value: Any) -> None:
        """Write property *name*.

        The cache is updated at once; the host's authoritative value arrives
        later through a PropertyUpdate.
        """
        from .unwrap import wrap_outbound

        self._check_alive(name)
        if name not in self._property_indices:
            raise AttributeError(f"Remote object {self._id!r} has no property {name!r}")
        if value is UNDEFINED:
            logger.warning("Property setter for %s called with undefined value!", name)
            return

        property_index = self._property_indices[name]
        self._property_cache[property_index] = value
        self._channel.exec(
            {
                "type": MessageType.SET_PROPERTY,
                "object": self._id,
                "property": property_index,
                "value": wrap_outbound(value, self._channel),
            }
        )

    def signal(self, name: str) -> Signal:
        """Return the :class:`Signal` handle for *name*."""
        self._check_alive(name)
        try:
            return self._signals[name]
        except KeyError as e:
            raise AttributeError(f"Remote object {self._id!r} has no signal {name!r}") from e

    # -- attribute sugar ---------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails; private names are never remote.
        if name.startswith("_"):
            raise AttributeError(name)
        if "_alive" not in self.__dict__:
            raise AttributeError(name)
        self._check_alive(name)

        if name in self._methods:
            method_index = self._methods[name]

            def method(*args: Any) -> asyncio.Future[Any]:
                self._check_alive(name)
                return self._invoke(name, method_index, args)

            method.__name__ = name
            method.__qualname__ = f"{type(self).__name__}.{name}"
            return method
        if name in self._signals:
            return self._signals[name]
        if name in self._property_indices:
            return self.get(name)
        if name in self._enums:
            return self._enums[name]
        raise AttributeError(f"Remote object {self._id!r} has no member {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        self._check_alive(name)
        if name in self._property_indices:
            self.set(name, value)
            return
        raise AttributeError(f"Remote object {self._id!r} has no writable property {name!r}")

    def __dir__(self) -> list[str]:
        names = set(super().__dir__())
        if self._alive:
            names.update(self._methods, self._property_indices, self._signals, self._enums)
        return sorted(names)

    def __repr__(self) -> str:
        state = "alive" if self._alive else "destroyed"
        return f"<QObject id={self._id!r} {state}>"

    # -- channel-facing ----------------------------------------------------

    def _invoke(self, name: str, method_index: Any, args: tuple[Any, ...]) -> asyncio.Future[Any]:
        from .unwrap import unwrap, wrap_outbound

        channel = self._channel
        future: asyncio.Future[Any] = channel._get_loop().create_future()
        wire_args = [wrap_outbound(arg, channel) for arg in args]

        def on_response(response: Any) -> None:
            if future.done():
                return
            if response is UNDEFINED:
                future.set_exception(RemoteCallError(f"{self._id}.{name}"))
                return
            try:
                future.set_result(unwrap(response, channel))
            except Exception as exc:
                future.set_exception(exc)
                raise

        try:
            channel.exec(
                {
                    "type": MessageType.INVOKE_METHOD,
                    "object": self._id,
                    "method": method_index,
                    "args": wire_args,
                },
                on_response,
            )
        except Exception as exc:
            logger.error("Sending call %s.%s failed: %s", self._id, name, exc)
            future.set_exception(exc)
        return future

    def _unwrap_properties(self) -> None:
        from .unwrap import unwrap

        for property_index, value in list(self._property_cache.items()):
            if value is not UNDEFINED:
                self._property_cache[property_index] = unwrap(value, self._channel)

    def _signal_emitted(self, signal_index: Any, signal_args: Any) -> None:
        from .unwrap import unwrap

        self._invoke_signal_callbacks(signal_index, unwrap(signal_args, self._channel))

    def _property_update(self, signals: dict[str, Any], properties: dict[str, Any]) -> None:
        from .unwrap import unwrap

        declared = set(self._property_indices.values())
        for property_index, value in properties.items():
            property_index = index_key(property_index)
            if property_index not in declared:
                logger.warning("Dropping update of undeclared property %s in object %s", property_index, self._id)
                continue
            self._property_cache[property_index] = unwrap(value, self._channel)

        for signal_index, signal_args in signals.items():
            self._invoke_signal_callbacks(index_key(signal_index), signal_args)

    def _invoke_signal_callbacks(self, signal_index: Any, signal_args: Any) -> None:
        connections = self._object_signals.get(signal_index)
        if not connections:
            return

        if signal_args is None or signal_args is UNDEFINED:
            args: tuple[Any, ...] = ()
        elif isinstance(signal_args, (list, tuple)):
            args = tuple(signal_args)
        else:
            args = (signal_args,)

        # Copy: callbacks may connect or disconnect while the signal is delivered.
        for callback in list(connections):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    self._channel._schedule(result)
            except Exception:
                logger.exception("Callback for signal %s of object %s failed", signal_index, self._id)

    def _discard(self) -> None:
        """Unregister and invalidate a proxy whose construction failed."""
        self._channel.objects.remove(self._id, expected=self)
        self._invalidate()

    def _invalidate(self) -> None:
        """Strip the member surface so stale references fail loudly."""
        self._alive = False
        self._methods.clear()
        self._property_indices.clear()
        self._property_cache.clear()
        self._signals.clear()
        self._object_signals.clear()
        self._enums.clear()
