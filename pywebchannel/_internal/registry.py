"""Channel-scoped registry of live object proxies."""

from __future__ import annotations

import logging
from collections.abc import Iterator, MutableMapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .qobject import QObject

logger = logging.getLogger(__name__)


class ProxyRegistry(MutableMapping[str, "QObject"]):
    """Mapping of object id to the one live proxy standing in for it.

    Each channel owns its own registry, so several channels can run side by
    side without sharing proxies.
    """

    def __init__(self) -> None:
        self._objects: dict[str, QObject] = {}

    def __getitem__(self, object_id: str) -> QObject:
        return self._objects[object_id]

    def __setitem__(self, object_id: str, proxy: QObject) -> None:
        self.register(object_id, proxy)

    def __delitem__(self, object_id: str) -> None:
        del self._objects[object_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._objects)

    def __len__(self) -> int:
        return len(self._objects)

    def __repr__(self) -> str:
        return f"ProxyRegistry({sorted(self._objects)!r})"

    def register(self, object_id: str, proxy: QObject) -> None:
        """Register *proxy* under *object_id*, replacing any previous entry."""
        previous = self._objects.get(object_id)
        if previous is not None and previous is not proxy:
            logger.warning("Replacing registered proxy for object %s", object_id)
        self._objects[object_id] = proxy

    def lookup(self, object_id: str) -> QObject | None:
        """Return the proxy registered for *object_id*, or None."""
        return self._objects.get(object_id)

    def remove(self, object_id: str, expected: QObject | None = None) -> bool:
        """Drop *object_id*. With *expected*, only drop it while it maps to that proxy.

        Returns True if an entry was removed.
        """
        current = self._objects.get(object_id)
        if current is None:
            return False
        if expected is not None and current is not expected:
            return False
        del self._objects[object_id]
        logger.debug("Removed proxy for object %s", object_id)
        return True

    def clear(self) -> None:
        """Remove all registered proxies (useful for tests)."""
        self._objects.clear()
