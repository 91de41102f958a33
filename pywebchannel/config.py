from __future__ import annotations

import logging
import os
from typing import TypedDict

logger = logging.getLogger(__name__)

# Largest integer a JavaScript host can round-trip through JSON without loss.
JSON_SAFE_INTEGER_MAX = 2**53 - 1

DEFAULT_CALL_ID_RANGE: tuple[int, int] = (-JSON_SAFE_INTEGER_MAX, JSON_SAFE_INTEGER_MAX)


class ChannelConfig(TypedDict, total=False):
    """Configuration for a :class:`~pywebchannel.WebChannel`.

    Every key is optional; missing keys fall back to :func:`resolve_config` defaults.
    """

    debug_messages: bool
    """Log every inbound and outbound message at DEBUG level.

    Defaults to True when the ``PYWEBCHANNEL_DEBUG_RPC`` environment variable is set.
    """

    call_id_range: tuple[int, int]
    """Inclusive ``(minimum, maximum)`` range of correlation ids.

    Ids count up from 0 and wrap from the maximum back to the minimum. Narrow it
    when the host stores ids in a fixed-width integer.
    """

    compact_json: bool
    """Serialize outbound messages without insignificant whitespace."""


def resolve_config(config: ChannelConfig | None = None) -> ChannelConfig:
    """Return a fully populated copy of *config*."""
    resolved = ChannelConfig(
        debug_messages=bool(os.environ.get("PYWEBCHANNEL_DEBUG_RPC")),
        call_id_range=DEFAULT_CALL_ID_RANGE,
        compact_json=True,
    )
    if config:
        resolved.update(config)

    low, high = resolved["call_id_range"]
    if not low <= 0 <= high:
        raise ValueError(f"call_id_range must contain 0, got {resolved['call_id_range']!r}")
    logger.debug("Resolved channel config: %s", resolved)
    return resolved
