"""Correlation of outbound requests with their Response messages."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypedDict

from ..config import DEFAULT_CALL_ID_RANGE

logger = logging.getLogger(__name__)


class PendingCall(TypedDict):
    id: int
    completion: Callable[[Any], None]


class PendingCallTable:
    """Sparse mapping of outstanding correlation ids to completion callbacks.

    Ids count up from 0. Past the top of ``id_range`` they wrap to its bottom;
    an id whose original call is still outstanding is skipped rather than reused.
    """

    def __init__(self, id_range: tuple[int, int] = DEFAULT_CALL_ID_RANGE) -> None:
        self._min_id, self._max_id = id_range
        self._next_id = 0
        self._pending: dict[int, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._pending

    def _advance(self) -> int:
        call_id = self._next_id
        self._next_id = self._min_id if call_id >= self._max_id else call_id + 1
        return call_id

    def add(self, completion: Callable[[Any], None]) -> int:
        """Register *completion* under a fresh id and return the id."""
        span = self._max_id - self._min_id + 1
        if len(self._pending) >= span:
            raise RuntimeError(f"All {span} correlation ids are outstanding")

        call_id = self._advance()
        while call_id in self._pending:
            logger.warning("Correlation id %s is still outstanding after wraparound; skipping it", call_id)
            call_id = self._advance()

        self._pending[call_id] = PendingCall(id=call_id, completion=completion)
        return call_id

    def pop(self, call_id: Any) -> PendingCall | None:
        """Remove and return the pending call for *call_id*, or None if unknown."""
        return self._pending.pop(call_id, None)

    def clear(self) -> None:
        self._pending.clear()
