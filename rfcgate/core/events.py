"""Notification interfaces: per-operation progress and session-scoped events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol, cast

from rfcgate.core.model import Progress

LOGGER = logging.getLogger(__name__)

ProgressSink = Callable[[Progress], None]


class EventSink(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Publish an event to every connected client. Must not block."""


class LoggingEventSink:
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        LOGGER.info("Event %s: %s", event, payload)


class ProgressStream:
    """Ordered progress updates of one operation, consumed until the operation ends.

    Pass the stream itself as the operation's progress sink and iterate it
    with ``async for``; iteration stops after ``close()``.
    """

    _END = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()

    def __call__(self, progress: Progress) -> None:
        self._queue.put_nowait(progress)

    def close(self) -> None:
        self._queue.put_nowait(self._END)

    async def __aiter__(self) -> AsyncIterator[Progress]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                return
            yield cast(Progress, item)
