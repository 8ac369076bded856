"""Async iteration over the events of one job."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from .bus import EventBus, Unsubscribe
from .models import BaseEvent, is_terminal


class EventStream:
    """Async context manager yielding a job's events until a terminal one arrives.

    Events are handed to the consuming loop through ``call_soon_threadsafe`` so
    publishers may live on any thread.
    """

    def __init__(self, bus: EventBus, job_id: str) -> None:
        self.bus = bus
        self.job_id = job_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._finished = False

    async def __aenter__(self) -> "EventStream":
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.bus.subscribe(self.job_id, self._on_event)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_event(self, event: BaseEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def __aiter__(self) -> AsyncIterator[BaseEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BaseEvent]:
        if self._unsubscribe is None and not self._finished:
            raise RuntimeError("EventStream must be entered with 'async with' before iterating")
        while not self._finished:
            event = await self._queue.get()
            if is_terminal(event):
                self._finished = True
            yield event
        self.close()
