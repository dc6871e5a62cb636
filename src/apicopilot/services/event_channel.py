from __future__ import annotations

import asyncio
from typing import AsyncIterator, Union

from apicopilot.models.event_model import StreamEvent


class ChannelClosed(Exception):
    """Raised to the producer when the consumer has gone away."""


_FINISHED = object()


class EventChannel:
    """Single-producer / single-consumer queue between a turn and its transport.

    The producer `send`s events and calls `finish` once. The consumer iterates
    and calls `close` if it stops early (client disconnect); later sends raise
    ChannelClosed so the producer can stop.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Union[StreamEvent, object]] = asyncio.Queue()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosed()
        if self._finished:
            raise RuntimeError("send() after finish()")
        await self._queue.put(event)

    def finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(_FINISHED)

    def close(self) -> None:
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while not self._closed:
            item = await self._queue.get()
            if item is _FINISHED:
                return
            yield item
