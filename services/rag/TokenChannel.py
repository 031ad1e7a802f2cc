"""Bounded single-producer / single-consumer channel carrying answer tokens."""

import asyncio
from typing import AsyncIterator

from shared.exceptions import RAGError

_END = object()


class ChannelClosed(RAGError):
    """Raised to the producer once the consumer has closed the channel."""


class TokenChannel:
    """Tokens travel in strict send order through one bounded asyncio.Queue.

    The producer calls `send()` per token and `finish()` at the end. A full
    queue suspends the producer until the consumer catches up. The consumer
    iterates with `async for` and may call `close()` at any time; from then
    on every `send()` raises ChannelClosed so the producer can abort.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._finished = False
        self._ended = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ended(self) -> bool:
        """True once the consumer has read the end-of-stream marker."""
        return self._ended

    ##########################################
    ############### PRODUCER #################
    ##########################################

    async def send(self, token: str) -> None:
        if self._closed:
            raise ChannelClosed("Token channel closed by the consumer.")
        await self._queue.put(token)
        if self._closed:
            # the consumer went away while we were waiting for room
            raise ChannelClosed("Token channel closed by the consumer.")

    async def finish(self) -> None:
        """Signal end-of-stream. Safe to call more than once and after close()."""
        if self._closed or self._finished:
            return
        self._finished = True
        await self._queue.put(_END)

    ##########################################
    ############### CONSUMER #################
    ##########################################

    def close(self) -> None:
        """Stop consuming; pending tokens are dropped and a waiting producer is released."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[str]:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._ended = True
            self._closed = True
            raise StopAsyncIteration
        return item
