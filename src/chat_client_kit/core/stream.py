"""Cancelable stream of chat objects fed by a background producer."""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from typing import Any

from chat_client_kit.models import StreamObject
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

Emit = Callable[[StreamObject], Awaitable[None]]
Producer = Callable[[Emit], Awaitable[None]]
Teardown = Callable[[], Any]

_ITEM = "item"
_END = "end"
_ERROR = "error"


class ChatStream(AsyncIterator[StreamObject]):
    """Async iterator over stream objects produced by a background task.

    The producer starts on the first pull and writes into a bounded buffer,
    so a slow consumer applies backpressure. A ``buffer_size`` of None lets
    the producer run to completion regardless of the consumer. Producer failures surface to
    the consumer after the items queued before them. Cancellation ends the
    stream without an error. Teardown callbacks run exactly once, whether
    the stream completes, fails or is closed early.

    Example:
        async with client.stream(request) as stream:
            async for item in stream:
                ...
    """

    def __init__(
        self,
        producer: Producer,
        *,
        on_terminate: Iterable[Teardown] = (),
        buffer_size: int | None = 16,
        name: str = "chat-stream",
    ) -> None:
        self.name = name
        self._producer = producer
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._space = asyncio.Semaphore(buffer_size) if buffer_size else None
        self._teardown: list[Teardown] | None = list(on_terminate)
        self._task: asyncio.Task | None = None
        self._closed = False
        self._finished = False

    @classmethod
    def from_iterable(cls, source: AsyncIterable[StreamObject], **kwargs: Any) -> "ChatStream":
        """Wrap an async iterable, closing it when the stream is cancelled."""

        async def producer(emit: Emit) -> None:
            iterator = aiter(source)
            try:
                async for item in iterator:
                    await emit(item)
            finally:
                aclose = getattr(iterator, "aclose", None)
                if aclose is not None:
                    await aclose()

        return cls(producer, **kwargs)

    @property
    def closed(self) -> bool:
        return self._closed or self._finished

    def add_teardown(self, callback: Teardown) -> None:
        """Register a callback to run when the stream terminates."""
        if self._teardown is None:
            callback()
            return
        self._teardown.append(callback)

    async def __anext__(self) -> StreamObject:
        if self._finished:
            raise StopAsyncIteration
        self._start()

        try:
            kind, payload = await self._queue.get()
        except asyncio.CancelledError:
            # The consumer is gone; the producer must not wait on it.
            self._abandon()
            raise
        if kind == _ITEM:
            if self._space is not None:
                self._space.release()
            return payload

        self._finished = True
        if self._task is not None:
            await asyncio.wait([self._task])
        if kind == _ERROR:
            raise payload
        raise StopAsyncIteration

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel the producer and run teardown callbacks."""
        if self._closed:
            return
        self._closed = True
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait([self._task])
        self._run_teardown()

    cancel = aclose

    async def collect(self) -> list[StreamObject]:
        """Drain the stream into a list."""
        items: list[StreamObject] = []
        async with self:
            async for item in self:
                items.append(item)
        return items

    def _start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def _abandon(self) -> None:
        """Stop the stream without waiting; teardown follows the producer's exit."""
        self._closed = True
        self._finished = True
        if self._task is None:
            self._run_teardown()
        elif not self._task.done():
            self._task.cancel()

    def __del__(self) -> None:
        task = getattr(self, "_task", None)
        if task is None:
            if getattr(self, "_teardown", None):
                self._run_teardown()
        elif not task.done() and not task.get_loop().is_closed():
            task.cancel()

    async def _emit(self, item: StreamObject) -> None:
        if self._space is not None:
            await self._space.acquire()
        self._queue.put_nowait((_ITEM, item))

    async def _run(self) -> None:
        outcome: tuple[str, Any] = (_END, None)
        try:
            await self._producer(self._emit)
        except asyncio.CancelledError:
            logger.debug("stream.cancelled", name=self.name)
            raise
        except Exception as e:
            logger.debug("stream.failed", name=self.name, error=str(e))
            outcome = (_ERROR, e)
        finally:
            self._queue.put_nowait(outcome)
            self._run_teardown()

    def _run_teardown(self) -> None:
        callbacks, self._teardown = self._teardown, None
        for callback in callbacks or []:
            try:
                callback()
            except Exception as e:
                logger.error("stream.teardown_failed", name=self.name, error=str(e))
