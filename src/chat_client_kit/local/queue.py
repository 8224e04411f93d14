"""Process-wide serialization of local inference."""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from chat_client_kit.metrics import MetricsExporter
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


class InferenceQueue:
    """Capacity-one counting resource guarding the local engine.

    ``acquire`` hands out a token once the slot is free. ``release`` is
    idempotent: unknown or already released tokens are ignored, so every
    exit path of a request may release without coordination.
    """

    def __init__(self, capacity: int = 1) -> None:
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._tokens: set[str] = set()

    @property
    def holders(self) -> int:
        return len(self._tokens)

    async def acquire(self) -> str:
        """Wait for a free slot.

        Returns:
            Token to pass to :meth:`release`
        """
        started = time.perf_counter()
        await self._semaphore.acquire()
        token = uuid.uuid4().hex
        self._tokens.add(token)
        waited = time.perf_counter() - started
        MetricsExporter.record_inference_wait(waited)
        logger.debug("local.queue.acquire", token=token, waited=round(waited, 4))
        return token

    def release(self, token: str) -> None:
        if token not in self._tokens:
            return
        self._tokens.discard(token)
        self._semaphore.release()
        logger.debug("local.queue.release", token=token)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[str]:
        """Hold the slot for the duration of the block."""
        token = await self.acquire()
        try:
            yield token
        finally:
            self.release(token)


_queue: InferenceQueue | None = None


def get_inference_queue() -> InferenceQueue:
    """Get the process-wide inference queue."""
    global _queue
    if _queue is None:
        _queue = InferenceQueue()
    return _queue
