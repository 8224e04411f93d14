"""Chat service contract shared by every backend."""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol, runtime_checkable

from chat_client_kit.core.stream import ChatStream
from chat_client_kit.metrics import MetricsExporter
from chat_client_kit.models import ChatCompletionChunk, ChatRequest, ChatResponseBody, StreamObject


@runtime_checkable
class ChatService(Protocol):
    """A backend able to answer chat completion requests."""

    name: str

    async def chat_completion_request(self, request: ChatRequest) -> ChatResponseBody:
        """Answer a request with a single response body."""
        ...

    async def streaming_chat_completion_request(self, request: ChatRequest) -> ChatStream:
        """Answer a request with a stream of chunks and tool call requests."""
        ...


@asynccontextmanager
async def track_request(backend: str, mode: str) -> AsyncIterator[None]:
    """Record duration and outcome of a request in the metrics registry."""
    started = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except asyncio.CancelledError:
        outcome = "cancelled"
        raise
    except Exception:
        outcome = "error"
        raise
    finally:
        MetricsExporter.record_request(backend, mode, outcome, time.perf_counter() - started)


def count_stream_object(backend: str, item: StreamObject) -> StreamObject:
    kind = "chunk" if isinstance(item, ChatCompletionChunk) else "tool_call"
    MetricsExporter.record_stream_object(backend, kind)
    return item
