"""Turns a remote server-sent event stream into unified stream objects."""

import json
from collections.abc import AsyncIterable, AsyncIterator

from pydantic import ValidationError

from chat_client_kit.core.errors import ChunkDecodeError, extract_error
from chat_client_kit.core.reasoning import ReasoningContentParser, ReasoningStreamSplitter
from chat_client_kit.core.sse import ServerSentEvent
from chat_client_kit.core.tool_calls import ToolCallCollector
from chat_client_kit.metrics import MetricsExporter
from chat_client_kit.models import ChatCompletionChunk, Delta, StreamObject
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

DONE_MARKER = "[done]"


def decode_chunk(data: str) -> ChatCompletionChunk:
    """Decode one ``data:`` payload into a chunk.

    Raises:
        ChunkDecodeError: If the payload is not a JSON object shaped like a chunk
    """
    try:
        payload = json.loads(data)
    except ValueError as e:
        raise ChunkDecodeError(f"Invalid JSON in stream chunk: {e}") from e
    if not isinstance(payload, dict):
        raise ChunkDecodeError("Stream chunk is not a JSON object")
    try:
        return ChatCompletionChunk.model_validate(payload)
    except ValidationError as e:
        raise ChunkDecodeError(f"Unexpected stream chunk shape: {e}") from e


def _has_payload(chunk: ChatCompletionChunk) -> bool:
    if chunk.usage:
        return True
    for choice in chunk.choices:
        if choice.finish_reason is not None:
            return True
        if choice.delta.model_dump(exclude_none=True):
            return True
    return False


class RemoteChatStreamProcessor:
    """Decodes chunks, separates reasoning and assembles tool calls.

    Chunks are yielded in arrival order. Reasoning split out of inline
    markup follows the chunk it was found in, text still held back by the
    splitter is flushed at end of stream, and assembled tool calls are
    yielded last, after every chunk.
    """

    def __init__(self, reasoning_parser: ReasoningContentParser | None = None) -> None:
        self.reasoning_parser = reasoning_parser or ReasoningContentParser()

    async def process(
        self, events: AsyncIterable[ServerSentEvent]
    ) -> AsyncIterator[StreamObject]:
        """Process a stream of events.

        Args:
            events: Server-sent events from the remote endpoint

        Yields:
            Chunks followed by assembled tool call requests

        Raises:
            RemoteServerError: If the stream carries an error payload
        """
        splitter = self.reasoning_parser.stream_splitter()
        collector = ToolCallCollector()
        split_inline_reasoning = True
        chunk_count = 0

        async for event in events:
            data = event.data.strip()
            if not data:
                continue
            if data.lower() == DONE_MARKER:
                logger.debug("stream.done_marker")
                continue

            error = extract_error(data)
            if error is not None:
                logger.error("stream.server_error", status=error.status, error=error.message)
                raise error

            try:
                chunk = decode_chunk(data)
            except ChunkDecodeError as e:
                logger.warning("stream.chunk_dropped", error=str(e), data=data[:200])
                MetricsExporter.record_dropped_chunk()
                continue
            chunk_count += 1

            for choice in chunk.choices:
                for delta in choice.delta.tool_calls or []:
                    collector.submit(delta)

            if split_inline_reasoning and any(
                choice.delta.reasoning or choice.delta.reasoning_content
                for choice in chunk.choices
            ):
                # Native reasoning wins; inline markup is left alone from here on.
                split_inline_reasoning = False
                for delta in splitter.flush():
                    yield ChatCompletionChunk.of(delta, id=chunk.id, model=chunk.model)

            if not split_inline_reasoning:
                yield chunk
                continue

            for item in self._split_reasoning(chunk, splitter):
                yield item

        for delta in splitter.flush():
            yield ChatCompletionChunk.of(delta)

        tool_calls = collector.finalize()
        for request in tool_calls:
            yield request

        MetricsExporter.record_tool_calls("remote", len(tool_calls))
        logger.info("stream.completed", chunks=chunk_count, tool_calls=len(tool_calls))

    def _split_reasoning(
        self, chunk: ChatCompletionChunk, splitter: ReasoningStreamSplitter
    ) -> list[ChatCompletionChunk]:
        segments = [choice.delta.content for choice in chunk.choices if choice.delta.content]
        if not segments:
            return [chunk]

        deltas = splitter.feed("".join(segments))
        stripped = chunk.model_copy(deep=True)
        for choice in stripped.choices:
            choice.delta.content = None

        if not deltas:
            return [stripped] if _has_payload(stripped) else []

        first, *rest = deltas
        target = stripped.choices[0].delta
        target.content = first.content
        target.reasoning_content = first.reasoning_content
        return [stripped] + [
            ChatCompletionChunk.of(delta, id=chunk.id, model=chunk.model) for delta in rest
        ]


async def collect_message(objects: AsyncIterable[StreamObject]) -> tuple[Delta, list]:
    """Fold a stream into one delta of concatenated text plus its tool calls."""
    merged = Delta()
    tool_calls = []
    async for item in objects:
        if not isinstance(item, ChatCompletionChunk):
            tool_calls.append(item)
            continue
        for choice in item.choices:
            for field in ("content", "reasoning", "reasoning_content", "refusal"):
                value = getattr(choice.delta, field)
                if value:
                    setattr(merged, field, (getattr(merged, field) or "") + value)
    return merged, tool_calls
