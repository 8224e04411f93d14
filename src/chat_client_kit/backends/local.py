"""Chat client running MLX models from a local directory."""

import time
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from contextlib import aclosing
from pathlib import Path
from typing import Any

from chat_client_kit.backends.base import count_stream_object, track_request
from chat_client_kit.config import Settings
from chat_client_kit.core.canonical import normalize
from chat_client_kit.core.errors import InvalidConfigurationError, InvalidImageError
from chat_client_kit.core.reasoning import ReasoningContentParser, partial_marker_length
from chat_client_kit.core.stream import ChatStream, Emit
from chat_client_kit.core.stream_processor import collect_message
from chat_client_kit.local.coordinator import ModelCoordinator, get_model_coordinator
from chat_client_kit.local.engine import ModelConfiguration, ModelKind, iterate_in_thread
from chat_client_kit.local.images import MAX_EDGE, MIN_EDGE, load_image, placeholder_image
from chat_client_kit.local.queue import InferenceQueue, get_inference_queue
from chat_client_kit.models import (
    AssistantMessage,
    ChatChoice,
    ChatCompletionChunk,
    ChatRequest,
    ChatResponseBody,
    ChoiceMessage,
    Delta,
    DeveloperMessage,
    ImagePart,
    SystemMessage,
    TextPart,
    UserMessage,
)
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_COMPLETION_TOKENS = 4096
DECODER_ERROR_SUFFIX = "\ufffd"
TERMINATING_TOKENS = (
    "<|end|>",
    "<|im_end|>",
    "<|eot_id|>",
    "<|endoftext|>",
    "<end_of_turn>",
    "</s>",
)


def trim_terminators(text: str, terminators: Sequence[str]) -> str:
    """Remove terminator tokens repeated at the end of ``text``."""
    changed = True
    while changed:
        changed = False
        for terminator in terminators:
            while terminator and text.endswith(terminator):
                text = text[: -len(terminator)]
                changed = True
    return text


def _joined(content: str | list[str]) -> str:
    if isinstance(content, str):
        return content
    return "\n".join(content)


class LocalChatClient:
    """Client generating completions with a locally stored MLX model.

    Every generation holds the process-wide inference slot. The slot is
    released by the stream's teardown, whichever way the stream ends.
    """

    name = "local"

    def __init__(
        self,
        model_directory: str | Path,
        preferred_kind: ModelKind = ModelKind.LLM,
        coordinator: ModelCoordinator | None = None,
        queue: InferenceQueue | None = None,
        reasoning_parser: ReasoningContentParser | None = None,
        terminating_tokens: Sequence[str] = TERMINATING_TOKENS,
        max_completion_tokens: int = DEFAULT_MAX_COMPLETION_TOKENS,
        generation_token_limit: int = 32768,
        image_min_edge: int = MIN_EDGE,
        image_max_edge: int = MAX_EDGE,
    ) -> None:
        """Initialize client.

        Args:
            model_directory: Directory holding the model weights
            preferred_kind: Load the model as a text or vision model
            coordinator: Model cache, defaults to the process-wide one
            queue: Inference slot, defaults to the process-wide one
            reasoning_parser: Reasoning markup configuration
            terminating_tokens: Tokens that end generation
            max_completion_tokens: Default visible content budget in characters
            generation_token_limit: Hard token cap handed to the engine
            image_min_edge: Minimum edge of images sent to vision models
            image_max_edge: Maximum edge of images sent to vision models
        """
        self.configuration = ModelConfiguration.from_directory(model_directory)
        self.preferred_kind = ModelKind(preferred_kind)
        self.coordinator = coordinator or get_model_coordinator()
        self.queue = queue or get_inference_queue()
        self.reasoning_parser = reasoning_parser or ReasoningContentParser()
        self.terminating_tokens = tuple(token for token in terminating_tokens if token)
        self.max_completion_tokens = max_completion_tokens
        self.generation_token_limit = generation_token_limit
        self.image_min_edge = image_min_edge
        self.image_max_edge = image_max_edge

    def build_turns(self, request: ChatRequest) -> tuple[list[dict[str, str]], list[Any]]:
        """Flatten messages into chat-template turns and decoded images.

        Developer turns become system turns. Tool turns, assistant turns
        without content and audio parts are skipped.
        """
        turns: list[dict[str, str]] = []
        images: list[Any] = []

        for message in request.messages:
            if isinstance(message, (SystemMessage, DeveloperMessage)):
                text = _joined(message.content)
                if text:
                    turns.append({"role": "system", "content": text})
            elif isinstance(message, AssistantMessage):
                if message.content is None:
                    continue
                text = _joined(message.content)
                if text:
                    turns.append({"role": "assistant", "content": text})
            elif isinstance(message, UserMessage):
                if isinstance(message.content, str):
                    if message.content:
                        turns.append({"role": "user", "content": message.content})
                    continue
                texts = []
                for part in message.content:
                    if isinstance(part, TextPart):
                        texts.append(part.text)
                    elif isinstance(part, ImagePart):
                        try:
                            images.append(
                                load_image(
                                    part.image_url.url, self.image_min_edge, self.image_max_edge
                                )
                            )
                        except InvalidImageError as e:
                            logger.warning("local.image.skipped", error=str(e))
                if texts:
                    turns.append({"role": "user", "content": "\n".join(texts)})

        return turns, images

    async def chat_completion_request(self, request: ChatRequest) -> ChatResponseBody:
        """Generate a complete response.

        Args:
            request: Chat request

        Returns:
            Response with terminator tokens trimmed from the content
        """
        started = time.perf_counter()
        stream = await self._open_stream(request, mode="complete")
        async with stream:
            merged, _ = await collect_message(stream)

        content = trim_terminators(merged.content or "", self.terminating_tokens).strip()
        reasoning = (merged.reasoning_content or "").strip()
        logger.info(
            "local.completed",
            model=self.configuration.name,
            content_length=len(content),
            duration=round(time.perf_counter() - started, 2),
        )
        return ChatResponseBody(
            choices=[
                ChatChoice(
                    finish_reason="stop",
                    message=ChoiceMessage(
                        content=content or None,
                        reasoning_content=reasoning or None,
                    ),
                )
            ],
            created=int(time.time()),
            model=self.configuration.name,
        )

    async def streaming_chat_completion_request(self, request: ChatRequest) -> ChatStream:
        """Generate a streamed response.

        Waits for the inference slot and the model before returning.

        Args:
            request: Chat request

        Returns:
            Stream of content and reasoning chunks
        """
        return await self._open_stream(request, mode="stream")

    async def _open_stream(self, request: ChatRequest, mode: str) -> ChatStream:
        request = normalize(request)
        turns, images = self.build_turns(request)
        budget = request.max_completion_tokens or self.max_completion_tokens
        logger.info(
            "local.request",
            model=self.configuration.name,
            messages=len(turns),
            images=len(images),
            max_tokens=budget,
        )

        token = await self.queue.acquire()
        try:
            container = await self.coordinator.container(self.configuration, self.preferred_kind)
        except BaseException:
            self.queue.release(token)
            raise

        if container.kind is ModelKind.LLM:
            images = []
        elif not images:
            images = [placeholder_image()]

        def generate():
            return container.generate(
                turns,
                images,
                max_tokens=self.generation_token_limit,
                temperature=request.temperature,
            )

        async def produce(emit: Emit) -> None:
            try:
                async with track_request(self.name, mode):
                    segments = iterate_in_thread(generate)
                    async for delta in self._deltas(segments, budget):
                        chunk = ChatCompletionChunk.of(delta, model=self.configuration.name)
                        await emit(count_stream_object(self.name, chunk))
            finally:
                self.queue.release(token)

        # Output is bounded by the token budget, so the producer never waits on
        # the consumer and the slot is freed as soon as generation ends.
        return ChatStream(
            produce,
            on_terminate=[lambda: self.queue.release(token)],
            buffer_size=None,
            name="local-stream",
        )

    async def _deltas(
        self, segments: AsyncIterable[str], budget: int
    ) -> AsyncIterator[Delta]:
        """Split generated text into deltas, stopping on terminators or the budget."""
        splitter = self.reasoning_parser.stream_splitter()
        pending = ""
        visible = 0
        started = False

        async with aclosing(segments) as stream:
            async for segment in stream:
                while segment.endswith(DECODER_ERROR_SUFFIX):
                    segment = segment[: -len(DECODER_ERROR_SUFFIX)]
                pending += segment

                stop_at = min(
                    (pending.find(t) for t in self.terminating_tokens if t in pending),
                    default=-1,
                )
                if stop_at >= 0:
                    ready, pending = pending[:stop_at], ""
                else:
                    held = max(
                        (partial_marker_length(pending, t) for t in self.terminating_tokens),
                        default=0,
                    )
                    ready = pending[: len(pending) - held]
                    pending = pending[len(ready):]

                for delta in splitter.feed(ready):
                    if delta.content is not None:
                        if not started:
                            delta.content = delta.content.lstrip()
                            if not delta.content:
                                continue
                            started = True
                        remaining = budget - visible
                        if len(delta.content) >= remaining:
                            delta.content = delta.content[:remaining]
                            if delta.content:
                                yield delta
                            logger.info("local.budget_reached", max_tokens=budget)
                            return
                        visible += len(delta.content)
                    yield delta

                if stop_at >= 0:
                    logger.info("local.terminated", reason="terminator")
                    break

        tail = splitter.feed(pending) if pending else []
        for delta in tail + splitter.flush():
            if delta.content is not None:
                if not started:
                    delta.content = delta.content.lstrip()
                    if not delta.content:
                        continue
                    started = True
                delta.content = delta.content[: max(0, budget - visible)]
                if not delta.content:
                    continue
                visible += len(delta.content)
            yield delta


def create_local_client(settings: Settings) -> LocalChatClient:
    """Factory for the local client.

    Args:
        settings: Application settings

    Returns:
        Configured client

    Raises:
        InvalidConfigurationError: If no model directory is configured
    """
    if settings.local_model_path is None:
        raise InvalidConfigurationError("Local model directory is not configured")
    return LocalChatClient(
        model_directory=settings.local_model_path,
        preferred_kind=ModelKind(settings.local_model_kind),
        reasoning_parser=ReasoningContentParser(
            settings.reasoning_start_token, settings.reasoning_end_token
        ),
        terminating_tokens=settings.terminating_tokens,
        max_completion_tokens=settings.local_max_completion_tokens,
        generation_token_limit=settings.local_generation_token_limit,
        image_min_edge=settings.image_min_edge,
        image_max_edge=settings.image_max_edge,
    )
