"""Tests for the local MLX chat client."""

import asyncio
import base64
from io import BytesIO

import pytest
from PIL import Image

from chat_client_kit.backends.local import LocalChatClient, create_local_client, trim_terminators
from chat_client_kit.config import Settings
from chat_client_kit.core.errors import InvalidConfigurationError
from chat_client_kit.core.stream_processor import collect_message
from chat_client_kit.local.coordinator import ModelCoordinator
from chat_client_kit.local.engine import ModelKind
from chat_client_kit.local.queue import InferenceQueue
from chat_client_kit.models import (
    AssistantMessage,
    AudioPart,
    ChatRequest,
    DeveloperMessage,
    ImagePart,
    ImageURL,
    InputAudio,
    SystemMessage,
    TextPart,
    ToolMessage,
    UserMessage,
)
from tests.conftest import FakeLoader


def _image_url(size: tuple[int, int] = (8, 8)) -> str:
    buffer = BytesIO()
    Image.new("RGB", size).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def _client(model_directory, segments=None, **kwargs) -> tuple[LocalChatClient, FakeLoader]:
    loader = FakeLoader()
    loader.segments = segments
    client = LocalChatClient(
        model_directory,
        coordinator=ModelCoordinator(loader),
        queue=InferenceQueue(),
        **kwargs,
    )
    return client, loader


async def _container(client: LocalChatClient):
    return await client.coordinator.container(client.configuration, client.preferred_kind)


class TestTrimTerminators:
    """Test trailing terminator removal."""

    def test_repeated_terminators(self) -> None:
        assert trim_terminators("done</s><|im_end|></s>", ["</s>", "<|im_end|>"]) == "done"

    def test_inner_terminator_kept(self) -> None:
        assert trim_terminators("a</s>b", ["</s>"]) == "a</s>b"


class TestBuildTurns:
    """Test conversion of messages into chat template turns."""

    def test_roles_and_skipped_turns(self, model_directory) -> None:
        client, _ = _client(model_directory)
        request = ChatRequest(
            messages=[
                SystemMessage(content="Be terse"),
                DeveloperMessage(content="Use metric units"),
                UserMessage(content="Hi"),
                AssistantMessage(content=None),
                AssistantMessage(content="Hello"),
                ToolMessage(content="sunny", tool_call_id="call_1"),
                UserMessage(
                    content=[
                        TextPart(text="first"),
                        AudioPart(input_audio=InputAudio(data="AAAA", format="wav")),
                        TextPart(text="second"),
                    ]
                ),
            ]
        )

        turns, images = client.build_turns(request)

        assert turns == [
            {"role": "system", "content": "Be terse"},
            {"role": "system", "content": "Use metric units"},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
            {"role": "user", "content": "first\nsecond"},
        ]
        assert images == []

    def test_images_decoded_and_bad_images_skipped(self, model_directory) -> None:
        client, _ = _client(model_directory)
        request = ChatRequest(
            messages=[
                UserMessage(
                    content=[
                        TextPart(text="what is this"),
                        ImagePart(image_url=ImageURL(url=_image_url())),
                        ImagePart(image_url=ImageURL(url="https://example.com/remote.png")),
                    ]
                )
            ]
        )

        _, images = client.build_turns(request)

        assert len(images) == 1
        assert images[0].size == (64, 64)


class TestLocalChatCompletion:
    """Test non-streaming generation."""

    async def test_terminator_ends_generation(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["HELLO", "<|im_end|>", "ignored"])

        result = await client.chat_completion_request(user_request)

        message = result.choices[0].message
        assert message.content == "HELLO"
        assert result.choices[0].finish_reason == "stop"
        assert result.model == "tiny-model"

    async def test_terminator_split_across_segments(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["Hi", " there<|im", "_end|>", "more"])

        result = await client.chat_completion_request(user_request)

        assert result.choices[0].message.content == "Hi there"

    async def test_partial_terminator_prefix_kept_at_end(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["a <", "b"])

        result = await client.chat_completion_request(user_request)

        assert result.choices[0].message.content == "a <b"

    async def test_decoder_error_suffix_stripped(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["caf\ufffd", "e"])

        result = await client.chat_completion_request(user_request)

        assert result.choices[0].message.content == "cafe"

    async def test_reasoning_separated(self, model_directory, user_request) -> None:
        client, _ = _client(
            model_directory, segments=["<think>", "plan it", "</think>", "\n\nAnswer"]
        )

        result = await client.chat_completion_request(user_request)

        message = result.choices[0].message
        assert message.reasoning_content == "plan it"
        assert message.content == "Answer"

    async def test_budget_truncates_visible_content(self, model_directory) -> None:
        client, _ = _client(model_directory, segments=["Hello", " world", " again"])
        request = ChatRequest(messages=[UserMessage(content="hi")], max_completion_tokens=8)

        result = await client.chat_completion_request(request)

        assert result.choices[0].message.content == "Hello wo"

    async def test_budget_ignores_reasoning(self, model_directory) -> None:
        client, _ = _client(model_directory, segments=["<think>long reasoning</think>", "abc"])
        request = ChatRequest(messages=[UserMessage(content="hi")], max_completion_tokens=3)

        result = await client.chat_completion_request(request)

        assert result.choices[0].message.reasoning_content == "long reasoning"
        assert result.choices[0].message.content == "abc"

    async def test_engine_receives_turns_and_token_limit(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, generation_token_limit=1024)

        await client.chat_completion_request(user_request.model_copy(update={"temperature": 0.2}))

        container = await _container(client)
        call = container.calls[0]
        assert call["messages"] == [{"role": "user", "content": "Say HELLO"}]
        assert call["max_tokens"] == 1024
        assert call["temperature"] == 0.2

    async def test_slot_released_after_completion(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory)

        await client.chat_completion_request(user_request)

        assert client.queue.holders == 0

    async def test_slot_released_when_load_fails(self, model_directory, user_request) -> None:
        client, loader = _client(model_directory)
        loader.error = RuntimeError("corrupt weights")

        with pytest.raises(RuntimeError):
            await client.chat_completion_request(user_request)

        assert client.queue.holders == 0

    async def test_say_hello(self, model_directory) -> None:
        client, _ = _client(model_directory, segments=["  HELLO", "<|eot_id|>", "<|eot_id|>"])
        request = ChatRequest.model_validate(
            {
                "messages": [{"role": "user", "content": "Say HELLO"}],
                "max_tokens": 32,
                "temperature": 0,
            }
        )

        result = await client.chat_completion_request(request)

        content = result.choices[0].message.content
        assert content == "HELLO"
        assert not any(content.endswith(token) for token in client.terminating_tokens)


class TestLocalImages:
    """Test image handling per model kind."""

    async def test_text_model_drops_images(self, model_directory) -> None:
        client, _ = _client(model_directory)
        request = ChatRequest(
            messages=[
                UserMessage(
                    content=[TextPart(text="describe"), ImagePart(image_url=ImageURL(url=_image_url()))]
                )
            ]
        )

        await client.chat_completion_request(request)

        container = await _container(client)
        assert container.calls[0]["images"] == []

    async def test_vision_model_gets_placeholder(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, preferred_kind=ModelKind.VLM)

        await client.chat_completion_request(user_request)

        container = await _container(client)
        images = container.calls[0]["images"]
        assert container.kind is ModelKind.VLM
        assert len(images) == 1
        assert images[0].size == (1, 1)


class TestLocalStreaming:
    """Test streamed generation."""

    async def test_stream_chunks(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["  Hel", "lo", "</s>"])

        stream = await client.streaming_chat_completion_request(user_request)
        merged, tool_calls = await collect_message(stream)

        assert merged.content == "Hello"
        assert tool_calls == []

    async def test_slot_held_until_stream_closed(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory)

        stream = await client.streaming_chat_completion_request(user_request)
        assert client.queue.holders == 1

        await stream.aclose()
        assert client.queue.holders == 0

    async def test_second_request_waits_for_slot(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory)

        first = await client.streaming_chat_completion_request(user_request)
        second = asyncio.create_task(client.streaming_chat_completion_request(user_request))
        await asyncio.sleep(0.01)
        assert not second.done()

        await first.collect()
        stream = await asyncio.wait_for(second, timeout=1)
        await stream.collect()

        assert client.queue.holders == 0

    async def test_slot_released_after_early_break(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["x"] * 100)

        stream = await client.streaming_chat_completion_request(user_request)
        async for _ in stream:
            break

        token = await asyncio.wait_for(client.queue.acquire(), timeout=1)
        assert client.queue.holders == 1
        client.queue.release(token)

    async def test_slot_released_when_consumer_cancelled(self, model_directory, user_request) -> None:
        client, _ = _client(model_directory, segments=["x"] * 100)
        stream = await client.streaming_chat_completion_request(user_request)

        async def consume() -> None:
            async for _ in stream:
                await asyncio.sleep(10)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

        token = await asyncio.wait_for(client.queue.acquire(), timeout=1)
        client.queue.release(token)
        assert client.queue.holders == 0


class TestCreateLocalClient:
    """Test the settings factory."""

    def test_requires_directory(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            create_local_client(Settings(local_model_directory=""))

    def test_missing_directory(self, tmp_path) -> None:
        with pytest.raises(InvalidConfigurationError):
            create_local_client(Settings(local_model_directory=str(tmp_path / "absent")))

    def test_builds_client(self, model_directory) -> None:
        client = create_local_client(
            Settings(local_model_directory=str(model_directory), local_model_kind="vlm")
        )

        assert client.preferred_kind is ModelKind.VLM
        assert client.configuration.name == "tiny-model"
