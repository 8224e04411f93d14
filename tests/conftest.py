"""Shared fakes and fixtures."""

import asyncio
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest

from chat_client_kit.local.engine import ModelConfiguration, ModelKind
from chat_client_kit.models import ChatRequest, UserMessage


class FakeContainer:
    """Model container replaying fixed text segments."""

    def __init__(self, kind: ModelKind = ModelKind.LLM, segments: list[str] | None = None) -> None:
        self.kind = kind
        self.segments = segments if segments is not None else ["Hello", " world"]
        self.calls: list[dict[str, Any]] = []

    def generate(
        self,
        messages: list[dict[str, str]],
        images: list[Any],
        *,
        max_tokens: int,
        temperature: float | None,
    ) -> Iterator[str]:
        self.calls.append(
            {
                "messages": messages,
                "images": images,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        yield from self.segments


class FakeLoader:
    """Loader counting loads, optionally slow or failing."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.loads: list[tuple[str, ModelKind]] = []
        self.segments: list[str] | None = None

    async def _load(self, configuration: ModelConfiguration, kind: ModelKind) -> FakeContainer:
        self.loads.append((configuration.identifier, kind))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return FakeContainer(kind, self.segments)

    async def load_llm(self, configuration: ModelConfiguration) -> FakeContainer:
        return await self._load(configuration, ModelKind.LLM)

    async def load_vlm(self, configuration: ModelConfiguration) -> FakeContainer:
        return await self._load(configuration, ModelKind.VLM)


class FakeSession:
    """Foundation session replaying snapshots or raising from a tool."""

    def __init__(
        self,
        text: str = "",
        snapshots: list[str] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.text = text
        self.snapshots = snapshots or []
        self.error = error
        self.prompts: list[str] = []

    async def respond(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.text

    async def stream_response(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for snapshot in self.snapshots:
            yield snapshot
        if self.error is not None:
            raise self.error


class FakeSessionFactory:
    """Session factory recording what it was asked to create."""

    model_identifier = "fake-foundation-model"

    def __init__(self, session: FakeSession | None = None, available: bool = True) -> None:
        self.session = session or FakeSession()
        self.available = available
        self.created: list[dict[str, Any]] = []

    def availability(self) -> tuple[bool, str | None]:
        return (True, None) if self.available else (False, "device not eligible")

    def create(self, instructions: str, tools: list, temperature: float) -> FakeSession:
        self.created.append(
            {"instructions": instructions, "tools": tools, "temperature": temperature}
        )
        return self.session


@pytest.fixture
def user_request() -> ChatRequest:
    """Single-turn request."""
    return ChatRequest(model="test-model", messages=[UserMessage(content="Say HELLO")])


@pytest.fixture
def model_directory(tmp_path):
    """Empty directory standing in for model weights."""
    directory = tmp_path / "tiny-model"
    directory.mkdir()
    return directory
