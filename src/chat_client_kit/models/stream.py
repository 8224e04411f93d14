"""Unified stream objects emitted by every backend."""

import uuid
from typing import Any

from pydantic import BaseModel, Field


class DeltaFunction(BaseModel):
    """Partial function call fragment."""

    name: str | None = None
    arguments: str | None = None


class DeltaToolCall(BaseModel):
    """Partial tool call, keyed by its index within the response."""

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: DeltaFunction | None = None


class Delta(BaseModel):
    """Incremental message fragment."""

    content: str | None = None
    reasoning: str | None = None
    reasoning_content: str | None = None
    refusal: str | None = None
    role: str | None = None
    tool_calls: list[DeltaToolCall] | None = None


class ChunkChoice(BaseModel):
    """Streaming chat completion choice."""

    delta: Delta = Field(default_factory=Delta)
    finish_reason: str | None = None
    index: int = 0


class ChatCompletionChunk(BaseModel):
    """OpenAI-compatible streaming chunk."""

    id: str | None = None
    choices: list[ChunkChoice] = Field(default_factory=list)
    created: int | None = None
    model: str | None = None
    usage: dict[str, Any] | None = None

    @classmethod
    def of(cls, delta: Delta, **fields: Any) -> "ChatCompletionChunk":
        """Build a single-choice chunk around a delta."""
        return cls(choices=[ChunkChoice(delta=delta)], **fields)


class ToolCallRequest(BaseModel):
    """A fully assembled tool call surfaced through the stream."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    args: str = ""


StreamObject = ChatCompletionChunk | ToolCallRequest
