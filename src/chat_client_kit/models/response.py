"""Non-streaming chat completion response models."""

from typing import Any

from pydantic import BaseModel, Field

from chat_client_kit.models.request import ToolCall


class ChoiceMessage(BaseModel):
    """Assistant message returned in a completion choice."""

    content: str | None = None
    reasoning: str | None = None
    reasoning_content: str | None = None
    role: str = "assistant"
    tool_calls: list[ToolCall] | None = None


class ChatChoice(BaseModel):
    """Chat completion choice."""

    finish_reason: str | None = None
    index: int = 0
    message: ChoiceMessage


class ChatResponseBody(BaseModel):
    """Chat completion response."""

    id: str | None = None
    choices: list[ChatChoice] = Field(default_factory=list)
    created: int = 0
    model: str = ""
    usage: dict[str, Any] | None = None
