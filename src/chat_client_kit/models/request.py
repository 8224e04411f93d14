"""Request-side chat models: messages, content parts, tools and tool calls."""

import json
from functools import cached_property
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, PlainSerializer


def _coerce_text_parts(value: Any) -> Any:
    """Accept OpenAI-style text part dicts where plain strings are expected."""
    if isinstance(value, list):
        return [
            item.get("text", "") if isinstance(item, dict) else item
            for item in value
        ]
    return value


def _serialize_text_parts(value: str | list[str]) -> Any:
    if isinstance(value, list):
        return [{"type": "text", "text": part} for part in value]
    return value


# Text or a list of text parts. Parts are sent as OpenAI text part objects.
TextContent = Annotated[
    str | list[str],
    BeforeValidator(_coerce_text_parts),
    PlainSerializer(_serialize_text_parts),
]


class TextPart(BaseModel):
    """Plain text content part."""

    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    """Image reference, either a remote URL or a data URL."""

    url: str
    detail: Literal["auto", "low", "high"] | None = None


class ImagePart(BaseModel):
    """Image content part."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


class InputAudio(BaseModel):
    """Base64 encoded audio payload."""

    data: str
    format: str


class AudioPart(BaseModel):
    """Audio content part."""

    type: Literal["input_audio"] = "input_audio"
    input_audio: InputAudio


ContentPart = Annotated[TextPart | ImagePart | AudioPart, Field(discriminator="type")]


class FunctionCall(BaseModel):
    """Function invocation carried by a tool call."""

    name: str
    arguments: str | None = None

    @cached_property
    def parsed_arguments(self) -> dict[str, Any] | None:
        """Arguments decoded from the raw JSON string, or None when invalid."""
        if not self.arguments:
            return None
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None


class ToolCall(BaseModel):
    """Tool call requested by the assistant."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall

    @classmethod
    def from_arguments(cls, id: str, name: str, arguments: str) -> "ToolCall":
        return cls(id=id, function=FunctionCall(name=name, arguments=arguments))


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: TextContent
    name: str | None = None


class DeveloperMessage(BaseModel):
    role: Literal["developer"] = "developer"
    content: TextContent
    name: str | None = None


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str | list[ContentPart]
    name: str | None = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: TextContent | None = None
    name: str | None = None
    refusal: str | None = None
    tool_calls: list[ToolCall] | None = None


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    content: TextContent
    tool_call_id: str


Message = Annotated[
    SystemMessage | DeveloperMessage | UserMessage | AssistantMessage | ToolMessage,
    Field(discriminator="role"),
]


class FunctionDefinition(BaseModel):
    """Function tool definition with a JSON schema for its parameters."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None
    strict: bool | None = None


class FunctionTool(BaseModel):
    """Tool exposed to the model. Only function tools exist today."""

    type: Literal["function"] = "function"
    function: FunctionDefinition

    @property
    def name(self) -> str:
        return self.function.name

    @classmethod
    def define(
        cls,
        name: str,
        description: str | None = None,
        parameters: dict[str, Any] | None = None,
        strict: bool | None = None,
    ) -> "FunctionTool":
        return cls(
            function=FunctionDefinition(
                name=name,
                description=description,
                parameters=parameters,
                strict=strict,
            )
        )


Tool = FunctionTool


class ChatRequest(BaseModel):
    """Canonical chat completion request shared by every backend."""

    model: str | None = None
    messages: list[Message] = Field(default_factory=list)
    max_completion_tokens: int | None = Field(
        default=None,
        validation_alias=AliasChoices("max_completion_tokens", "max_tokens"),
    )
    stream: bool | None = None
    temperature: float | None = None
    tools: list[Tool] | None = None

    @property
    def cache_identifier(self) -> str:
        """Content-addressed identifier; empty when the request is uncacheable."""
        from chat_client_kit.core.canonical import cache_identifier

        return cache_identifier(self)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the OpenAI-style JSON body."""
        return self.model_dump(mode="json", exclude_none=True)
