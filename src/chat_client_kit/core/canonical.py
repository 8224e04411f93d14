"""Request canonicalization and content-addressed cache identifiers.

Normalization trims every string, drops blank optional values, filters empty
text parts and orders tool calls and tool definitions so that logically equal
requests serialize to identical JSON.
"""

import hashlib
import json

from chat_client_kit.models import (
    AssistantMessage,
    AudioPart,
    ChatRequest,
    DeveloperMessage,
    FunctionCall,
    FunctionDefinition,
    FunctionTool,
    InputAudio,
    SystemMessage,
    TextPart,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


def trimmed(value: str | None) -> str | None:
    """Strip whitespace; blank strings become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _text_content(content: str | list[str]) -> str | list[str]:
    if isinstance(content, str):
        return content.strip()
    return [part.strip() for part in content if part.strip()]


def _assistant_content(content: str | list[str] | None) -> str | list[str] | None:
    if content is None:
        return None
    if isinstance(content, str):
        return trimmed(content)
    parts = [part.strip() for part in content if part.strip()]
    return parts or None


def _content_part(part):
    if isinstance(part, TextPart):
        text = trimmed(part.text)
        return TextPart(text=text) if text else None
    if isinstance(part, AudioPart):
        data = trimmed(part.input_audio.data)
        if not data:
            return None
        return AudioPart(input_audio=InputAudio(data=data, format=part.input_audio.format))
    return part


def _user_content(content):
    if isinstance(content, str):
        return content.strip()
    return [normalized for normalized in map(_content_part, content) if normalized is not None]


def _tool_calls(tool_calls: list[ToolCall] | None) -> list[ToolCall] | None:
    if not tool_calls:
        return None
    normalized = [
        ToolCall(
            id=trimmed(call.id) or call.id,
            function=FunctionCall(
                name=trimmed(call.function.name) or call.function.name,
                arguments=trimmed(call.function.arguments),
            ),
        )
        for call in tool_calls
    ]
    return sorted(normalized, key=lambda call: call.id)


def _tools(tools: list[FunctionTool] | None) -> list[FunctionTool] | None:
    if tools is None:
        return None
    normalized = [
        FunctionTool(
            function=FunctionDefinition(
                name=trimmed(tool.function.name) or tool.function.name,
                description=trimmed(tool.function.description),
                parameters=tool.function.parameters,
                strict=tool.function.strict,
            )
        )
        for tool in tools
    ]
    return sorted(normalized, key=lambda tool: tool.function.name)


def normalize_message(message):
    """Return the canonical form of a single message."""
    if isinstance(message, AssistantMessage):
        return AssistantMessage(
            content=_assistant_content(message.content),
            name=trimmed(message.name),
            refusal=trimmed(message.refusal),
            tool_calls=_tool_calls(message.tool_calls),
        )
    if isinstance(message, SystemMessage):
        return SystemMessage(content=_text_content(message.content), name=trimmed(message.name))
    if isinstance(message, DeveloperMessage):
        return DeveloperMessage(content=_text_content(message.content), name=trimmed(message.name))
    if isinstance(message, ToolMessage):
        return ToolMessage(
            content=_text_content(message.content),
            tool_call_id=trimmed(message.tool_call_id) or message.tool_call_id,
        )
    if isinstance(message, UserMessage):
        return UserMessage(content=_user_content(message.content), name=trimmed(message.name))
    raise TypeError(f"unsupported message type: {type(message).__name__}")


def normalize(request: ChatRequest) -> ChatRequest:
    """Produce the canonical form of a request.

    Message order is preserved; only whitespace and ordering of tool calls
    and tool definitions are touched.
    """
    return ChatRequest(
        model=trimmed(request.model),
        messages=[normalize_message(message) for message in request.messages],
        max_completion_tokens=request.max_completion_tokens,
        stream=request.stream,
        temperature=request.temperature,
        tools=_tools(request.tools),
    )


def cache_identifier(request: ChatRequest) -> str:
    """SHA-256 of the canonical request serialized with sorted keys.

    Never raises. Returns an empty string when the request cannot be
    encoded; callers must treat that as uncacheable.
    """
    try:
        canonical = normalize(request)
        encoded = json.dumps(
            canonical.to_wire(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")
    except Exception as e:
        logger.warning("request.cache_identifier_failed", error=str(e))
        return ""
    return hashlib.sha256(encoded).hexdigest()
