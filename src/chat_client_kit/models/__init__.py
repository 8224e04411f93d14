"""Pydantic models for chat requests, responses and stream objects."""

from chat_client_kit.models.request import (
    AssistantMessage,
    AudioPart,
    ChatRequest,
    ContentPart,
    DeveloperMessage,
    FunctionCall,
    FunctionDefinition,
    FunctionTool,
    ImagePart,
    ImageURL,
    InputAudio,
    Message,
    SystemMessage,
    TextPart,
    Tool,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from chat_client_kit.models.builder import ChatRequestBuilder
from chat_client_kit.models.response import ChatChoice, ChatResponseBody, ChoiceMessage
from chat_client_kit.models.stream import (
    ChatCompletionChunk,
    ChunkChoice,
    Delta,
    DeltaFunction,
    DeltaToolCall,
    StreamObject,
    ToolCallRequest,
)

__all__ = [
    "AssistantMessage",
    "AudioPart",
    "ChatRequest",
    "ChatRequestBuilder",
    "ContentPart",
    "DeveloperMessage",
    "FunctionCall",
    "FunctionDefinition",
    "FunctionTool",
    "ImagePart",
    "ImageURL",
    "InputAudio",
    "Message",
    "SystemMessage",
    "TextPart",
    "Tool",
    "ToolCall",
    "ToolMessage",
    "UserMessage",
    "ChatChoice",
    "ChatResponseBody",
    "ChoiceMessage",
    "ChatCompletionChunk",
    "ChunkChoice",
    "Delta",
    "DeltaFunction",
    "DeltaToolCall",
    "StreamObject",
    "ToolCallRequest",
]
