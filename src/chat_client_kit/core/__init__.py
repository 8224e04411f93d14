"""Core processing modules."""

from chat_client_kit.core.canonical import cache_identifier, normalize
from chat_client_kit.core.errors import (
    BackendUnavailableError,
    ChatClientError,
    ChunkDecodeError,
    InvalidConfigurationError,
    InvalidImageError,
    RemoteServerError,
    TransportError,
    extract_error,
)
from chat_client_kit.core.reasoning import ReasoningContentParser, ReasoningStreamSplitter
from chat_client_kit.core.sse import ServerSentEvent, aiter_sse
from chat_client_kit.core.stream import ChatStream
from chat_client_kit.core.stream_processor import RemoteChatStreamProcessor
from chat_client_kit.core.tool_calls import ToolCallCollector

__all__ = [
    "cache_identifier",
    "normalize",
    "BackendUnavailableError",
    "ChatClientError",
    "ChunkDecodeError",
    "InvalidConfigurationError",
    "InvalidImageError",
    "RemoteServerError",
    "TransportError",
    "extract_error",
    "ReasoningContentParser",
    "ReasoningStreamSplitter",
    "ServerSentEvent",
    "aiter_sse",
    "ChatStream",
    "RemoteChatStreamProcessor",
    "ToolCallCollector",
]
