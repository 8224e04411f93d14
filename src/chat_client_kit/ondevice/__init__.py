"""On-device foundation model sessions."""

from chat_client_kit.ondevice.prompt import FoundationPromptBuilder
from chat_client_kit.ondevice.session import (
    Content,
    FoundationSession,
    InvocationCaptured,
    Outcome,
    SessionAdapter,
    SessionFactory,
    TextSnapshot,
    ToolInvocation,
    ToolProxy,
)

__all__ = [
    "FoundationPromptBuilder",
    "Content",
    "FoundationSession",
    "InvocationCaptured",
    "Outcome",
    "SessionAdapter",
    "SessionFactory",
    "TextSnapshot",
    "ToolInvocation",
    "ToolProxy",
]
