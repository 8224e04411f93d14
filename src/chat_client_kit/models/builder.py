"""Fluent builder for chat requests."""

from typing import Any

from chat_client_kit.models.request import (
    AssistantMessage,
    ChatRequest,
    DeveloperMessage,
    SystemMessage,
    Tool,
    ToolCall,
    ToolMessage,
    UserMessage,
)


class ChatRequestBuilder:
    """Compose a :class:`ChatRequest` step by step.

    Example:
        request = (
            ChatRequestBuilder()
            .model("gpt-4o-mini")
            .temperature(0.4)
            .system("You are a haiku assistant.")
            .user("Write about autumn.")
            .build()
        )
    """

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}
        self._messages: list[Any] = []

    def model(self, value: str | None) -> "ChatRequestBuilder":
        self._fields["model"] = value
        return self

    def temperature(self, value: float | None) -> "ChatRequestBuilder":
        self._fields["temperature"] = value
        return self

    def max_completion_tokens(self, value: int | None) -> "ChatRequestBuilder":
        self._fields["max_completion_tokens"] = value
        return self

    def stream(self, value: bool | None) -> "ChatRequestBuilder":
        self._fields["stream"] = value
        return self

    def tools(self, value: list[Tool] | None) -> "ChatRequestBuilder":
        self._fields["tools"] = value
        return self

    def message(self, message: Any) -> "ChatRequestBuilder":
        self._messages.append(message)
        return self

    def messages(self, messages: list[Any]) -> "ChatRequestBuilder":
        """Replace all messages collected so far."""
        self._messages = list(messages)
        return self

    def append_messages(self, messages: list[Any]) -> "ChatRequestBuilder":
        self._messages.extend(messages)
        return self

    def system(self, text: str, name: str | None = None) -> "ChatRequestBuilder":
        return self.message(SystemMessage(content=text, name=name))

    def developer(self, text: str, name: str | None = None) -> "ChatRequestBuilder":
        return self.message(DeveloperMessage(content=text, name=name))

    def user(self, content: str | list[Any], name: str | None = None) -> "ChatRequestBuilder":
        return self.message(UserMessage(content=content, name=name))

    def assistant(
        self,
        content: str | list[str] | None = None,
        name: str | None = None,
        refusal: str | None = None,
        tool_calls: list[ToolCall] | None = None,
    ) -> "ChatRequestBuilder":
        return self.message(
            AssistantMessage(content=content, name=name, refusal=refusal, tool_calls=tool_calls)
        )

    def tool(self, content: str | list[str], tool_call_id: str) -> "ChatRequestBuilder":
        return self.message(ToolMessage(content=content, tool_call_id=tool_call_id))

    def build(self) -> ChatRequest:
        return ChatRequest(messages=list(self._messages), **self._fields)
