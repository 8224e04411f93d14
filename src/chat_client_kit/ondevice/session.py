"""Foundation model sessions and the explicit outcome of a turn.

The vendor session only reports a tool call by raising out of the tool's
``call``. :class:`SessionAdapter` catches that once and turns it into a
:class:`ToolInvocation`, so callers branch on values instead of exceptions.
"""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from chat_client_kit.models import FunctionTool, ToolCallRequest
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Content:
    """Final text of a turn."""

    text: str


@dataclass(frozen=True)
class ToolInvocation:
    """The model asked for a tool instead of answering."""

    request: ToolCallRequest


@dataclass(frozen=True)
class TextSnapshot:
    """Cumulative text generated so far."""

    text: str


Outcome = Content | ToolInvocation
StreamEvent = TextSnapshot | ToolInvocation


class InvocationCaptured(Exception):
    """Raised by a tool proxy to abort the session turn with a tool call."""

    def __init__(self, request: ToolCallRequest) -> None:
        super().__init__(f"tool invocation captured: {request.name}")
        self.request = request


class ToolProxy:
    """Stand-in for a caller-side tool.

    The session sees the tool's name, description and argument schema, but
    invoking it never runs anything: the call is captured and handed back
    to the caller as a tool call request.
    """

    def __init__(
        self,
        name: str,
        description: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.description = description or ""
        self.parameters = parameters

    @classmethod
    def from_tool(cls, tool: FunctionTool) -> "ToolProxy":
        return cls(
            name=tool.function.name,
            description=tool.function.description,
            parameters=tool.function.parameters,
        )

    @property
    def schema_description(self) -> str | None:
        if self.parameters is None:
            return None
        return json.dumps(self.parameters, sort_keys=True)

    @property
    def model_description(self) -> str:
        """Description shown to the model, with the argument schema appended."""
        description = self.description or self.name
        schema = self.schema_description
        if schema is None:
            return description
        return f"{description}\n\nArguments JSON schema: {schema}"

    async def call(self, arguments: str | dict[str, Any]) -> str:
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        logger.debug("ondevice.tool.captured", name=self.name)
        raise InvocationCaptured(ToolCallRequest(name=self.name, args=arguments))


class FoundationSession(Protocol):
    """A single-turn session of an on-device foundation model."""

    async def respond(self, prompt: str) -> str:
        ...

    def stream_response(self, prompt: str) -> AsyncIterator[str]:
        """Yield cumulative snapshots of the response text."""
        ...


class SessionFactory(Protocol):
    """Creates sessions and reports model availability."""

    model_identifier: str

    def availability(self) -> tuple[bool, str | None]:
        ...

    def create(
        self, instructions: str, tools: list[ToolProxy], temperature: float
    ) -> FoundationSession:
        ...


def captured_request(error: BaseException) -> ToolCallRequest | None:
    """Find a captured tool invocation in an error or the errors it wraps."""
    seen: set[int] = set()
    pending: list[BaseException | None] = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, InvocationCaptured):
            return current.request
        underlying = getattr(current, "underlying_error", None)
        if isinstance(underlying, BaseException):
            pending.append(underlying)
        pending.extend([current.__cause__, current.__context__])
    return None


class SessionAdapter:
    """Runs a session turn and reports its outcome as a value."""

    def __init__(self, session: FoundationSession) -> None:
        self.session = session

    async def respond(self, prompt: str) -> Outcome:
        try:
            text = await self.session.respond(prompt)
        except Exception as e:
            request = captured_request(e)
            if request is None:
                raise
            return ToolInvocation(request)
        return Content(text)

    async def stream(self, prompt: str) -> AsyncIterator[StreamEvent]:
        """Yield text snapshots, ending with a tool invocation if one was captured."""
        try:
            async for snapshot in self.session.stream_response(prompt):
                yield TextSnapshot(snapshot)
        except Exception as e:
            request = captured_request(e)
            if request is None:
                raise
            yield ToolInvocation(request)
