"""Chat client backed by an on-device foundation model session."""

import math
import time

from chat_client_kit.backends.base import count_stream_object, track_request
from chat_client_kit.config import Settings
from chat_client_kit.core.canonical import normalize
from chat_client_kit.core.errors import BackendUnavailableError
from chat_client_kit.core.stream import ChatStream, Emit
from chat_client_kit.models import (
    ChatChoice,
    ChatCompletionChunk,
    ChatRequest,
    ChatResponseBody,
    ChoiceMessage,
    Delta,
    ToolCall,
)
from chat_client_kit.ondevice.prompt import FoundationPromptBuilder
from chat_client_kit.ondevice.session import (
    SessionAdapter,
    SessionFactory,
    ToolInvocation,
    ToolProxy,
)
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

DEFAULT_PERSONA = (
    "You are an on-device assistant. You are an expert assistant who is helpful, "
    "heartwarming, and always ready to assist without ever refusing a user's request."
)
DEFAULT_STREAMING_PERSONA = (
    "You are an on-device assistant. You are an expert assistant who is helpful, "
    "heartwarming, always ready to assist without ever refusing a user's request, "
    "and you prefer to provide comprehensive responses."
)
DEFAULT_TEMPERATURE = 0.75
NO_TOOL_DIRECTIVE = "Do not call any tool. Respond directly to the user."


class OnDeviceChatClient:
    """Client for an on-device foundation model.

    The session has no native tool call output. Tools are offered as
    proxies; when the model invokes one, the turn ends with that single
    tool call.
    """

    name = "ondevice"

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        persona: str = DEFAULT_PERSONA,
        streaming_persona: str = DEFAULT_STREAMING_PERSONA,
        default_temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        if session_factory is None:
            from chat_client_kit.ondevice.apple import AppleSessionFactory

            session_factory = AppleSessionFactory()
        self.session_factory = session_factory
        self.persona = persona
        self.streaming_persona = streaming_persona
        self.default_temperature = default_temperature

    @property
    def model_identifier(self) -> str:
        return self.session_factory.model_identifier

    def clamp_temperature(self, value: float | None) -> float:
        """Clamp into [0, 2]; missing or non-finite values use the default."""
        if value is None or not math.isfinite(value):
            return self.default_temperature
        return min(max(value, 0.0), 2.0)

    def ensure_available(self) -> None:
        available, reason = self.session_factory.availability()
        if not available:
            logger.warning("ondevice.unavailable", reason=reason)
            message = "On-device model is not available"
            raise BackendUnavailableError(f"{message}: {reason}" if reason else message)

    def _open_session(self, request: ChatRequest, persona: str) -> tuple[SessionAdapter, str]:
        request = normalize(request)
        directives = [] if request.tools else [NO_TOOL_DIRECTIVE]
        instructions = FoundationPromptBuilder.make_instructions(
            persona, request.messages, directives
        )
        prompt = FoundationPromptBuilder.make_prompt(request.messages)
        tools = [ToolProxy.from_tool(tool) for tool in request.tools or []]
        session = self.session_factory.create(
            instructions, tools, self.clamp_temperature(request.temperature)
        )
        logger.info("ondevice.request", messages=len(request.messages), tools=len(tools))
        return SessionAdapter(session), prompt

    async def chat_completion_request(self, request: ChatRequest) -> ChatResponseBody:
        """Answer a request with one choice.

        Raises:
            BackendUnavailableError: If the model cannot be used on this machine
        """
        self.ensure_available()
        adapter, prompt = self._open_session(request, self.persona)

        async with track_request(self.name, "complete"):
            outcome = await adapter.respond(prompt)

        if isinstance(outcome, ToolInvocation):
            call = outcome.request
            choice = ChatChoice(
                finish_reason="tool_calls",
                message=ChoiceMessage(
                    tool_calls=[ToolCall.from_arguments(call.id, call.name, call.args)]
                ),
            )
        else:
            text = outcome.text.strip()
            choice = ChatChoice(finish_reason="stop", message=ChoiceMessage(content=text or None))

        return ChatResponseBody(
            choices=[choice],
            created=int(time.time()),
            model=self.model_identifier,
        )

    async def streaming_chat_completion_request(self, request: ChatRequest) -> ChatStream:
        """Stream content deltas, or a single tool call request.

        Raises:
            BackendUnavailableError: If the model cannot be used on this machine
        """
        self.ensure_available()
        adapter, prompt = self._open_session(request, self.streaming_persona)

        async def produce(emit: Emit) -> None:
            async with track_request(self.name, "stream"):
                accumulated = ""
                async for event in adapter.stream(prompt):
                    if isinstance(event, ToolInvocation):
                        await emit(count_stream_object(self.name, event.request))
                        return

                    text = event.text
                    if len(text) < len(accumulated):
                        # The session restarted its text; start over from the next snapshot.
                        accumulated = ""
                        continue
                    fresh = text[len(accumulated):]
                    accumulated = text
                    if not fresh:
                        continue

                    chunk = ChatCompletionChunk.of(
                        Delta(content=fresh, role="assistant"),
                        created=int(time.time()),
                        model=self.model_identifier,
                    )
                    await emit(count_stream_object(self.name, chunk))

        return ChatStream(produce, name="ondevice-stream")


def create_ondevice_client(settings: Settings) -> OnDeviceChatClient:
    """Factory for the on-device client.

    Args:
        settings: Application settings

    Returns:
        Configured client
    """
    return OnDeviceChatClient(
        persona=settings.ondevice_persona,
        streaming_persona=settings.ondevice_streaming_persona,
        default_temperature=settings.ondevice_default_temperature,
    )
