"""Tests for the on-device foundation model client."""

import json
import math

import pytest

from chat_client_kit.backends.ondevice import NO_TOOL_DIRECTIVE, OnDeviceChatClient
from chat_client_kit.core.errors import BackendUnavailableError
from chat_client_kit.models import (
    AssistantMessage,
    ChatCompletionChunk,
    ChatRequest,
    FunctionTool,
    SystemMessage,
    ToolCall,
    ToolCallRequest,
    ToolMessage,
    UserMessage,
)
from chat_client_kit.ondevice.prompt import FoundationPromptBuilder
from chat_client_kit.ondevice.session import (
    Content,
    InvocationCaptured,
    SessionAdapter,
    ToolInvocation,
    ToolProxy,
    captured_request,
)
from tests.conftest import FakeSession, FakeSessionFactory


WEATHER_TOOL = FunctionTool.define(
    "lookupWeather",
    description="Look up the weather for a city",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}},
)


class ToolCallingSession(FakeSession):
    """Session that invokes the first tool it was given."""

    def __init__(self, tools: list[ToolProxy], arguments, preamble: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.tools = tools
        self.arguments = arguments
        self.preamble = preamble

    async def respond(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return await self.tools[0].call(self.arguments)

    async def stream_response(self, prompt: str):
        self.prompts.append(prompt)
        for snapshot in self.preamble:
            yield snapshot
        await self.tools[0].call(self.arguments)


class ToolCallingFactory(FakeSessionFactory):
    """Factory handing its tools to a tool-calling session."""

    def __init__(self, arguments, preamble: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.arguments = arguments
        self.preamble = preamble

    def create(self, instructions: str, tools: list, temperature: float) -> ToolCallingSession:
        super().create(instructions, tools, temperature)
        return ToolCallingSession(tools, self.arguments, self.preamble)


class TestFoundationPromptBuilder:
    """Test instruction and prompt text."""

    def test_instructions(self) -> None:
        messages = [
            SystemMessage(content="Be terse."),
            UserMessage(content="Hi"),
            SystemMessage(content=["Answer in French.", "No emoji."]),
        ]

        instructions = FoundationPromptBuilder.make_instructions(
            "You are helpful.", messages, ["Never call tools."]
        )

        assert instructions == (
            "You are helpful.\n\nBe terse.\n\nAnswer in French.\nNo emoji.\n\nNever call tools."
        )

    def test_single_user_turn(self) -> None:
        prompt = FoundationPromptBuilder.make_prompt([UserMessage(content="Say HELLO")])

        assert prompt == "User: Say HELLO"

    def test_transcript(self) -> None:
        messages = [
            SystemMessage(content="ignored in prompt"),
            UserMessage(content="What's the weather?", name="Alex"),
            AssistantMessage(
                content="Let me check.",
                tool_calls=[ToolCall.from_arguments("call_1", "lookupWeather", '{"city":"Paris"}')],
            ),
            ToolMessage(content="Sunny, 21C", tool_call_id="call_1"),
            AssistantMessage(content="It is sunny."),
            UserMessage(content="And tomorrow?"),
        ]

        prompt = FoundationPromptBuilder.make_prompt(messages)

        assert prompt == (
            "Conversation so far:\n"
            "User (Alex): What's the weather?\n"
            "Assistant: Let me check.\n"
            'called lookupWeather({"city":"Paris"})\n'
            "Tool(call_1): Sunny, 21C\n"
            "Assistant: It is sunny.\n"
            "\n"
            "User: And tomorrow?"
        )

    def test_turns_after_latest_user_follow_it(self) -> None:
        messages = [
            UserMessage(content="Weather?"),
            AssistantMessage(
                tool_calls=[ToolCall.from_arguments("call_1", "lookupWeather", "{}")]
            ),
            ToolMessage(content="Rain", tool_call_id="call_1"),
        ]

        prompt = FoundationPromptBuilder.make_prompt(messages)

        assert prompt == "User: Weather?\nAssistant: called lookupWeather({})\nTool(call_1): Rain"


class TestSessionAdapter:
    """Test outcome reporting."""

    async def test_content(self) -> None:
        outcome = await SessionAdapter(FakeSession(text="Hello")).respond("prompt")

        assert outcome == Content("Hello")

    async def test_captured_invocation(self) -> None:
        request = ToolCallRequest(name="lookupWeather", args="{}")
        session = FakeSession(error=InvocationCaptured(request))

        outcome = await SessionAdapter(session).respond("prompt")

        assert outcome == ToolInvocation(request)

    async def test_other_errors_propagate(self) -> None:
        session = FakeSession(error=ValueError("guardrail"))

        with pytest.raises(ValueError, match="guardrail"):
            await SessionAdapter(session).respond("prompt")

    def test_captured_request_found_through_wrappers(self) -> None:
        request = ToolCallRequest(name="f", args="{}")
        try:
            try:
                raise InvocationCaptured(request)
            except InvocationCaptured as inner:
                raise RuntimeError("tool failed") from inner
        except RuntimeError as outer:
            error = outer

        assert captured_request(error) is request
        assert captured_request(ValueError("plain")) is None

    async def test_proxy_serializes_dict_arguments(self) -> None:
        proxy = ToolProxy.from_tool(WEATHER_TOOL)

        with pytest.raises(InvocationCaptured) as exc_info:
            await proxy.call({"city": "Paris"})

        assert exc_info.value.request.name == "lookupWeather"
        assert json.loads(exc_info.value.request.args) == {"city": "Paris"}
        assert json.loads(proxy.schema_description) == WEATHER_TOOL.function.parameters

    def test_model_description_carries_schema(self) -> None:
        proxy = ToolProxy.from_tool(WEATHER_TOOL)

        description, _, schema = proxy.model_description.partition("\n\nArguments JSON schema: ")

        assert description == "Look up the weather for a city"
        assert json.loads(schema) == WEATHER_TOOL.function.parameters

    def test_model_description_without_schema(self) -> None:
        assert ToolProxy("ping").model_description == "ping"
        assert ToolProxy("ping", "Check liveness").model_description == "Check liveness"


class TestOnDeviceChatCompletion:
    """Test non-streaming requests."""

    async def test_content_response(self, user_request) -> None:
        factory = FakeSessionFactory(FakeSession(text="  HELLO  "))
        client = OnDeviceChatClient(factory)

        result = await client.chat_completion_request(user_request)

        choice = result.choices[0]
        assert choice.message.content == "HELLO"
        assert choice.finish_reason == "stop"
        assert result.model == "fake-foundation-model"
        assert factory.session.prompts == ["User: Say HELLO"]

    async def test_no_tool_directive_without_tools(self, user_request) -> None:
        factory = FakeSessionFactory(FakeSession(text="ok"))
        client = OnDeviceChatClient(factory, persona="Persona.")

        await client.chat_completion_request(user_request)

        created = factory.created[0]
        assert created["instructions"] == f"Persona.\n\n{NO_TOOL_DIRECTIVE}"
        assert created["tools"] == []

    async def test_tool_call_captured(self) -> None:
        factory = ToolCallingFactory({"city": "Paris"})
        client = OnDeviceChatClient(factory, persona="Persona.")
        request = ChatRequest(
            messages=[UserMessage(content="Weather in Paris?")], tools=[WEATHER_TOOL]
        )

        result = await client.chat_completion_request(request)

        choice = result.choices[0]
        call = choice.message.tool_calls[0]
        assert choice.finish_reason == "tool_calls"
        assert choice.message.content is None
        assert call.function.name == "lookupWeather"
        assert call.function.parsed_arguments == {"city": "Paris"}
        assert factory.created[0]["instructions"] == "Persona."
        assert [tool.name for tool in factory.created[0]["tools"]] == ["lookupWeather"]

    async def test_unavailable(self, user_request) -> None:
        factory = FakeSessionFactory(available=False)
        client = OnDeviceChatClient(factory)

        with pytest.raises(BackendUnavailableError, match="device not eligible"):
            await client.chat_completion_request(user_request)

        assert factory.created == []

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, 0.75), (math.nan, 0.75), (math.inf, 0.75), (-1.0, 0.0), (3.5, 2.0), (0.3, 0.3)],
    )
    async def test_temperature_clamped(self, user_request, value, expected) -> None:
        factory = FakeSessionFactory(FakeSession(text="ok"))
        client = OnDeviceChatClient(factory)

        await client.chat_completion_request(user_request.model_copy(update={"temperature": value}))

        assert factory.created[0]["temperature"] == expected


class TestOnDeviceStreaming:
    """Test streamed requests."""

    async def test_snapshots_become_deltas(self, user_request) -> None:
        session = FakeSession(snapshots=["Hel", "Hello", "Hello", "Hello wor", "Hi", "Hi there"])
        client = OnDeviceChatClient(FakeSessionFactory(session))

        stream = await client.streaming_chat_completion_request(user_request)
        items = await stream.collect()

        contents = [item.choices[0].delta.content for item in items]
        assert contents == ["Hel", "lo", " wor", "Hi there"]
        assert all(item.choices[0].delta.role == "assistant" for item in items)

    async def test_streaming_persona_used(self, user_request) -> None:
        factory = FakeSessionFactory(FakeSession(snapshots=["ok"]))
        client = OnDeviceChatClient(factory, persona="Short.", streaming_persona="Long.")

        stream = await client.streaming_chat_completion_request(user_request)
        await stream.collect()

        assert factory.created[0]["instructions"].startswith("Long.")

    async def test_tool_call_ends_stream(self) -> None:
        client = OnDeviceChatClient(ToolCallingFactory('{"city":"Paris"}', preamble=("Checking",)))
        request = ChatRequest(messages=[UserMessage(content="Weather?")], tools=[WEATHER_TOOL])

        stream = await client.streaming_chat_completion_request(request)
        items = await stream.collect()

        assert isinstance(items[0], ChatCompletionChunk)
        assert isinstance(items[-1], ToolCallRequest)
        assert items[-1].name == "lookupWeather"
        assert json.loads(items[-1].args) == {"city": "Paris"}

    async def test_session_error_surfaces(self, user_request) -> None:
        session = FakeSession(snapshots=["partial"], error=RuntimeError("context overflow"))
        client = OnDeviceChatClient(FakeSessionFactory(session))

        stream = await client.streaming_chat_completion_request(user_request)

        with pytest.raises(RuntimeError, match="context overflow"):
            await stream.collect()

    async def test_unavailable_raised_before_stream(self, user_request) -> None:
        client = OnDeviceChatClient(FakeSessionFactory(available=False))

        with pytest.raises(BackendUnavailableError):
            await client.streaming_chat_completion_request(user_request)

    async def test_tool_call_without_content(self) -> None:
        client = OnDeviceChatClient(ToolCallingFactory({"city": "Paris"}))
        request = ChatRequest(messages=[UserMessage(content="Weather?")], tools=[WEATHER_TOOL])

        stream = await client.streaming_chat_completion_request(request)
        items = await stream.collect()

        assert len(items) == 1
        assert items[0].name == "lookupWeather"
        assert json.loads(items[0].args) == {"city": "Paris"}
