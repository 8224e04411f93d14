"""Apple Foundation Models binding through ``apple_fm_sdk``.

The SDK only exists on Apple silicon machines running a supported OS, so
it is imported on first use.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from chat_client_kit.core.errors import BackendUnavailableError
from chat_client_kit.ondevice.session import ToolProxy
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

MODEL_IDENTIFIER = "apple-foundation-model"


def _import_sdk() -> Any:
    try:
        import apple_fm_sdk
    except ImportError as e:
        raise BackendUnavailableError(
            "apple_fm_sdk is not installed; install the 'apple' extra"
        ) from e
    return apple_fm_sdk


def _arguments_json(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    for attribute in ("json_string", "json", "payload"):
        value = getattr(arguments, attribute, None)
        if callable(value):
            value = value()
        if isinstance(value, str):
            return value
    try:
        return json.dumps(arguments)
    except TypeError:
        return str(arguments)


def _bind_tool(fm: Any, proxy: ToolProxy) -> Any:
    """Expose a proxy as an SDK tool whose call delegates to the proxy.

    Assumes the SDK accepts ``fm.Tool`` subclasses carrying ``name`` and
    ``description`` class attributes plus an ``async call(arguments)``
    method, and that the session passes the decoded arguments to ``call``.
    The SDK has no way to declare a JSON schema here, so the schema rides
    in the description. Only this function depends on that shape.
    """

    class CapturedTool(fm.Tool):
        name = proxy.name
        description = proxy.model_description

        async def call(self, arguments: Any) -> str:
            return await proxy.call(_arguments_json(arguments))

    CapturedTool.__name__ = f"CapturedTool_{proxy.name}"
    return CapturedTool()


class AppleSession:
    """Session wrapper yielding plain strings."""

    def __init__(self, session: Any, options: Any = None) -> None:
        self._session = session
        self._options = options

    def _kwargs(self) -> dict[str, Any]:
        return {"options": self._options} if self._options is not None else {}

    async def respond(self, prompt: str) -> str:
        response = await self._session.respond(prompt, **self._kwargs())
        return str(getattr(response, "content", response))

    async def stream_response(self, prompt: str) -> AsyncIterator[str]:
        async for snapshot in self._session.stream_response(prompt, **self._kwargs()):
            yield str(getattr(snapshot, "content", snapshot))


class AppleSessionFactory:
    """Creates ``LanguageModelSession`` objects for the system model."""

    model_identifier = MODEL_IDENTIFIER

    def __init__(self) -> None:
        self._model: Any = None

    def _system_model(self) -> Any:
        if self._model is None:
            fm = _import_sdk()
            self._model = fm.SystemLanguageModel()
        return self._model

    def availability(self) -> tuple[bool, str | None]:
        try:
            available, reason = self._system_model().is_available()
        except BackendUnavailableError as e:
            return False, str(e)
        return bool(available), None if available else str(reason)

    def create(self, instructions: str, tools: list[ToolProxy], temperature: float) -> AppleSession:
        fm = _import_sdk()
        kwargs: dict[str, Any] = {"model": self._system_model(), "instructions": instructions}
        if tools:
            kwargs["tools"] = [_bind_tool(fm, proxy) for proxy in tools]
        options_type = getattr(fm, "GenerationOptions", None)
        options = options_type(temperature=temperature) if options_type is not None else None
        logger.debug("ondevice.session.create", tools=len(tools), temperature=temperature)
        return AppleSession(fm.LanguageModelSession(**kwargs), options)
