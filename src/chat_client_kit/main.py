"""OpenAI-compatible HTTP gateway over the registered chat backends."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from chat_client_kit import __version__
from chat_client_kit.backends import (
    create_local_client,
    create_ondevice_client,
    create_remote_client,
)
from chat_client_kit.config import Settings, get_settings
from chat_client_kit.core.errors import (
    BackendUnavailableError,
    ChatClientError,
    InvalidConfigurationError,
    RemoteServerError,
    TransportError,
)
from chat_client_kit.core.stream import ChatStream
from chat_client_kit.metrics import MetricsExporter
from chat_client_kit.models import (
    ChatCompletionChunk,
    ChatRequest,
    ChunkChoice,
    Delta,
    DeltaFunction,
    DeltaToolCall,
    ToolCallRequest,
)
from chat_client_kit.providers import BackendRegistry
from chat_client_kit.utils import configure_logging, get_logger

logger = get_logger(__name__)


def create_registry(settings: Settings) -> BackendRegistry:
    """Register every backend the settings enable.

    Args:
        settings: Application settings

    Returns:
        Populated registry
    """
    registry = BackendRegistry()

    if settings.remote_api_key:
        registry.add_backend(
            "remote",
            create_remote_client(settings),
            models=[settings.remote_model],
        )

    if settings.local_model_directory:
        try:
            registry.add_backend("local", create_local_client(settings))
        except InvalidConfigurationError as e:
            logger.error("backend.local_unavailable", error=str(e))

    if settings.ondevice_enabled:
        registry.add_backend("ondevice", create_ondevice_client(settings))

    return registry


def _error_status(error: ChatClientError) -> int:
    if isinstance(error, BackendUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, (RemoteServerError, TransportError)):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, InvalidConfigurationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_body(error: Exception) -> dict:
    return {"error": {"message": str(error), "type": type(error).__name__}}


def _tool_call_chunk(item: ToolCallRequest, tool_index: int) -> ChatCompletionChunk:
    return ChatCompletionChunk(
        choices=[
            ChunkChoice(
                delta=Delta(
                    tool_calls=[
                        DeltaToolCall(
                            index=tool_index,
                            id=item.id,
                            type="function",
                            function=DeltaFunction(name=item.name, arguments=item.args),
                        )
                    ]
                ),
                finish_reason="tool_calls",
            )
        ]
    )


def _without_tool_fragments(chunk: ChatCompletionChunk) -> ChatCompletionChunk | None:
    """Drop raw tool call fragments, which are sent once assembled instead."""
    if not any(choice.delta.tool_calls for choice in chunk.choices):
        return chunk
    stripped = chunk.model_copy(deep=True)
    for choice in stripped.choices:
        choice.delta.tool_calls = None
    if stripped.usage or any(
        choice.finish_reason is not None or choice.delta.model_dump(exclude_none=True)
        for choice in stripped.choices
    ):
        return stripped
    return None


async def _sse_events(stream: ChatStream) -> AsyncIterator[str]:
    tool_index = 0
    async with stream:
        try:
            async for item in stream:
                if isinstance(item, ChatCompletionChunk):
                    chunk = _without_tool_fragments(item)
                    if chunk is None:
                        continue
                else:
                    chunk = _tool_call_chunk(item, tool_index)
                    tool_index += 1
                yield f"data: {chunk.model_dump_json(exclude_none=True)}\n\n"
        except ChatClientError as e:
            logger.error("request.stream_failed", error=str(e), type=type(e).__name__)
            yield f"data: {json.dumps(_error_body(e))}\n\n"
    yield "data: [DONE]\n\n"


def create_app(registry: BackendRegistry | None = None) -> FastAPI:
    """Build the gateway application.

    Args:
        registry: Preconfigured registry; built from settings at startup when omitted

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        settings = get_settings()
        configure_logging(settings.log_level)

        if getattr(app.state, "registry", None) is None:
            app.state.registry = create_registry(settings)

        logger.info(
            "startup",
            version=__version__,
            host=settings.host,
            port=settings.port,
            backends=[entry["id"] for entry in app.state.registry.list_backends()],
        )

        yield

        logger.info("shutdown")

    app = FastAPI(
        title="Chat Client Kit",
        description="One chat completion contract over remote, local and on-device models",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = registry

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/ready")
    async def readiness_check(request: Request) -> JSONResponse:
        """Readiness check endpoint."""
        registry = request.app.state.registry
        if registry is None or len(registry) == 0:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not ready", "backends": 0},
            )
        return JSONResponse(content={"status": "ready", "backends": len(registry)})

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        """Prometheus metrics endpoint."""
        content_type, metrics_body = MetricsExporter.get_prometheus_format()
        return PlainTextResponse(
            content=metrics_body.decode("utf-8"),
            media_type=content_type,
        )

    @app.get("/backends")
    async def list_backends(request: Request) -> JSONResponse:
        """Registered backends."""
        registry = request.app.state.registry
        return JSONResponse(content={"backends": registry.list_backends() if registry else []})

    @app.post("/v1/chat/completions", response_model=None)
    async def chat_completions(request: Request) -> JSONResponse | StreamingResponse:
        """Chat completions endpoint."""
        try:
            body = await request.json()
            chat_request = ChatRequest.model_validate(body)
        except ValueError as e:
            logger.warning("request.invalid", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": {"message": str(e), "type": "invalid_request_error"}},
            )

        registry = request.app.state.registry
        entry, model = registry.resolve(chat_request.model) if registry else (None, None)
        if entry is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=_error_body(
                    BackendUnavailableError(f"No backend available for model {chat_request.model!r}")
                ),
            )
        chat_request = chat_request.model_copy(update={"model": model})

        logger.info(
            "request.received",
            backend=entry.id,
            model=model,
            messages=len(chat_request.messages),
            stream=bool(chat_request.stream),
        )

        try:
            if chat_request.stream:
                stream = await entry.service.streaming_chat_completion_request(chat_request)
                return StreamingResponse(_sse_events(stream), media_type="text/event-stream")
            result = await entry.service.chat_completion_request(chat_request)
            return JSONResponse(content=result.model_dump(mode="json", exclude_none=True))
        except ChatClientError as e:
            logger.error("request.failed", backend=entry.id, error=str(e), type=type(e).__name__)
            return JSONResponse(status_code=_error_status(e), content=_error_body(e))

    return app


app = create_app()


def main():
    """CLI entry point."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "chat_client_kit.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
