"""Remote chat completion client for OpenAI-compatible HTTP endpoints."""

from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from chat_client_kit.backends.base import count_stream_object, track_request
from chat_client_kit.config import Settings
from chat_client_kit.core.canonical import normalize
from chat_client_kit.core.errors import (
    ChunkDecodeError,
    InvalidConfigurationError,
    RemoteServerError,
    TransportError,
    extract_error,
)
from chat_client_kit.core.reasoning import ReasoningContentParser
from chat_client_kit.core.sse import aiter_sse
from chat_client_kit.core.stream import ChatStream, Emit
from chat_client_kit.core.stream_processor import RemoteChatStreamProcessor
from chat_client_kit.models import ChatRequest, ChatResponseBody
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


class RemoteChatRequestBuilder:
    """Builds URL, headers and body for the remote endpoint."""

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None,
        path: str | None = None,
        additional_headers: dict[str, str] | None = None,
        additional_body_fields: dict[str, Any] | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.path = path
        self.additional_headers = additional_headers or {}
        self.additional_body_fields = additional_body_fields or {}

    def build(
        self, request: ChatRequest, model: str | None, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Build request parameters.

        Args:
            request: Chat request to send
            model: Model name that overrides the request's model
            stream: Whether to ask for a server-sent event stream

        Returns:
            Tuple of (url, headers, body)

        Raises:
            InvalidConfigurationError: If the base URL or API key is missing
        """
        if not self.base_url:
            raise InvalidConfigurationError("Remote base URL is not configured")
        if not self.api_key:
            raise InvalidConfigurationError("Remote API key is not configured")

        path = self.path or ""
        if path and not path.startswith("/"):
            path = f"/{path}"
        url = f"{self.base_url.rstrip('/')}{path}"

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.additional_headers)

        body = normalize(request).to_wire()
        if model:
            body["model"] = model
        body["stream"] = stream
        if stream:
            body["stream_options"] = {"include_usage": True}
        else:
            body.pop("stream_options", None)

        # Extra body fields win over everything built above
        body.update(self.additional_body_fields)
        return url, headers, body


class RemoteChatClient:
    """Client for a remote chat completion endpoint."""

    name = "remote"

    def __init__(
        self,
        model: str | None,
        base_url: str | None,
        api_key: str | None,
        path: str | None = "/v1/chat/completions",
        additional_headers: dict[str, str] | None = None,
        additional_body_fields: dict[str, Any] | None = None,
        timeout: float = 120.0,
        max_retries: int = 0,
        reasoning_parser: ReasoningContentParser | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize client.

        Args:
            model: Model name sent with every request
            base_url: Endpoint base URL
            api_key: Bearer token
            path: Path appended to the base URL
            additional_headers: Extra HTTP headers
            additional_body_fields: Extra top-level body fields
            timeout: Request timeout in seconds
            max_retries: Transport-error retries for non-streaming requests
            reasoning_parser: Parser splitting inline reasoning markup
            transport: Custom httpx transport
            retry_wait: Wait strategy between retries
        """
        self.model = model
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.transport = transport
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.reasoning_parser = reasoning_parser or ReasoningContentParser()
        self.processor = RemoteChatStreamProcessor(self.reasoning_parser)
        self.request_builder = RemoteChatRequestBuilder(
            base_url=base_url,
            api_key=api_key,
            path=path,
            additional_headers=additional_headers,
            additional_body_fields=additional_body_fields,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def chat_completion_request(self, request: ChatRequest) -> ChatResponseBody:
        """Send a non-streaming request.

        Args:
            request: Chat request

        Returns:
            Decoded response with reasoning separated from content
        """
        url, headers, body = self.request_builder.build(request, self.model, stream=False)
        logger.debug("remote.request", url=url, model=body.get("model"), stream=False)

        async with track_request(self.name, "complete"):
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=self.retry_wait,
                retry=retry_if_exception_type(TransportError),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    response = await self._post(url, headers, body)
            return self._decode_response(response)

    async def streaming_chat_completion_request(self, request: ChatRequest) -> ChatStream:
        """Send a streaming request.

        The HTTP request is issued when the returned stream is first pulled.

        Args:
            request: Chat request

        Returns:
            Stream of chunks followed by assembled tool calls
        """
        url, headers, body = self.request_builder.build(request, self.model, stream=True)
        logger.debug("remote.request", url=url, model=body.get("model"), stream=True)

        async def produce(emit: Emit) -> None:
            async with track_request(self.name, "stream"), self._client() as client:
                try:
                    async with client.stream("POST", url, headers=headers, json=body) as response:
                        if response.is_error:
                            raw = await response.aread()
                            raise self._status_error(response, raw)
                        events = aiter_sse(response.aiter_lines())
                        async for item in self.processor.process(events):
                            await emit(count_stream_object(self.name, item))
                except httpx.TimeoutException as e:
                    logger.error("remote.timeout", url=url, error=str(e))
                    raise TransportError(f"Request timed out: {e}") from e
                except httpx.TransportError as e:
                    logger.error("remote.transport_failed", url=url, error=str(e))
                    raise TransportError(f"Connection failed: {e}") from e

        return ChatStream(produce, name="remote-stream")

    async def _post(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> httpx.Response:
        async with self._client() as client:
            try:
                return await client.post(url, headers=headers, json=body)
            except httpx.TimeoutException as e:
                logger.warning("remote.timeout", url=url, error=str(e))
                raise TransportError(f"Request timed out: {e}") from e
            except httpx.TransportError as e:
                logger.warning("remote.transport_failed", url=url, error=str(e))
                raise TransportError(f"Connection failed: {e}") from e

    def _status_error(self, response: httpx.Response, raw: bytes) -> RemoteServerError:
        error = extract_error(raw)
        if error is None:
            error = RemoteServerError(
                f"Server returns an error: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
                domain=response.reason_phrase,
            )
        logger.error("remote.server_error", status=error.status, error=error.message)
        return error

    def _decode_response(self, response: httpx.Response) -> ChatResponseBody:
        raw = response.content
        if response.is_error:
            raise self._status_error(response, raw)

        error = extract_error(raw)
        if error is not None:
            logger.error("remote.server_error", status=error.status, error=error.message)
            raise error

        try:
            body = ChatResponseBody.model_validate_json(raw)
        except ValidationError as e:
            raise ChunkDecodeError(f"Unexpected response body: {e}") from e

        body.choices = [
            choice.model_copy(update={"message": self.reasoning_parser.extract(choice.message)})
            for choice in body.choices
        ]
        logger.info("remote.response", model=body.model, choices=len(body.choices))
        return body


def create_remote_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RemoteChatClient:
    """Factory for the remote client.

    Args:
        settings: Application settings
        transport: Custom httpx transport

    Returns:
        Configured client
    """
    return RemoteChatClient(
        model=settings.remote_model,
        base_url=settings.remote_base_url,
        api_key=settings.remote_api_key,
        path=settings.remote_path,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        reasoning_parser=ReasoningContentParser(
            settings.reasoning_start_token, settings.reasoning_end_token
        ),
        transport=transport,
    )
