"""Error taxonomy and server error payload extraction."""

import json
from collections import deque
from typing import Any

UNKNOWN_ERROR_MESSAGE = "Unknown Error"


class ChatClientError(Exception):
    """Base error type for all chat client failures."""


class TransportError(ChatClientError):
    """Connection failure or timeout talking to a backend."""


class ChunkDecodeError(ChatClientError):
    """A single stream chunk could not be decoded."""


class RemoteServerError(ChatClientError):
    """Error payload or error status returned by the remote server."""

    def __init__(self, message: str, status: int | None = None, domain: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.domain = domain


class BackendUnavailableError(ChatClientError):
    """The backend cannot serve requests on this machine."""


class InvalidConfigurationError(ChatClientError):
    """Missing or invalid client configuration."""


class InvalidImageError(ChatClientError):
    """Image content that cannot be decoded."""


def _find_message(payload: dict[str, Any]) -> str | None:
    queue: deque[Any] = deque([payload])
    while queue:
        current = queue.popleft()
        if isinstance(current, dict):
            message = current.get("message")
            if isinstance(message, str):
                return message
            queue.extend(current.values())
    return None


def extract_error(data: bytes | str | dict[str, Any]) -> RemoteServerError | None:
    """Extract a server error from a response body.

    Recognizes ``{"status": 4xx/5xx, "error": ..., "message": ...}`` and
    ``{"error": {"message": ..., "code": ..., "metadata": {"message": ...}}}``.

    Args:
        data: Raw body or an already decoded JSON object

    Returns:
        The decoded error, or None when the body is not an error payload
    """
    if isinstance(data, dict):
        payload = data
    else:
        try:
            payload = json.loads(data)
        except (ValueError, TypeError):
            return None
    if not isinstance(payload, dict):
        return None

    status = payload.get("status")
    if isinstance(status, int) and not isinstance(status, bool) and 400 <= status <= 599:
        domain = payload.get("error")
        domain = domain if isinstance(domain, str) else UNKNOWN_ERROR_MESSAGE
        message = _find_message(payload) or f"Server returns an error: {status} {domain}"
        return RemoteServerError(message, status=status, domain=domain)

    error = payload.get("error")
    if isinstance(error, dict) and error:
        message = error.get("message")
        message = message if isinstance(message, str) else UNKNOWN_ERROR_MESSAGE
        code = error.get("code")
        code = code if isinstance(code, int) and not isinstance(code, bool) else 403
        metadata = error.get("metadata")
        if isinstance(metadata, dict) and isinstance(metadata.get("message"), str):
            message = f"{message} {metadata['message']}"
        return RemoteServerError(
            f"Server returns an error: {code} {message}",
            status=code,
            domain="Server Error",
        )

    return None
