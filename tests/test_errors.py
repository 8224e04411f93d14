"""Tests for server error extraction."""

import json

import pytest

from chat_client_kit.core.errors import RemoteServerError, extract_error


class TestExtractError:
    """Test the recognized error payload shapes."""

    def test_status_shape(self) -> None:
        error = extract_error({"status": 502, "error": "Bad Gateway", "message": "upstream died"})

        assert isinstance(error, RemoteServerError)
        assert error.status == 502
        assert error.domain == "Bad Gateway"
        assert error.message == "upstream died"

    def test_status_shape_with_nested_message(self) -> None:
        error = extract_error({"status": 400, "detail": {"message": "bad field"}})

        assert error.message == "bad field"
        assert error.domain == "Unknown Error"

    def test_status_shape_without_message(self) -> None:
        error = extract_error({"status": 500, "error": "Internal"})

        assert error.message == "Server returns an error: 500 Internal"

    def test_success_status_is_not_an_error(self) -> None:
        assert extract_error({"status": 200, "message": "ok"}) is None

    def test_error_object_shape(self) -> None:
        body = json.dumps({"error": {"message": "Rate limited", "code": 429}})

        error = extract_error(body)

        assert error.status == 429
        assert str(error) == "Server returns an error: 429 Rate limited"

    def test_error_object_defaults(self) -> None:
        error = extract_error(b'{"error": {"type": "invalid"}}')

        assert error.status == 403
        assert str(error) == "Server returns an error: 403 Unknown Error"

    def test_error_object_metadata_appended(self) -> None:
        error = extract_error(
            {"error": {"message": "Provider error", "code": 502, "metadata": {"message": "timeout"}}}
        )

        assert str(error) == "Server returns an error: 502 Provider error timeout"

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            "[1, 2]",
            '{"choices": []}',
            '{"error": null}',
            '{"error": "plain string"}',
            b"",
        ],
    )
    def test_not_an_error(self, body) -> None:
        assert extract_error(body) is None
