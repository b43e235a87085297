"""Tests for LLM helper utilities."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from anthropic import BadRequestError, InternalServerError
from anthropic._exceptions import OverloadedError
from tenacity import wait_none

from benchmarkai.services.llm_helpers import (
    _extract_json_document,
    _invoke_with_retry,
    _parse_json_response,
    _strip_json_fences,
)

pytestmark = pytest.mark.unit


def _response(status_code: int) -> httpx.Response:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return httpx.Response(status_code=status_code, text="error", request=request)


def _make_mock_client(*side_effect) -> MagicMock:
    client = MagicMock()
    client.messages = MagicMock()
    client.messages.create = AsyncMock(side_effect=list(side_effect))
    return client


def _message(*texts: str) -> MagicMock:
    message = MagicMock()
    message.content = [MagicMock(text=t) for t in texts]
    return message


class TestStripJsonFences:
    def test_no_fences(self):
        assert _strip_json_fences('{"key": "value"}') == '{"key": "value"}'

    def test_json_fence(self):
        assert _strip_json_fences('```json\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_plain_fence(self):
        assert _strip_json_fences('```\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_fence_with_whitespace(self):
        assert _strip_json_fences('  ```json\n{"key": "value"}\n```  ') == '{"key": "value"}'

    def test_unterminated_fence(self):
        assert _strip_json_fences('```json\n{"key": "value"}') == '{"key": "value"}'


class TestExtractJsonDocument:
    def test_object_in_prose(self):
        raw = 'Here is the report:\n{"title": "A"}\nHope this helps.'
        assert _extract_json_document(raw) == '{"title": "A"}'

    def test_already_json(self):
        assert _extract_json_document('[1, 2]') == '[1, 2]'

    def test_no_json_left_untouched(self):
        assert _extract_json_document("nothing here") == "nothing here"


class TestParseJsonResponse:
    def test_plain_json(self):
        assert _parse_json_response('{"key": "value"}') == {"key": "value"}

    def test_fenced_json(self):
        assert _parse_json_response('```json\n{"key": "value"}\n```') == {"key": "value"}

    def test_array_json(self):
        assert _parse_json_response('[{"id": 1}, {"id": 2}]') == [{"id": 1}, {"id": 2}]

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            _parse_json_response("not json at all")

    def test_truncated_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            _parse_json_response('{"title": "Benchmark", "executiveSummary": ["a"')


class TestInvokeWithRetry:
    async def test_success_on_first_try(self):
        client = _make_mock_client(_message("OK"))

        result = await _invoke_with_retry(client, "model", "system", [{"role": "user", "content": "hi"}])

        assert result == "OK"
        assert client.messages.create.call_count == 1

    async def test_joins_text_blocks(self):
        client = _make_mock_client(_message('{"a": ', "1}"))

        result = await _invoke_with_retry(client, "model", "system", [])

        assert result == '{"a": 1}'

    async def test_passes_sampling_parameters(self):
        client = _make_mock_client(_message("OK"))

        await _invoke_with_retry(client, "claude-test", "sys", [], max_tokens=8000, temperature=0.2)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == 8000
        assert kwargs["temperature"] == 0.2

    async def test_retries_on_overloaded(self):
        overloaded = OverloadedError(message="Overloaded", response=_response(529), body=None)
        client = _make_mock_client(overloaded, _message("OK"))

        result = await _invoke_with_retry.retry_with(wait=wait_none())(client, "model", "system", [])

        assert result == "OK"
        assert client.messages.create.call_count == 2

    async def test_retries_on_internal_server_error(self):
        error = InternalServerError(message="boom", response=_response(500), body=None)
        client = _make_mock_client(error, error, _message("OK"))

        result = await _invoke_with_retry.retry_with(wait=wait_none())(client, "model", "system", [])

        assert result == "OK"
        assert client.messages.create.call_count == 3

    async def test_gives_up_after_four_attempts(self):
        overloaded = OverloadedError(message="Overloaded", response=_response(529), body=None)
        client = _make_mock_client(*([overloaded] * 4))

        with pytest.raises(OverloadedError):
            await _invoke_with_retry.retry_with(wait=wait_none())(client, "model", "system", [])

        assert client.messages.create.call_count == 4

    async def test_bad_request_not_retried(self):
        error = BadRequestError(message="bad", response=_response(400), body=None)
        client = _make_mock_client(error)

        with pytest.raises(BadRequestError):
            await _invoke_with_retry.retry_with(wait=wait_none())(client, "model", "system", [])

        assert client.messages.create.call_count == 1
