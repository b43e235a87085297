"""Shared LLM utility functions for retry, fence-stripping, and JSON parsing.

This module provides:
- _strip_json_fences: Remove markdown code fences from LLM output
- _parse_json_response: Parse JSON from LLM response after stripping fences
- _invoke_with_retry: Retry messages.create() on overload and 5xx responses
"""

import json
from typing import Any

import structlog
from anthropic import InternalServerError
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def _strip_json_fences(content: str) -> str:
    """Remove markdown code fences wrapping JSON output."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            content = content[first_newline + 1 :]
        if content.endswith("```"):
            content = content[:-3].rstrip()
    return content


def _extract_json_document(content: str) -> str:
    """Cut the outermost JSON object or array out of surrounding prose."""
    if content.startswith(("{", "[")):
        return content
    starts = [i for i in (content.find("{"), content.find("[")) if i != -1]
    if not starts:
        return content
    start = min(starts)
    end = content.rfind("}" if content[start] == "{" else "]")
    return content[start : end + 1] if end > start else content


def _parse_json_response(content: str) -> dict | list:
    """Parse JSON from LLM response, stripping fences first."""
    return json.loads(_extract_json_document(_strip_json_fences(content)))


@retry(
    retry=retry_if_exception_type((OverloadedError, InternalServerError)),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "claude_overloaded_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def _invoke_with_retry(
    client: Any,
    model: str,
    system: str,
    messages: list[dict],
    max_tokens: int = 4096,
    temperature: float = 0.3,
) -> str:
    """Invoke Anthropic messages.create() with retry on transient server errors.

    Retries up to 3 times with exponential backoff (2s, 4s, 8s max 30s).
    Only OverloadedError (529) and other 5xx responses are retried; rate
    limits, auth errors and bad requests propagate immediately.

    Args:
        client: AsyncAnthropic (or any object with .messages.create())
        model: Model name
        system: System prompt string
        messages: List of message dicts (role/content format)
        max_tokens: Maximum tokens for the response
        temperature: Sampling temperature

    Returns:
        Concatenated text of the response's text blocks
    """
    response = await client.messages.create(
        model=model,
        system=system,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
    )
    return "".join(getattr(block, "text", "") for block in response.content)
