"""AI service client: the single seam between report generation and the LLM.

ReportAIClient is the protocol the generator depends on. AnthropicReportClient
is the production implementation; FakeReportAIClient (ai_client_fake) backs dev
mode and tests. Provider errors are translated into the typed GenerationError
family here so nothing above this module knows about the SDK.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import anthropic
import structlog

from benchmarkai.core.config import get_settings
from benchmarkai.core.exceptions import (
    RateLimitedError,
    UpstreamError,
    UpstreamUnauthenticatedError,
)
from benchmarkai.services.llm_helpers import _invoke_with_retry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """One AI call: instructions, prompt and the tier's sampling budget."""

    system_instructions: str
    user_prompt: str
    max_tokens: int
    temperature: float


@runtime_checkable
class ReportAIClient(Protocol):
    """Black-box text generator with a JSON-shaped contract."""

    async def complete(self, request: GenerationRequest) -> str:
        """Return the raw model text for ``request``.

        Raises:
            RateLimitedError: provider rate limit
            UpstreamUnauthenticatedError: credentials rejected
            UpstreamError: any other provider failure
        """
        ...


class AnthropicReportClient:
    """ReportAIClient over AsyncAnthropic."""

    def __init__(self, api_key: str | None = None, model: str | None = None, client=None):
        settings = get_settings()
        self.model = model or settings.report_model
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key or settings.anthropic_api_key)

    async def complete(self, request: GenerationRequest) -> str:
        try:
            return await _invoke_with_retry(
                self._client,
                self.model,
                request.system_instructions,
                [{"role": "user", "content": request.user_prompt}],
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except anthropic.RateLimitError as exc:
            logger.warning("ai_rate_limited", model=self.model, error=str(exc))
            raise RateLimitedError("AI service rate limit reached, retry in a few minutes") from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            logger.error("ai_unauthenticated", model=self.model, error=str(exc))
            raise UpstreamUnauthenticatedError("Invalid AI service configuration") from exc
        except anthropic.APIStatusError as exc:
            logger.error("ai_upstream_error", model=self.model, status_code=exc.status_code, error=str(exc))
            raise UpstreamError(f"AI service error ({exc.status_code})") from exc
        except anthropic.APIError as exc:
            logger.error("ai_upstream_error", model=self.model, error=str(exc), error_type=type(exc).__name__)
            raise UpstreamError(f"AI service unreachable: {type(exc).__name__}") from exc


def build_ai_client() -> ReportAIClient:
    """AnthropicReportClient when an API key is configured, the fake otherwise (dev mode)."""
    settings = get_settings()
    if settings.anthropic_api_key:
        return AnthropicReportClient()

    from benchmarkai.services.ai_client_fake import FakeReportAIClient

    logger.warning("ai_client_fake_in_use", reason="no_anthropic_api_key")
    return FakeReportAIClient()
