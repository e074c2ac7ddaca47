"""Ollama-based normalization provider for self-hosted LLM inference.

Passes the invoice JSON schema as Ollama's ``format`` so the model is
constrained to the same structure as the OpenAI provider. Supports data
sovereignty requirements by running entirely on-premises.

See: https://github.com/ollama/ollama/blob/main/docs/api.md
"""

import logging
import time
from collections.abc import Callable

import httpx
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.prompt import (
    INVOICE_SCHEMA,
    SYSTEM_PROMPT,
    backoff_delay,
    build_user_prompt,
    parse_normalized,
)
from bilags.extraction.schema import ExtractedHeader, ExtractedLine, NormalizedResult
from bilags.shared import metrics
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)


def _is_retriable(error: BaseException) -> bool:
    """Rate limits, server errors and transport failures are worth another try."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, httpx.TransportError)


class OllamaNormalizationProvider(NormalizationProvider):
    """Normalization provider backed by an Ollama server.

    Enabled by setting APP_OLLAMA_BASE_URL (e.g. http://localhost:11434).
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize Ollama normalization provider.

        Args:
            settings: Application settings
            client: Optional preconfigured HTTP client
            sleep: Sleep function used between retries
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._client = client or httpx.Client(timeout=settings.llm_timeout_seconds)
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        return bool(self._base_url)

    def _wait(self, retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number - 1,
            self.settings.llm_min_delay_seconds,
            self.settings.llm_max_delay_seconds,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        metrics.normalization_retries_total.labels(provider=self.provider_name).inc()
        logger.warning(f"Ollama attempt {retry_state.attempt_number} failed; retrying")

    def _chat(self, user_prompt: str) -> str:
        response = self._client.post(
            f"{self._base_url}/api/chat",
            json={
                "model": self._model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                "format": INVOICE_SCHEMA,
                "stream": False,
                "options": {"temperature": 0},
            },
        )
        response.raise_for_status()
        payload = response.json()
        message = payload.get("message") if isinstance(payload, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            logger.warning(f"Ollama returned an unexpected body: {str(payload)[:200]}")
            return ""
        return content

    def normalize(
        self,
        text: str,
        draft_header: ExtractedHeader,
        draft_lines: list[ExtractedLine],
    ) -> NormalizedResult | None:
        if not self.is_available():
            metrics.normalization_requests_total.labels(
                provider=self.provider_name, outcome="skipped"
            ).inc()
            return None

        retrying = Retrying(
            retry=retry_if_exception(_is_retriable),
            stop=stop_after_attempt(self.settings.llm_max_retries),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
        )
        try:
            content = retrying(self._chat, build_user_prompt(text, draft_header, draft_lines))
        except (RetryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Ollama normalization failed: {e!r}")
            metrics.normalization_requests_total.labels(
                provider=self.provider_name, outcome="failed"
            ).inc()
            return None

        result = parse_normalized(content)
        metrics.normalization_requests_total.labels(
            provider=self.provider_name, outcome="success" if result else "failed"
        ).inc()
        return result
