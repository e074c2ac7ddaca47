"""OpenAI-based normalization provider.

Uses OpenAI structured outputs (``response_format`` with a strict JSON schema)
to normalize the heuristic draft against the OCR text.

Includes retry logic with exponential backoff for rate limits, server errors
and transport failures. Everything else ends the call with ``None`` so the
pipeline continues with the heuristic draft.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import openai
from openai import OpenAI
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.prompt import (
    INVOICE_SCHEMA,
    SCHEMA_NAME,
    SYSTEM_PROMPT,
    backoff_delay,
    build_user_prompt,
    parse_normalized,
)
from bilags.extraction.schema import ExtractedHeader, ExtractedLine, NormalizedResult
from bilags.shared import metrics
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)

RETRIABLE_ERRORS = (
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIConnectionError,  # includes APITimeoutError
)


class OpenAINormalizationProvider(NormalizationProvider):
    """Normalization provider backed by the OpenAI chat completions API.

    Requires APP_OPENAI_API_KEY. Without it ``normalize`` returns None
    immediately and no request is made.
    """

    def __init__(
        self,
        settings: Settings,
        client: OpenAI | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize OpenAI normalization provider.

        Args:
            settings: Application settings
            client: Optional preconfigured client (tests)
            sleep: Sleep function used between retries
        """
        super().__init__(settings)
        self._client = client
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if an OpenAI API key is configured.

        Returns:
            True if APP_OPENAI_API_KEY is set
        """
        return bool(self.settings.openai_api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            # Retries are handled here, not inside the SDK
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _wait(self, retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number - 1,
            self.settings.llm_min_delay_seconds,
            self.settings.llm_max_delay_seconds,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        metrics.normalization_retries_total.labels(provider=self.provider_name).inc()
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"OpenAI attempt {retry_state.attempt_number} failed ({error!r}); retrying"
        )

    def _complete(self, user_prompt: str) -> Any:
        return self._get_client().chat.completions.create(
            model=self.settings.llm_model,
            temperature=0,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {"name": SCHEMA_NAME, "schema": INVOICE_SCHEMA, "strict": True},
            },
        )

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
            logger.info("OpenAI key not configured; keeping heuristic draft")
            return None

        retrying = Retrying(
            retry=retry_if_exception_type(RETRIABLE_ERRORS),
            stop=stop_after_attempt(self.settings.llm_max_retries),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
        )
        user_prompt = build_user_prompt(text, draft_header, draft_lines)

        try:
            response = retrying(self._complete, user_prompt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.warning(f"OpenAI normalization gave up after retries: {last_error!r}")
            metrics.normalization_requests_total.labels(
                provider=self.provider_name, outcome="failed"
            ).inc()
            return None
        except openai.OpenAIError as e:
            logger.warning(f"OpenAI normalization failed (not retried): {e!r}")
            metrics.normalization_requests_total.labels(
                provider=self.provider_name, outcome="failed"
            ).inc()
            return None

        content = response.choices[0].message.content if response.choices else None
        result = parse_normalized(content)
        outcome = "success" if result is not None else "failed"
        if result is None:
            logger.warning("OpenAI returned content that does not match the invoice schema")
        metrics.normalization_requests_total.labels(
            provider=self.provider_name, outcome=outcome
        ).inc()
        return result
