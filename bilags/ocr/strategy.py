"""Ordered OCR fallback strategies.

A vendor policy is an ordered list of strategies. Each strategy wraps one
engine, retries its own retriable failures, and reports a uniform ``Attempt``.
``run_strategies`` walks the list in order and stops at the first result that
is good enough; engines never run concurrently.
"""

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path

from pydantic import BaseModel
from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from bilags.ocr.base import OCREngine, OCRResult
from bilags.shared.errors import OcrError

logger = logging.getLogger(__name__)


class AttemptStatus(str, Enum):
    OK = "ok"
    RETRIABLE = "retriable"
    FATAL = "fatal"


class Attempt(BaseModel):
    """Outcome of running one strategy."""

    status: AttemptStatus
    engine: str
    text: str = ""
    error: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is AttemptStatus.OK


class EngineStrategy:
    """Run one OCR engine, retrying retriable failures up to ``max_attempts``."""

    def __init__(
        self,
        engine: OCREngine,
        max_attempts: int = 1,
        wait: wait_base | None = None,
    ) -> None:
        self.engine = engine
        self.max_attempts = max(1, max_attempts)
        self.wait = wait or wait_exponential_jitter(initial=1, max=10)

    @property
    def name(self) -> str:
        return self.engine.name

    def _once(self, path: Path, lang: str) -> Attempt:
        result: OCRResult = self.engine.recognize(path, lang)
        if result.success:
            return Attempt(status=AttemptStatus.OK, engine=self.name, text=result.text)
        return Attempt(
            status=AttemptStatus.RETRIABLE if result.retriable else AttemptStatus.FATAL,
            engine=self.name,
            error=result.error,
            error_code=result.error_code,
        )

    def attempt(self, path: Path, lang: str) -> Attempt:
        retrying = Retrying(
            retry=retry_if_result(lambda a: a.status is AttemptStatus.RETRIABLE),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
        )
        try:
            return retrying(self._once, path, lang)
        except RetryError as e:
            last: Attempt = e.last_attempt.result()
            return last


def run_strategies(
    strategies: Sequence[EngineStrategy],
    path: Path,
    lang: str,
    good_enough: Callable[[str], bool],
) -> Attempt:
    """Try strategies in order until one yields text that is good enough.

    A strategy that fails hands over to the next one. A strategy that succeeds
    with text that is not good enough also hands over, but its text is kept: the
    final answer is the latest non-empty text, else the first successful one.

    Args:
        strategies: Ordered strategies to try
        path: File to recognize
        lang: OCR language list
        good_enough: Predicate deciding whether to stop early

    Returns:
        The chosen successful Attempt

    Raises:
        OcrError: If no strategy succeeded (carries the last error code)
    """
    successes: list[Attempt] = []
    last_failure: Attempt | None = None

    for strategy in strategies:
        attempt = strategy.attempt(path, lang)
        if not attempt.ok:
            logger.warning(f"OCR via {attempt.engine} failed for {path.name}: {attempt.error}")
            last_failure = attempt
            continue
        successes.append(attempt)
        if good_enough(attempt.text):
            return attempt
        logger.info(f"OCR via {attempt.engine} looks empty for {path.name}; trying next engine")

    for attempt in reversed(successes):
        if attempt.text.strip():
            return attempt
    if successes:
        return successes[0]

    if last_failure is None:
        raise OcrError("No OCR engine configured", code="ocr_unavailable")
    raise OcrError(last_failure.error or "OCR failed", code=last_failure.error_code)
