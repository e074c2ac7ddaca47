"""Cloud OCR engine using the OCR.space parse API.

Used for PDFs (the local engine cannot rasterize them) and as the fallback when
local OCR fails or returns next to nothing. The call is a multipart upload;
any non-2xx status or an ``IsErroredOnProcessing`` body counts as a failure.

See: https://ocr.space/OCRAPI
"""

import logging
import mimetypes
import time
from pathlib import Path
from typing import Any

import httpx

from bilags.ocr.base import OCRResult, split_langs
from bilags.shared import metrics
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)


class OcrSpaceEngine:
    """OCR engine backed by the OCR.space HTTP API."""

    name = "ocrspace"

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize OCR.space engine.

        Args:
            settings: Application settings with ocrspace_* fields
            client: Optional preconfigured HTTP client
        """
        self.settings = settings
        self._client = client or httpx.Client(timeout=settings.ocr_timeout_seconds)

    def is_available(self) -> bool:
        """Check if an OCR.space API key is configured.

        Returns:
            True if APP_OCRSPACE_API_KEY is set
        """
        return bool(self.settings.ocrspace_api_key)

    def recognize(self, path: Path, lang: str) -> OCRResult:
        """Upload a file to OCR.space and return the parsed text.

        Args:
            path: Path to a PDF or image file
            lang: Language list, e.g. "eng" or "dan,eng"

        Returns:
            OCRResult; transport errors and 5xx responses are marked retriable
        """
        if not self.is_available():
            return OCRResult(
                text="",
                success=False,
                error="OCR.space API key not configured",
                error_code="ocrspace_key_missing",
            )
        if not path.exists():
            return OCRResult(text="", success=False, error=f"File not found: {path}")

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        form = {
            "apikey": self.settings.ocrspace_api_key,
            "language": ",".join(split_langs(lang)),
            "isCreateSearchablePdf": "false",
            "isTable": "false",
            "OCREngine": str(self.settings.ocrspace_engine),
        }

        start = time.time()
        try:
            with path.open("rb") as fh:
                response = self._client.post(
                    self.settings.ocrspace_url,
                    data=form,
                    files={"file": (path.name, fh, content_type)},
                )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            metrics.ocr_requests_total.labels(engine=self.name, status="failed").inc()
            logger.warning(f"OCR.space HTTP {status_code} for {path.name}")
            return OCRResult(
                text="",
                success=False,
                error=f"OCR.space HTTP {status_code}",
                error_code="ocrspace_error",
                retriable=status_code == 429 or status_code >= 500,
            )
        except httpx.HTTPError as e:
            metrics.ocr_requests_total.labels(engine=self.name, status="failed").inc()
            logger.warning(f"OCR.space transport error for {path.name}: {e}")
            return OCRResult(
                text="",
                success=False,
                error=f"OCR.space request failed: {str(e)}",
                error_code="ocrspace_error",
                retriable=True,
            )
        except ValueError as e:
            metrics.ocr_requests_total.labels(engine=self.name, status="failed").inc()
            return OCRResult(
                text="",
                success=False,
                error=f"OCR.space returned invalid JSON: {str(e)}",
                error_code="ocrspace_error",
            )
        finally:
            metrics.ocr_processing_duration_seconds.labels(engine=self.name).observe(
                time.time() - start
            )

        if payload.get("IsErroredOnProcessing"):
            message = payload.get("ErrorMessage")
            if isinstance(message, list):
                message = message[0] if message else None
            metrics.ocr_requests_total.labels(engine=self.name, status="failed").inc()
            return OCRResult(
                text="",
                success=False,
                error=f"ocrspace_error: {message or 'unknown'}",
                error_code="ocrspace_error",
            )

        parts = [str(p.get("ParsedText") or "") for p in payload.get("ParsedResults") or []]
        metrics.ocr_requests_total.labels(engine=self.name, status="success").inc()
        return OCRResult(text="\n".join(parts), success=True)
