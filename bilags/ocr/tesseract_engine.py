"""Local OCR engine using Tesseract.

Production-grade OCR implementation with:
- Configurable Tesseract path via settings or environment
- Multi-language recognition ("dan+eng")
- Word-level confidence and word counts
- Errors reported in the result instead of raised

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import logging
import os
import time
from pathlib import Path

import pytesseract
from PIL import Image

from bilags.ocr.base import OCRResult, split_langs
from bilags.shared import metrics
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)


class TesseractEngine:
    """OCR engine using the local Tesseract binary.

    Handles raster images only; PDFs have to go through the cloud engine.
    """

    name = "tesseract"

    def __init__(self, settings: Settings) -> None:
        """Initialize Tesseract engine.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path.

        ``APP_TESSERACT_CMD`` wins over the legacy ``TESSERACT_CMD`` variable.
        Common paths:
        - Linux: /usr/bin/tesseract
        - macOS: /opt/homebrew/bin/tesseract or /usr/local/bin/tesseract
        - Windows: C:\\Program Files\\Tesseract-OCR\\tesseract.exe
        """
        tesseract_cmd = self.settings.tesseract_cmd or os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        """Check if the tesseract binary can be executed.

        Returns:
            True if tesseract reports a version
        """
        try:
            pytesseract.get_tesseract_version()
            return True
        except Exception:
            return False

    def recognize(self, path: Path, lang: str) -> OCRResult:
        """Extract text from an image file.

        Args:
            path: Path to image file
            lang: Language list, e.g. "eng" or "dan,eng"

        Returns:
            OCRResult with text, average confidence and word count
        """
        if not path.exists():
            return OCRResult(text="", success=False, error=f"Image file not found: {path}")

        start = time.time()
        try:
            with Image.open(path) as image:
                data = pytesseract.image_to_data(
                    image,
                    lang="+".join(split_langs(lang)),
                    output_type=pytesseract.Output.DICT,
                    timeout=self.settings.ocr_timeout_seconds,
                )
        except Exception as e:
            metrics.ocr_requests_total.labels(engine=self.name, status="failed").inc()
            logger.error(f"Tesseract processing failed for {path.name}: {e}")
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")
        finally:
            metrics.ocr_processing_duration_seconds.labels(engine=self.name).observe(
                time.time() - start
            )

        # Rebuild text lines from word boxes, preserving reading order
        rows: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for i, word in enumerate(data.get("text", [])):
            word = str(word or "").strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            rows.setdefault(key, []).append(word)
            conf = float(data["conf"][i])
            if conf >= 0:
                confidences.append(conf)

        text = "\n".join(" ".join(words) for words in rows.values())
        word_count = sum(len(words) for words in rows.values())
        confidence = sum(confidences) / len(confidences) / 100 if confidences else 0.0

        metrics.ocr_requests_total.labels(engine=self.name, status="success").inc()
        logger.debug(
            f"Tesseract read {word_count} words from {path.name} "
            f"(confidence {confidence:.2f}, lang {lang})"
        )
        return OCRResult(
            text=text,
            success=True,
            confidence=confidence,
            word_count=word_count,
        )
