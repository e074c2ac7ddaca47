"""Best-effort text acquisition from PDFs, images and plain text files.

PDFs use their native text layer when it carries enough characters and go
to the cloud OCR engine otherwise. Images are always OCR'd under the selected
vendor policy. Anything else is read as UTF-8.
"""

import logging
import re
from pathlib import Path

import pdfplumber

from bilags.ocr.base import OCREngine, split_langs
from bilags.ocr.strategy import EngineStrategy, run_strategies
from bilags.shared.config import Settings
from bilags.shared.errors import OcrError

logger = logging.getLogger(__name__)

MIN_NATIVE_CHARS = 50
REOCR_MIN_RATIO = 0.8

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".gif", ".webp"}

# Receipt markers of the secondary (Danish) language
_SECONDARY_MARKERS = re.compile(
    r"kvittering|moms|bel[øo]b|faktura|cvr|bilag|konto|s[æa]lger", re.IGNORECASE
)


def _non_ws_len(text: str) -> int:
    return len(re.sub(r"\s+", "", text or ""))


def _has_enough_text(text: str) -> bool:
    """Fewer than MIN_NATIVE_CHARS visible characters counts as an empty result."""
    return _non_ws_len(text) >= MIN_NATIVE_CHARS


def read_pdf_text(path: Path) -> str:
    """Read the native text layer of a PDF; failures yield an empty string."""
    try:
        with pdfplumber.open(path) as pdf:
            return "\n".join((page.extract_text() or "") for page in pdf.pages)
    except Exception as e:
        logger.warning(f"Native PDF text extraction failed for {path.name}: {e}")
        return ""


class TextAcquirer:
    """Turns a stored file into plain text.

    Engines are injected so tests and alternative deployments can swap them.
    """

    def __init__(self, settings: Settings, local_engine: OCREngine, cloud_engine: OCREngine):
        self.settings = settings
        self.local_engine = local_engine
        self.cloud_engine = cloud_engine

    def _strategies(self, vendor: str, is_pdf: bool) -> list[EngineStrategy]:
        cloud = EngineStrategy(self.cloud_engine, self.settings.ocrspace_max_attempts)
        if vendor == "ocrspace" or is_pdf:
            return [cloud]
        local = EngineStrategy(self.local_engine)
        if vendor == "tesseract":
            return [local]
        # auto: the cloud engine only joins the chain when it has a key
        if self.cloud_engine.is_available():
            return [local, cloud]
        return [local]

    def ocr(self, path: Path, vendor: str, lang: str) -> str:
        """OCR a file under a vendor policy.

        Args:
            path: PDF or image file
            vendor: "auto", "tesseract" or "ocrspace"
            lang: OCR language set

        Returns:
            Recognized text, possibly empty

        Raises:
            OcrError: If every engine in the chain failed
        """
        is_pdf = path.suffix.lower() == ".pdf"
        strategies = self._strategies(vendor, is_pdf)
        attempt = run_strategies(strategies, path, lang, good_enough=_has_enough_text)
        text = attempt.text
        logger.info(f"OCR of {path.name} via {attempt.engine}: {len(text)} chars")

        langs = split_langs(lang, default=self.settings.ocr_lang)
        secondary = self.settings.ocr_secondary_lang
        if text.strip() and secondary not in langs and _SECONDARY_MARKERS.search(text):
            retry_lang = "+".join([secondary, *langs])
            try:
                improved = run_strategies(
                    strategies, path, retry_lang, good_enough=_has_enough_text
                ).text
            except OcrError as e:
                logger.warning(f"Re-OCR of {path.name} with {retry_lang} failed: {e.message}")
            else:
                if len(improved) >= REOCR_MIN_RATIO * len(text):
                    logger.info(f"Re-OCR of {path.name} with {retry_lang} accepted")
                    text = improved
        return text

    def extract_text(
        self,
        path: Path,
        ocr_vendor: str | None = None,
        ocr_lang: str | None = None,
    ) -> str:
        """Extract plain text from a stored document.

        Args:
            path: File on disk; its suffix is the declared kind
            ocr_vendor: Per-call vendor override
            ocr_lang: Per-call language override

        Returns:
            Extracted text; empty when nothing could be read

        Raises:
            OcrError: When OCR was needed and no engine could deliver it
        """
        vendor = (ocr_vendor or self.settings.ocr_vendor).lower()
        lang = ocr_lang or self.settings.ocr_lang
        suffix = path.suffix.lower()

        if suffix == ".pdf":
            native = read_pdf_text(path)
            if _non_ws_len(native) >= MIN_NATIVE_CHARS:
                return native
            logger.info(f"{path.name} has no usable text layer; falling back to OCR")
            return self.ocr(path, vendor, lang)

        if suffix in IMAGE_SUFFIXES:
            return self.ocr(path, vendor, lang)

        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read {path.name} as text: {e}")
            return ""
