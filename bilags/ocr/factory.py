"""Factory for the text acquirer and its OCR engines."""

import logging

from bilags.ocr.acquirer import TextAcquirer
from bilags.ocr.ocrspace import OcrSpaceEngine
from bilags.ocr.tesseract_engine import TesseractEngine
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)


def create_text_acquirer(settings: Settings) -> TextAcquirer:
    """Build a TextAcquirer wired to the local and cloud OCR engines.

    Args:
        settings: Application settings

    Returns:
        Configured TextAcquirer
    """
    local = TesseractEngine(settings)
    cloud = OcrSpaceEngine(settings)
    if not cloud.is_available():
        logger.info("OCR.space key not configured; cloud OCR fallback disabled")
    logger.info(f"Created text acquirer (vendor={settings.ocr_vendor}, lang={settings.ocr_lang})")
    return TextAcquirer(settings, local_engine=local, cloud_engine=cloud)
