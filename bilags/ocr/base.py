"""Common OCR result model and engine protocol.

Both the local Tesseract engine and the OCR.space cloud engine return an
``OCRResult`` rather than raising, so the vendor policy can decide on
fallbacks from plain data.
"""

from pathlib import Path
from typing import Protocol

from pydantic import BaseModel


class OCRResult(BaseModel):
    """Result of OCR operation.

    Attributes:
        text: Extracted text content
        success: Whether operation succeeded
        error: Error message if operation failed
        error_code: Stable error code (e.g. 'ocrspace_key_missing')
        retriable: Whether repeating the same call may succeed
        confidence: Average confidence score (0-1), if available
        word_count: Number of recognised words, if available
    """

    text: str
    success: bool
    error: str | None = None
    error_code: str | None = None
    retriable: bool = False
    confidence: float | None = None
    word_count: int | None = None


class OCREngine(Protocol):
    """Protocol for OCR engines."""

    name: str

    def recognize(self, path: Path, lang: str) -> OCRResult:
        """Recognize text in the file at ``path``."""
        ...

    def is_available(self) -> bool:
        """Check if the engine can be used."""
        ...


def split_langs(lang: str | None, default: str = "eng") -> list[str]:
    """Split a language list like "eng,dan dan+deu" into unique codes."""
    parts: list[str] = []
    for part in (lang or "").replace("+", ",").replace(";", ",").replace(" ", ",").split(","):
        part = part.strip().lower()
        if part and part not in parts:
            parts.append(part)
    return parts or [default]
