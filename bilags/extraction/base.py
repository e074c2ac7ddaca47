"""Abstract base class for normalization providers.

A normalization provider sends the aggregated document text plus the
heuristic draft to a schema-constrained LLM and returns a cleaned-up
header and line list. Providers never raise: an unconfigured provider,
an exhausted retry budget or an unusable answer all yield ``None`` and
the caller keeps the heuristic draft.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from bilags.extraction.schema import ExtractedHeader, ExtractedLine, NormalizedResult
from bilags.shared.config import Settings


class NormalizationProvider(ABC):
    """Abstract base class for schema-constrained normalization providers.

    Example implementations:
    - OpenAINormalizationProvider: OpenAI structured outputs (cloud)
    - OllamaNormalizationProvider: Ollama JSON-schema format (self-hosted)
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def normalize(
        self,
        text: str,
        draft_header: ExtractedHeader,
        draft_lines: list[ExtractedLine],
    ) -> NormalizedResult | None:
        """Normalize a heuristic draft against the document text.

        Args:
            text: Aggregated document text
            draft_header: Header from the heuristic extractor
            draft_lines: Lines from the heuristic extractor

        Returns:
            NormalizedResult, or None when the provider is unconfigured or failed
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider has the credentials/endpoint it needs.

        Must not perform network calls.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'ollama')
        """
        pass
