"""Factory for creating normalization providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.ollama_provider import OllamaNormalizationProvider
from bilags.extraction.openai_provider import OpenAINormalizationProvider
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available normalization providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[NormalizationProvider]] = {
        "openai": OpenAINormalizationProvider,
        "ollama": OllamaNormalizationProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[NormalizationProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.normalization_provider)
            provider_class: Provider class implementing NormalizationProvider
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered normalization provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[NormalizationProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown normalization provider: '{name}'. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_normalization_provider(settings: Settings) -> NormalizationProvider:
    """Create the configured normalization provider.

    An unconfigured provider is still returned; it simply answers None, so
    the pipeline falls back to the heuristic draft.

    Args:
        settings: Application settings with normalization_provider field

    Returns:
        Configured normalization provider instance

    Raises:
        ValueError: If configured provider is unknown
    """
    provider_name = settings.normalization_provider
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Normalization provider '{provider_name}' is not configured; "
            f"heuristic extraction will be used as-is."
        )

    logger.info(f"Created normalization provider: {provider_name}")
    return provider
