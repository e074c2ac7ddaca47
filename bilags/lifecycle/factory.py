"""Wires a DocumentController from settings."""

import logging

from bilags.extraction.factory import create_normalization_provider
from bilags.lifecycle.controller import DocumentController
from bilags.lifecycle.repository import DocumentRepository, InMemoryDocumentRepository
from bilags.ocr.factory import create_text_acquirer
from bilags.proposal.builder import ProposalBuilder
from bilags.shared.config import Settings
from bilags.storage.file_store import create_file_store

logger = logging.getLogger(__name__)


def create_controller(
    settings: Settings,
    repository: DocumentRepository | None = None,
) -> DocumentController:
    """Build a controller with the configured OCR, normalization and storage backends.

    Args:
        settings: Application settings
        repository: Document repository; defaults to an in-memory one

    Returns:
        Ready-to-use DocumentController
    """
    controller = DocumentController(
        settings=settings,
        repository=repository or InMemoryDocumentRepository(),
        file_store=create_file_store(settings),
        acquirer=create_text_acquirer(settings),
        normalizer=create_normalization_provider(settings),
        builder=ProposalBuilder(settings),
    )
    logger.info(f"Document controller ready ({settings.service_name} {settings.service_version})")
    return controller
