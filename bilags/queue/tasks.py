"""Async task definitions for document intake.

Uses arq (async Redis queue) for background processing: mail fetch batches,
re-extraction and LLM normalization run as jobs, and an optional cron job
polls the mailbox every five minutes.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from bilags.lifecycle.controller import DocumentController
from bilags.lifecycle.factory import create_controller
from bilags.lifecycle.models import FetchCriteria
from bilags.shared.config import Settings, get_settings
from bilags.shared.errors import BilagsError

logger = logging.getLogger(__name__)


def _controller(ctx: dict[str, Any]) -> DocumentController:
    controller: DocumentController | None = ctx.get("controller")
    if controller is None:
        controller = create_controller(ctx.get("settings") or get_settings())
        ctx["controller"] = controller
    return controller


def _error(e: BilagsError) -> dict[str, Any]:
    return {"ok": False, "error": e.code, "message": e.message}


async def fetch_mail_batch(
    ctx: dict[str, Any],
    subject: str | None = None,
    from_contains: str | None = None,
    limit: int | None = None,
    include_seen: bool = True,
) -> dict[str, Any]:
    """Fetch one batch of mail and ingest matching attachments.

    Args:
        ctx: arq context
        subject: Subject substring filter (defaults to APP_MAIL_SUBJECT)
        from_contains: Sender substring filter (defaults to APP_MAIL_FROM)
        limit: Maximum messages to scan (defaults to APP_MAIL_FETCH_LIMIT)
        include_seen: Also scan messages already marked as seen

    Returns:
        Batch counters, or an error code when the fetch could not start
    """
    controller = _controller(ctx)
    settings = controller.settings
    criteria = FetchCriteria(
        subject=settings.mail_subject if subject is None else subject,
        from_contains=settings.mail_from if from_contains is None else from_contains,
        limit=limit or settings.mail_fetch_limit,
        include_seen=include_seen,
    )
    logger.info(f"Fetching mail (subject={criteria.subject!r}, limit={criteria.limit})")
    try:
        report = controller.fetch_mail(criteria)
    except BilagsError as e:
        logger.error(f"Mail fetch failed: {e.code}: {e.message}")
        return _error(e)
    return {"ok": True, "imported": report.imported, **report.model_dump()}


async def reextract_document(
    ctx: dict[str, Any],
    document_id: str,
    ocr_vendor: str | None = None,
    ocr_lang: str | None = None,
) -> dict[str, Any]:
    """Re-OCR a document's files and rebuild its extraction and proposal."""
    try:
        document = _controller(ctx).reextract(document_id, ocr_vendor, ocr_lang)
    except BilagsError as e:
        return _error(e)
    return {"ok": True, "id": document.id, "status": document.status.value}


async def llm_extract_document(
    ctx: dict[str, Any],
    document_id: str,
    force_reocr: bool = False,
) -> dict[str, Any]:
    """Normalize a document with the configured LLM provider."""
    try:
        document = _controller(ctx).llm_extract(document_id, force_reocr=force_reocr)
    except BilagsError as e:
        return _error(e)
    return {
        "ok": True,
        "id": document.id,
        "status": document.status.value,
        "notes": document.extracted.notes if document.extracted else "",
    }


async def scheduled_fetch(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron entry point: fetch with the configured filters."""
    return await fetch_mail_batch(ctx)


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - build the controller once per worker."""
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["controller"] = create_controller(settings)
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook."""
    logger.info("Worker shutting down...")


def cron_jobs(settings: Settings) -> list[Any]:
    """Periodic jobs enabled by configuration."""
    if not settings.mail_cron_enabled:
        return []
    return [cron(scheduled_fetch, minute=set(range(0, 60, 5)), run_at_startup=False)]


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and cron settings
    """

    functions = [fetch_mail_batch, reextract_document, llm_extract_document]
    on_startup = startup
    on_shutdown = shutdown
    cron_jobs: list[Any] = []

    # These will be set from configuration
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 600

    @classmethod
    def configure(cls, settings: Settings) -> None:
        """Apply settings (Redis URL, limits, cron) to the worker class."""
        cls.redis_settings = RedisSettings.from_dsn(settings.redis_url)
        cls.max_jobs = settings.queue_max_jobs
        cls.job_timeout = settings.queue_job_timeout
        cls.cron_jobs = cron_jobs(settings)
