"""arq worker runner.

Run with: python -m bilags.queue.worker

This module configures and runs the async task worker, and exposes
Prometheus metrics when APP_METRICS_PORT is set.
"""

import logging

from arq import run_worker
from prometheus_client import start_http_server

from bilags.queue.tasks import WorkerSettings
from bilags.shared.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")
    logger.info(f"Mail cron: {'on' if settings.mail_cron_enabled else 'off'}")

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Metrics exposed on port {settings.metrics_port}")

    WorkerSettings.configure(settings)
    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
