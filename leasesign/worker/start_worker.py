### leasesign/worker/start_worker.py

"""
Celery worker startup script
"""

# Local imports
from leasesign.core.celery_app import app
from leasesign.core.config import settings
from leasesign.utils.logger import get_logger, setup_logging

TASK_MODULES = ["leasesign.signing", "leasesign.leases", "leasesign.notifications"]


def start_worker():
    """Start the celery worker."""
    setup_logging(
        log_level=settings.log_level,
        use_json=settings.environment.lower() == "production",
        app_name="Lease Signing Worker",
        environment=settings.environment,
    )
    logger = get_logger(__name__)

    argv = [
        "worker",
        "--loglevel=info",
        "--concurrency=2", # Signing emails and sweeps are light
        "--max-tasks-per-child=200",
        "--prefetch-multiplier=1",
    ]
    logger.info("Starting Celery worker", broker=settings.celery_broker.split("@")[-1], modules=TASK_MODULES)
    app.worker_main(argv)


if __name__ == "__main__":
    start_worker()
