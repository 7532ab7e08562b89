### leasesign/worker/start_beat.py

"""
Celery Beat Startup Script

Starts the scheduler that triggers the periodic tasks defined in config.py
"""

# Local imports
from leasesign.core.celery_app import app
from leasesign.core.config import settings
from leasesign.utils.logger import get_logger, setup_logging


def start_beat():
    """Start the celery beat scheduler."""
    setup_logging(
        log_level=settings.log_level,
        use_json=settings.environment.lower() == "production",
        app_name="Lease Signing Scheduler",
        environment=settings.environment,
    )
    logger = get_logger(__name__)

    for name, entry in app.conf.beat_schedule.items():
        logger.info("Scheduled task", entry=name, task=entry["task"], schedule=str(entry["schedule"]))

    app.start(["beat", "--loglevel=info"])


if __name__ == "__main__":
    start_beat()
