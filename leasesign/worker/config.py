### leasesign/worker/config.py

"""
Celery configuration settings

This file contains all the Celery configurations including:
- Broker and result backend settings
- Task serialization settings
- Beat schedule for periodic tasks
"""

# Third party imports
from celery.schedules import crontab

# Local imports
from leasesign.core.config import settings

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task settings
task_track_started = True
task_time_limit = 10 * 60 # 10 minutes
task_soft_time_limit = 8 * 60 # 8 minutes
worker_prefetch_multiplier = 1
task_acks_late = True
worker_disable_rate_limits = False

# Fail fast when the broker is down so callers can fall back to the outbox
broker_connection_timeout = 5
broker_transport_options = {"max_retries": 1}


# Beat schedule configuration
beat_schedule = {
    # Expire signing links past their expiry every hour
    "signing-expire-stale-requests": {
        "task": "signing.expire_stale_requests",
        "schedule": crontab(minute=15),
    },

    # Remind landlords who have not countersigned, daily at 2 PM UTC
    "leases-landlord-signing-reminders": {
        "task": "leases.send_landlord_signing_reminders",
        "schedule": crontab(hour=14, minute=0),
    },

    # Retry lease events that could not be queued
    "leases-dispatch-pending-events": {
        "task": "leases.dispatch_pending_events",
        "schedule": crontab(minute="*/5"),
    },
}

# Worker configuration
worker_hijack_root_logger = False
worker_log_color = False
