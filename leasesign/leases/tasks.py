# leasesign/leases/tasks.py

"""
Celery tasks for lease signing follow-ups.

Tasks are scheduled via Celery Beat and can also be triggered manually.
"""

from celery import shared_task

from leasesign.core.db import SessionLocal
from leasesign.leases.services import dispatch_lease_events
from leasesign.signing.services import signature_request_service
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


@shared_task(bind=True, name="leases.send_landlord_signing_reminders")
def send_landlord_signing_reminders(self):
    """
    Remind landlords of recent leases the tenant has signed and they have not.
    """
    logger.info("Sending landlord signing reminders", task_id=self.request.id)
    with SessionLocal() as db:
        return signature_request_service.remind_pending_landlords(db)


@shared_task(bind=True, name="leases.dispatch_pending_events")
def dispatch_pending_events(self):
    """
    Retry outbox events whose notification could not be queued at the time.
    """
    with SessionLocal() as db:
        dispatched = dispatch_lease_events(db)
    if dispatched:
        logger.info("Dispatched pending lease events", task_id=self.request.id, count=len(dispatched))
    return {"dispatched": dispatched}
