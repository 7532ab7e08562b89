# leasesign/signing/tasks.py

from celery import shared_task

from leasesign.core.db import SessionLocal
from leasesign.signing.services import native_signing_service
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


@shared_task(bind=True, name="signing.expire_stale_requests")
def expire_stale_requests(self):
    """
    Move sent requests past their expiry to expired.

    Expiry is also applied lazily when a token is used; this keeps the
    open-request slots tidy for leases nobody is looking at.
    """
    logger.info("Expiring stale signature requests", task_id=self.request.id)
    with SessionLocal() as db:
        count = native_signing_service.expire_stale_requests(db)
    return {"expired": count}
