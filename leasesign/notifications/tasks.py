# leasesign/notifications/tasks.py

"""
Celery tasks that deliver signing emails.

Each task reloads its subject from the database so a queued message never
sends stale links or state.
"""

import asyncio

from celery import shared_task

from leasesign.core.config import settings
from leasesign.core.db import SessionLocal
from leasesign.leases.models import Lease
from leasesign.signing.models import SignatureRequest, SignatureRequestStatus
from leasesign.utils.email_service import email_service
from leasesign.utils.logger import get_logger
from leasesign.utils.s3_utils import s3_utils

logger = get_logger(__name__)


def signing_link(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/sign/{token}"


@shared_task(name="notifications.send_signing_link_email")
def send_signing_link_email(request_id: int, reminder: bool = False):
    """
    Email the recipient of a signature request their signing link.
    """
    with SessionLocal() as db:
        request = db.get(SignatureRequest, request_id)
        if not request or request.status != SignatureRequestStatus.SENT.value:
            logger.info("Signature request no longer open, skipping email", request_id=request_id)
            return {"sent": False}
        lease = db.get(Lease, request.lease_id)

        subject = "Reminder: your lease is waiting for your signature" if reminder \
            else "Please sign your lease agreement"
        asyncio.run(
            email_service.send_templated_email(
                to_emails=[request.recipient_email],
                subject=subject,
                template_name="signing_request.html",
                context={
                    "recipient_name": request.recipient_name,
                    "role": request.role,
                    "property_label": lease.property_label if lease else "",
                    "signing_url": signing_link(request.token),
                    "expires_at": request.expires_at,
                    "reminder": reminder,
                },
            )
        )
        logger.info("Sent signing link", request_id=request_id, role=request.role, reminder=reminder)
        return {"sent": True}


@shared_task(name="notifications.send_lease_executed_emails")
def send_lease_executed_emails(lease_id: int):
    """
    Tell both parties that the lease is fully executed.
    """
    with SessionLocal() as db:
        lease = db.get(Lease, lease_id)
        if not lease:
            logger.warning("Lease not found for executed notification", lease_id=lease_id)
            return {"sent": False}

        document_url = None
        if lease.signed_document_key:
            document_url = s3_utils.generate_presigned_url(lease.signed_document_key, expiration=7 * 24 * 3600)

        recipients = [e for e in (lease.tenant_email, lease.landlord_email) if e]
        if not recipients:
            logger.warning("Lease has no party emails", lease_id=lease_id)
            return {"sent": False}

        asyncio.run(
            email_service.send_templated_email(
                to_emails=recipients,
                subject="Your lease agreement is fully signed",
                template_name="lease_fully_executed.html",
                context={
                    "property_label": lease.property_label,
                    "tenant_name": lease.tenant_name,
                    "landlord_name": lease.landlord_name,
                    "tenant_signed_at": lease.tenant_signed_at,
                    "landlord_signed_at": lease.landlord_signed_at,
                    "document_url": document_url,
                },
            )
        )
        logger.info("Sent fully executed notification", lease_id=lease_id)
        return {"sent": True}
