from datetime import datetime, timezone

import pytest
from kombu.exceptions import OperationalError

from leasesign.documents.schemas import SigningRole
from leasesign.notifications import tasks
from leasesign.notifications.services import NotificationDispatcher
from leasesign.signing.models import SignatureRequest
from leasesign.signing.repository import SignatureLedger
from leasesign.signing.services import signature_request_service
from leasesign.testing_dependencies import (
    TestSessionLocal,
    db_session,
    dispatcher,
    fakes,
    make_lease,
    storage,
)
from leasesign.utils.email_service import email_service


class SentEmails(list):
    async def __call__(self, **kwargs):
        self.append(kwargs)


@pytest.fixture
def outbox(monkeypatch, storage):
    sent = SentEmails()
    monkeypatch.setattr(email_service, "send_templated_email", sent)
    monkeypatch.setattr(tasks, "SessionLocal", TestSessionLocal)
    monkeypatch.setattr(tasks, "s3_utils", storage)
    return sent


def test_dispatcher_reports_broker_outage(monkeypatch):
    def unreachable(*args, **kwargs):
        raise OperationalError("connection refused")

    monkeypatch.setattr(tasks.send_signing_link_email, "delay", unreachable)
    assert NotificationDispatcher().signing_link_created(1) is False


def test_dispatcher_queues_reminder(monkeypatch):
    queued = []
    monkeypatch.setattr(tasks.send_signing_link_email, "delay", lambda *a, **kw: queued.append((a, kw)))

    assert NotificationDispatcher().signing_reminder(12) is True
    assert queued == [((12,), {"reminder": True})]


def test_signing_link_email(db_session, fakes, outbox):
    lease = make_lease(db_session)
    created = signature_request_service.request_signature(db_session, lease.id, SigningRole.TENANT)
    token = db_session.get(SignatureRequest, created.request_id).token

    assert tasks.send_signing_link_email(created.request_id) == {"sent": True}
    [email] = outbox
    assert email["to_emails"] == ["jordan@example.com"]
    assert email["template_name"] == "signing_request.html"
    assert email["context"]["signing_url"].endswith(f"/sign/{token}")


def test_signing_link_email_skips_closed_request(db_session, fakes, outbox):
    lease = make_lease(db_session)
    created = signature_request_service.request_signature(db_session, lease.id, SigningRole.TENANT)
    SignatureLedger(db_session).mark_expired(created.request_id)

    assert tasks.send_signing_link_email(created.request_id) == {"sent": False}
    assert outbox == []


def test_executed_email_goes_to_both_parties(db_session, fakes, outbox):
    lease = make_lease(db_session, signed_document_key="signed-leases/1/abc.pdf")

    assert tasks.send_lease_executed_emails(lease.id) == {"sent": True}
    [email] = outbox
    assert email["to_emails"] == ["jordan@example.com", "owner@maplestreet.example.com"]
    assert email["context"]["document_url"].startswith("https://storage.test/signed-leases/1/abc.pdf")


def test_signing_email_template_renders():
    html = email_service.render_template(
        "signing_request.html",
        {
            "recipient_name": "Jordan Avery",
            "property_label": "12 Maple Street, Unit 3B",
            "signing_url": "https://app.example.com/sign/abc",
            "expires_at": datetime(2026, 10, 20, 15, 0, tzinfo=timezone.utc),
            "reminder": True,
        },
    )
    assert "waiting for your signature" in html
    assert "October 20, 2026 at 15:00 UTC" in html
