import asyncio
import base64
import hashlib
import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from aiohttp import test_utils, web
from sqlalchemy import func, select

from leasesign.core.config import settings
from leasesign.documents.schemas import SigningRole
from leasesign.esign import oauth
from leasesign.esign.docusign_client import DocusignClient
from leasesign.esign.exceptions import MalformedWebhookError, ProviderAPIError, ProviderAuthError
from leasesign.esign.models import ESignEnvelope, ProviderConnection
from leasesign.esign.services import (
    ENVELOPE_COMPLETED,
    ENVELOPE_DOWNLOAD_FAILED,
    RECIPIENT_ROLES,
    envelope_service,
    provider_connection_service,
)
from leasesign.esign.utils import compute_hmac, verify_hmac
from leasesign.esign.webhooks import (
    EnvelopeCompleted,
    EnvelopeStatusChanged,
    IgnoredEvent,
    RecipientCompleted,
    parse_webhook,
)
from leasesign.leases.models import LeaseEvent
from leasesign.signing.models import ArtifactSource, SignatureRequest, SignedArtifact
from leasesign.signing.services import native_signing_service, signature_request_service
from leasesign.testing_dependencies import (
    LANDLORD_ACCOUNT_ID,
    SIGNATURE_IMAGE,
    auth_headers,
    client,
    db_session,
    dispatcher,
    fakes,
    make_lease,
    storage,
)
from leasesign.utils.general import utcnow
from leasesign.utils.security import decrypt_secret, encrypt_secret, fingerprint, fingerprints_match

COMBINED_PDF = b"%PDF-1.4\n% combined envelope document\n"

XML_COMPLETED = b"""<?xml version="1.0" encoding="utf-8"?>
<DocuSignEnvelopeInformation xmlns="http://www.docusign.net/API/3.0">
  <EnvelopeStatus>
    <RecipientStatuses>
      <RecipientStatus>
        <Type>Signer</Type>
        <Email>jordan@example.com</Email>
        <Status>Completed</Status>
        <RecipientId>5c1d5a6e-2f3b-4a4e-9b1e-0d6a1f6c7a11</RecipientId>
        <RoutingOrder>1</RoutingOrder>
        <Signed>2026-10-19T15:00:00</Signed>
      </RecipientStatus>
      <RecipientStatus>
        <Type>Signer</Type>
        <Email>owner@maplestreet.example.com</Email>
        <Status>Completed</Status>
        <RecipientId>8e0b6d2c-7d1f-4c2e-a7c4-3b9f2e1d4c22</RecipientId>
        <RoutingOrder>2</RoutingOrder>
        <Signed>2026-10-19T15:04:00</Signed>
      </RecipientStatus>
    </RecipientStatuses>
    <EnvelopeID>env-1</EnvelopeID>
    <Status>Completed</Status>
    <Completed>2026-10-19T15:05:00</Completed>
  </EnvelopeStatus>
</DocuSignEnvelopeInformation>
"""


class FakeDocusign:
    """Records calls instead of talking to Docusign"""

    def __init__(self):
        self.exchanged = []
        self.refreshed = []
        self.envelopes = []
        self.views = []
        self.refresh_response = {"access_token": "access-2", "expires_in": 3600}
        self.refresh_error = None
        self.download_error = None

    async def exchange_code(self, code, code_verifier):
        self.exchanged.append((code, code_verifier))
        return {"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600}

    async def get_userinfo(self, access_token):
        return {
            "accounts": [
                {"account_id": "acct-other", "base_uri": "https://eu.docusign.net", "is_default": False},
                {"account_id": "acct-9", "base_uri": "https://demo.docusign.net", "is_default": True},
            ]
        }

    async def refresh_access_token(self, refresh_token):
        self.refreshed.append(refresh_token)
        if self.refresh_error:
            raise self.refresh_error
        return dict(self.refresh_response)

    async def get_account(self, access_token, base_uri, account_id):
        return {"accountId": account_id, "accountName": "Maple Street Holdings"}

    async def create_envelope(self, access_token, base_uri, account_id, definition):
        self.envelopes.append(definition)
        return {"envelopeId": "env-1", "status": "sent"}

    async def create_recipient_view(self, access_token, base_uri, account_id, envelope_id, view_request):
        self.views.append(view_request)
        return {"url": f"https://demo.docusign.net/Signing/{envelope_id}"}

    async def download_combined_document(self, access_token, base_uri, account_id, envelope_id):
        if self.download_error:
            raise self.download_error
        return COMBINED_PDF


@pytest.fixture
def docusign(monkeypatch):
    fake = FakeDocusign()
    monkeypatch.setattr(provider_connection_service, "client", fake)
    monkeypatch.setattr(envelope_service, "client", fake)
    monkeypatch.setattr(settings, "docusign_webhook_secret", None)
    return fake


def connect_account(db, expires_in=timedelta(hours=1), landlord_account_id=LANDLORD_ACCOUNT_ID):
    connection = ProviderConnection(
        landlord_account_id=landlord_account_id,
        access_token_encrypted=encrypt_secret("access-1"),
        refresh_token_encrypted=encrypt_secret("refresh-1"),
        access_token_expires_at=utcnow() + expires_in,
        provider_account_id="acct-9",
        provider_base_uri="https://demo.docusign.net",
        connected_at=utcnow(),
    )
    db.add(connection)
    db.commit()
    return connection


def make_envelope(db, lease, envelope_id="env-1"):
    envelope = ESignEnvelope(
        envelope_id=envelope_id,
        status="sent",
        object_type="lease",
        object_id=lease.id,
        landlord_account_id=lease.landlord_account_id,
        recipient_roles=dict(RECIPIENT_ROLES),
    )
    db.add(envelope)
    lease.docusign_envelope_id = envelope_id
    db.commit()
    return envelope


def connect_event(event, envelope_id="env-1", **data):
    return json.dumps(
        {
            "event": event,
            "apiVersion": "v2.1",
            "generatedDateTime": "2026-10-19T15:05:00.000Z",
            "data": {"envelopeId": envelope_id, "accountId": "acct-9", **data},
        }
    )


def post_webhook(client, body, content_type="application/json", headers=None):
    return client.post(
        "/esign/webhooks/docusign",
        content=body,
        headers={"content-type": content_type, **(headers or {})},
    )


def count(db, model, **filters):
    stmt = select(func.count(model.id))
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return db.execute(stmt).scalar_one()


# ---- OAuth connect ----

def test_code_challenge_is_s256():
    verifier = oauth.generate_code_verifier()
    assert 43 <= len(verifier) <= 128
    expected = hashlib.sha256(verifier.encode()).digest()
    assert oauth.code_challenge(verifier) == base64.urlsafe_b64encode(expected).rstrip(b"=").decode()
    assert "=" not in oauth.code_challenge(verifier)


def test_connect_redirects_with_pkce(client, db_session, docusign):
    response = client.get(
        "/esign/connect", params={"accountId": LANDLORD_ACCOUNT_ID},
        headers=auth_headers(), follow_redirects=False,
    )
    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers["location"]).query)
    assert query["code_challenge_method"] == ["S256"]
    assert query["scope"] == ["signature offline_access"]

    connection = provider_connection_service.get_connection(db_session, LANDLORD_ACCOUNT_ID)
    verifier = decrypt_secret(connection.pkce_verifier)
    assert query["code_challenge"] == [oauth.code_challenge(verifier)]
    assert query["state"] == [connection.oauth_state]

    set_cookies = response.headers.get_list("set-cookie")
    assert any(c.startswith(f"oauth_state={connection.oauth_state}") and "HttpOnly" in c for c in set_cookies)
    # the browser only ever sees a fingerprint of the verifier
    assert not any(verifier in c for c in set_cookies)


def test_connect_requires_matching_account(client, docusign):
    response = client.get(
        "/esign/connect", params={"accountId": LANDLORD_ACCOUNT_ID},
        headers=auth_headers(landlord_account_id=77), follow_redirects=False,
    )
    assert response.status_code == 403
    assert client.get("/esign/connect", params={"accountId": LANDLORD_ACCOUNT_ID}).status_code == 401


def start_connect(client, db_session):
    response = client.get(
        "/esign/connect", params={"accountId": LANDLORD_ACCOUNT_ID},
        headers=auth_headers(), follow_redirects=False,
    )
    state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
    connection = provider_connection_service.get_connection(db_session, LANDLORD_ACCOUNT_ID)
    return state, fingerprint(decrypt_secret(connection.pkce_verifier))


def callback(client, code, state, cookie_state, cookie_fingerprint):
    return client.get(
        "/esign/callback",
        params={"code": code, "state": state},
        headers={"Cookie": f"oauth_state={cookie_state}; pkce_verifier={cookie_fingerprint}"},
        follow_redirects=False,
    )


def test_callback_connects_account(client, db_session, docusign):
    state, verifier_fp = start_connect(client, db_session)

    response = callback(client, "auth-code", state, state, verifier_fp)
    assert response.status_code == 302
    assert response.headers["location"].endswith("/admin/integrations?docusign=connected")

    code, verifier = docusign.exchanged[0]
    assert code == "auth-code"
    assert fingerprint(verifier) == verifier_fp

    db_session.expire_all()
    connection = provider_connection_service.get_connection(db_session, LANDLORD_ACCOUNT_ID)
    assert connection.is_connected
    assert connection.provider_account_id == "acct-9"
    assert connection.provider_base_uri == "https://demo.docusign.net"
    assert connection.oauth_state is None
    assert connection.pkce_verifier is None
    assert "refresh-1" not in connection.refresh_token_encrypted
    assert decrypt_secret(connection.refresh_token_encrypted) == "refresh-1"

    # state is single use
    replay = callback(client, "auth-code", state, state, verifier_fp)
    assert replay.status_code == 400
    assert len(docusign.exchanged) == 1


def test_callback_rejects_forged_state(client, db_session, docusign):
    connect_account(db_session)
    before = provider_connection_service.get_connection(db_session, LANDLORD_ACCOUNT_ID)
    refresh_before = before.refresh_token_encrypted

    response = callback(client, "attacker-code", "attacker-state", "attacker-state", "f" * 64)
    assert response.status_code == 400

    missing_cookie = client.get(
        "/esign/callback", params={"code": "attacker-code", "state": "attacker-state"},
        follow_redirects=False,
    )
    assert missing_cookie.status_code == 400

    assert docusign.exchanged == []
    db_session.expire_all()
    after = provider_connection_service.get_connection(db_session, LANDLORD_ACCOUNT_ID)
    assert after.refresh_token_encrypted == refresh_before
    assert after.provider_account_id == "acct-9"


def test_callback_rejects_state_from_other_browser(client, db_session, docusign):
    state, _ = start_connect(client, db_session)

    response = callback(client, "auth-code", state, "different-state", "f" * 64)
    assert response.status_code == 400
    wrong_verifier = callback(client, "auth-code", state, state, "f" * 64)
    assert wrong_verifier.status_code == 400
    assert docusign.exchanged == []


def test_newer_connect_replaces_pending_attempt(client, db_session, docusign):
    first_state, first_fp = start_connect(client, db_session)
    start_connect(client, db_session)

    response = callback(client, "auth-code", first_state, first_state, first_fp)
    assert response.status_code == 400
    assert docusign.exchanged == []


def test_callback_with_provider_error_redirects(client, docusign):
    response = client.get(
        "/esign/callback", params={"error": "access_denied"}, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"].endswith("docusign=error")
    assert any(c.startswith("oauth_state=") for c in response.headers.get_list("set-cookie"))


def test_connection_status_hides_tokens(client, db_session, docusign):
    connect_account(db_session)

    body = client.get(
        "/esign/connection", params={"accountId": LANDLORD_ACCOUNT_ID}, headers=auth_headers()
    ).json()
    assert body["connected"] is True
    assert body["provider_account_id"] == "acct-9"
    assert "refresh-1" not in json.dumps(body)
    assert not any("token" in key and "expires" not in key for key in body)

    test = client.post(
        "/esign/connection/test", params={"accountId": LANDLORD_ACCOUNT_ID}, headers=auth_headers()
    )
    assert test.status_code == 200
    assert test.json()["account_name"] == "Maple Street Holdings"


# ---- Token refresh ----

def test_access_token_reused_until_margin(db_session, docusign):
    connect_account(db_session, expires_in=timedelta(minutes=10))

    token, _ = asyncio.run(provider_connection_service.get_access_token(db_session, LANDLORD_ACCOUNT_ID))
    assert token == "access-1"
    assert docusign.refreshed == []


def test_refresh_keeps_refresh_token_when_none_returned(db_session, docusign):
    connect_account(db_session, expires_in=timedelta(seconds=30))

    token, connection = asyncio.run(
        provider_connection_service.get_access_token(db_session, LANDLORD_ACCOUNT_ID)
    )
    assert token == "access-2"
    assert docusign.refreshed == ["refresh-1"]
    assert decrypt_secret(connection.refresh_token_encrypted) == "refresh-1"
    assert decrypt_secret(connection.access_token_encrypted) == "access-2"


def test_refresh_rotates_refresh_token(db_session, docusign):
    connect_account(db_session, expires_in=timedelta(seconds=-5))
    docusign.refresh_response = {"access_token": "access-3", "refresh_token": "refresh-2", "expires_in": 28800}

    _, connection = asyncio.run(provider_connection_service.get_access_token(db_session, LANDLORD_ACCOUNT_ID))
    assert decrypt_secret(connection.refresh_token_encrypted) == "refresh-2"


def test_rejected_refresh_requires_reconnect(db_session, docusign):
    connect_account(db_session, expires_in=timedelta(seconds=-5))
    docusign.refresh_error = ProviderAPIError("Docusign returned 400", 400, '{"error":"invalid_grant"}')

    with pytest.raises(ProviderAuthError) as exc_info:
        asyncio.run(provider_connection_service.get_access_token(db_session, LANDLORD_ACCOUNT_ID))
    assert exc_info.value.reconnect_required is True

    status = provider_connection_service.connection_status(db_session, LANDLORD_ACCOUNT_ID)
    assert status.connected is False
    assert status.last_error == "Refresh token rejected, reconnect required"


def test_unreachable_refresh_keeps_connection(db_session, docusign):
    connect_account(db_session, expires_in=timedelta(seconds=-5))
    docusign.refresh_error = ProviderAPIError("Docusign returned 503", 503, "")

    with pytest.raises(ProviderAuthError) as exc_info:
        asyncio.run(provider_connection_service.get_access_token(db_session, LANDLORD_ACCOUNT_ID))
    assert exc_info.value.reconnect_required is False
    assert provider_connection_service.connection_status(db_session, LANDLORD_ACCOUNT_ID).connected is True


# ---- Envelopes ----

def test_send_envelope(client, db_session, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)

    response = client.post(f"/leases/{lease.id}/docusign/envelope", headers=auth_headers())
    assert response.status_code == 201
    assert response.json()["recipient_roles"] == {"1": "tenant", "2": "landlord"}

    definition = docusign.envelopes[0]
    tenant, landlord = definition["recipients"]["signers"]
    assert tenant["routingOrder"] == "1" and landlord["routingOrder"] == "2"
    assert tenant["tabs"]["signHereTabs"][0]["anchorString"] == "/sig_tenant/"
    assert len(tenant["tabs"]["initialHereTabs"]) == 6
    assert landlord["tabs"]["signHereTabs"][0]["anchorString"] == "/sig_landlord/"

    db_session.refresh(lease)
    assert lease.docusign_envelope_id == "env-1"
    assert count(db_session, ESignEnvelope, object_id=lease.id) == 1


def test_send_envelope_requires_connection(client, db_session, docusign):
    lease = make_lease(db_session)
    response = client.post(f"/leases/{lease.id}/docusign/envelope", headers=auth_headers())
    assert response.status_code == 409
    assert docusign.envelopes == []


def test_recipient_view_matches_envelope_signer(client, db_session, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)
    client.post(f"/leases/{lease.id}/docusign/envelope", headers=auth_headers())

    response = client.post(
        f"/leases/{lease.id}/docusign/recipient-view",
        json={"role": "tenant", "return_url": "https://app.example.com/done"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    assert response.json()["url"] == "https://demo.docusign.net/Signing/env-1"

    tenant = docusign.envelopes[0]["recipients"]["signers"][0]
    view = docusign.views[0]
    assert view["clientUserId"] == tenant["clientUserId"]
    assert view["email"] == tenant["email"]
    assert view["returnUrl"] == "https://app.example.com/done"


def test_recipient_view_without_envelope(client, db_session, docusign):
    lease = make_lease(db_session)
    response = client.post(
        f"/leases/{lease.id}/docusign/recipient-view", json={"role": "landlord"}, headers=auth_headers()
    )
    assert response.status_code == 404


# ---- Webhook parsing ----

def test_parse_json_recipient_completed():
    events = parse_webhook(connect_event("recipient-completed", recipientId=1).encode())
    assert events == [
        RecipientCompleted(
            envelope_id="env-1", recipient_id="1", occurred_at=events[0].occurred_at
        )
    ]
    assert events[0].occurred_at.year == 2026


def test_parse_json_status_and_unknown_events():
    [voided] = parse_webhook(connect_event("envelope-voided").encode())
    assert isinstance(voided, EnvelopeStatusChanged) and voided.status == "voided"

    [ignored] = parse_webhook(connect_event("template-modified").encode())
    assert isinstance(ignored, IgnoredEvent)
    assert ignored.event == "template-modified"


def test_parse_xml_reports_every_recipient():
    events = parse_webhook(XML_COMPLETED, "text/xml; charset=utf-8")

    assert [type(e) for e in events] == [RecipientCompleted, RecipientCompleted, EnvelopeCompleted]
    assert [e.routing_order for e in events[:2]] == ["1", "2"]
    assert all(e.envelope_id == "env-1" for e in events)


@pytest.mark.parametrize(
    "body",
    [
        b"{not json",
        b"[1, 2]",
        json.dumps({"event": "envelope-completed", "data": {}}).encode(),
        b"<DocuSignEnvelopeInformation><Other/></DocuSignEnvelopeInformation>",
        b"<unclosed",
    ],
)
def test_parse_rejects_malformed(body):
    with pytest.raises(MalformedWebhookError):
        parse_webhook(body)


# ---- Webhook handling ----

def test_webhook_recipient_events_are_idempotent(client, db_session, dispatcher, docusign):
    lease = make_lease(db_session)
    make_envelope(db_session, lease)
    body = connect_event("recipient-completed", recipientId="1")

    first = post_webhook(client, body)
    assert first.status_code == 200
    assert first.json()["applied"] == 1
    db_session.refresh(lease)
    signed_at = lease.tenant_signed_at
    assert signed_at is not None
    assert lease.landlord_signed_at is None

    replay = post_webhook(client, body)
    assert replay.status_code == 200
    assert replay.json()["applied"] == 0
    db_session.refresh(lease)
    assert lease.tenant_signed_at == signed_at
    assert dispatcher.executed == []


def test_envelope_completed_executes_and_stores(client, db_session, storage, dispatcher, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)
    envelope = make_envelope(db_session, lease)

    response = post_webhook(client, connect_event("envelope-completed"))
    assert response.json()["fully_executed"] is True
    assert dispatcher.executed == [lease.id]

    db_session.refresh(lease)
    db_session.refresh(envelope)
    assert lease.fully_executed_at is not None
    assert envelope.status == ENVELOPE_COMPLETED
    artifact = db_session.execute(select(SignedArtifact)).scalar_one()
    assert artifact.source == ArtifactSource.DOCUSIGN.value
    assert artifact.content_hash == hashlib.sha256(COMBINED_PDF).hexdigest()
    assert storage.blobs[artifact.document_key] == COMBINED_PDF
    assert lease.signed_document_key == artifact.document_key

    replay = post_webhook(client, connect_event("envelope-completed"))
    assert replay.json()["fully_executed"] is False
    assert dispatcher.executed == [lease.id]
    assert count(db_session, LeaseEvent, lease_id=lease.id) == 1
    assert count(db_session, SignedArtifact) == 1


def test_xml_notification_executes_lease(client, db_session, dispatcher, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)
    make_envelope(db_session, lease)

    response = post_webhook(client, XML_COMPLETED, content_type="text/xml")
    assert response.status_code == 200
    body = response.json()
    assert body["applied"] == 2
    assert body["fully_executed"] is True

    replay = post_webhook(client, XML_COMPLETED, content_type="text/xml")
    assert replay.json()["applied"] == 0
    assert dispatcher.executed == [lease.id]


def test_failed_download_is_retried_on_replay(client, db_session, storage, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)
    envelope = make_envelope(db_session, lease)
    docusign.download_error = ProviderAPIError("Docusign returned 503", 503, "")

    response = post_webhook(client, connect_event("envelope-completed"))
    assert response.status_code == 200
    db_session.refresh(envelope)
    db_session.refresh(lease)
    assert envelope.status == ENVELOPE_DOWNLOAD_FAILED
    assert lease.fully_executed_at is not None
    assert count(db_session, SignedArtifact) == 0

    docusign.download_error = None
    post_webhook(client, connect_event("envelope-completed"))
    db_session.refresh(envelope)
    assert envelope.status == ENVELOPE_COMPLETED
    assert count(db_session, SignedArtifact) == 1


def test_webhook_after_native_completion(client, db_session, dispatcher, docusign):
    lease = make_lease(db_session)
    connect_account(db_session)
    make_envelope(db_session, lease)
    created = signature_request_service.request_signature(db_session, lease.id, SigningRole.TENANT)
    tenant = native_signing_service.submit_signature(
        db_session, db_session.get(SignatureRequest, created.request_id).token, SIGNATURE_IMAGE
    )
    landlord_token = db_session.get(SignatureRequest, tenant.follow_up_request_id).token
    native_signing_service.submit_signature(db_session, landlord_token, SIGNATURE_IMAGE)
    assert dispatcher.executed == [lease.id]

    response = post_webhook(client, connect_event("envelope-completed"))
    assert response.json()["applied"] == 0
    assert response.json()["fully_executed"] is False
    assert dispatcher.executed == [lease.id]
    assert count(db_session, LeaseEvent, lease_id=lease.id) == 1


def test_webhook_status_change_does_not_sign(client, db_session, docusign):
    lease = make_lease(db_session)
    envelope = make_envelope(db_session, lease)

    post_webhook(client, connect_event("envelope-delivered"))
    db_session.refresh(envelope)
    db_session.refresh(lease)
    assert envelope.status == "delivered"
    assert lease.tenant_signed_at is None


def test_webhook_unknown_event_and_envelope_acknowledged(client, db_session, docusign):
    unknown_event = post_webhook(client, connect_event("envelope-corrected"))
    assert unknown_event.status_code == 200
    assert unknown_event.json()["applied"] == 0

    unknown_envelope = post_webhook(client, connect_event("envelope-completed", envelope_id="env-404"))
    assert unknown_envelope.status_code == 200
    assert unknown_envelope.json()["status"] == "ignored"

    malformed = post_webhook(client, "{oops")
    assert malformed.status_code == 200
    assert malformed.json()["status"] == "ignored"


def test_webhook_empty_body(client, docusign):
    assert post_webhook(client, b"").status_code == 400
    assert post_webhook(client, b"   ").status_code == 400


def test_webhook_hmac(client, db_session, monkeypatch, docusign):
    monkeypatch.setattr(settings, "docusign_webhook_secret", "connect-secret")
    lease = make_lease(db_session)
    make_envelope(db_session, lease)
    body = connect_event("recipient-completed", recipientId="1")

    assert post_webhook(client, body).status_code == 401
    bad = post_webhook(client, body, headers={"X-DocuSign-Signature-1": "bm90LXRoZS1zaWduYXR1cmU="})
    assert bad.status_code == 401

    good = post_webhook(
        client, body,
        headers={"X-DocuSign-Signature-2": compute_hmac("connect-secret", body.encode())},
    )
    assert good.status_code == 200
    assert good.json()["applied"] == 1

    non_ascii = post_webhook(client, body, headers={"X-DocuSign-Signature-1": "sïgnature".encode("utf-8")})
    assert non_ascii.status_code == 401


def test_signature_comparisons_tolerate_non_ascii():
    assert verify_hmac({"x-docusign-signature-1": "sïgnature"}, b"{}", secret="connect-secret") is False
    assert fingerprints_match("verifier", "é" * 64) is False
    assert fingerprints_match("verifier", fingerprint("verifier")) is True


# ---- HTTP client ----

def test_client_retries_server_errors():
    calls = []

    async def flaky(request):
        calls.append(request.path)
        if len(calls) < 3:
            return web.Response(status=503, text="busy")
        return web.json_response({"ok": True})

    async def scenario():
        app = web.Application()
        app.router.add_get("/flaky", flaky)
        async with test_utils.TestServer(app) as server:
            docusign = DocusignClient(max_retries=3, backoff_seconds=0)
            return await docusign._json("GET", str(server.make_url("/flaky")), expected=(200,))

    assert asyncio.run(scenario()) == {"ok": True}
    assert len(calls) == 3


def test_client_does_not_retry_client_errors():
    calls = []

    async def rejected(request):
        calls.append(request.path)
        return web.json_response({"error": "invalid_grant"}, status=400)

    async def scenario():
        app = web.Application()
        app.router.add_post("/oauth/token", rejected)
        async with test_utils.TestServer(app) as server:
            docusign = DocusignClient(max_retries=3, backoff_seconds=0)
            await docusign._request("POST", str(server.make_url("/oauth/token")), expected=(200,))

    with pytest.raises(ProviderAPIError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 400
    assert len(calls) == 1
