# leasesign/esign/services.py

import base64
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from leasesign.core.config import settings
from leasesign.documents.renderer import (
    LANDLORD_SIGNATURE_ANCHOR,
    TENANT_SIGNATURE_ANCHOR,
    render_lease_document,
)
from leasesign.documents.schemas import AnchorKind, SigningRole
from leasesign.esign import oauth
from leasesign.esign.docusign_client import docusign_client
from leasesign.esign.exceptions import (
    EnvelopeNotFoundError,
    OAuthStateMismatchError,
    ProviderAPIError,
    ProviderAuthError,
    ProviderNotConnectedError,
)
from leasesign.esign.models import ESignEnvelope, ProviderConnection
from leasesign.esign.schemas import (
    ConnectionStatus,
    ConnectionTestResult,
    ConnectRedirect,
    EnvelopeResult,
    RecipientViewResponse,
    WebhookResult,
)
from leasesign.esign.webhooks import (
    EnvelopeCompleted,
    EnvelopeStatusChanged,
    IgnoredEvent,
    RecipientCompleted,
    WebhookEvent,
)
from leasesign.leases.models import Lease
from leasesign.leases.services import (
    dispatch_lease_events,
    get_lease,
    lease_state_synchronizer,
    lease_terms,
)
from leasesign.notifications.services import notification_dispatcher
from leasesign.signing.models import ArtifactSource, SignedArtifact
from leasesign.signing.services import lease_recipient, sha256_hex
from leasesign.utils.general import as_utc, utcnow
from leasesign.utils.logger import get_logger
from leasesign.utils.s3_utils import StorageError, s3_utils
from leasesign.utils.security import decrypt_secret, encrypt_secret, fingerprint, fingerprints_match

logger = get_logger(__name__)

RECIPIENT_ROLES = {"1": SigningRole.TENANT.value, "2": SigningRole.LANDLORD.value}
ENVELOPE_COMPLETED = "completed"
ENVELOPE_DOWNLOAD_FAILED = "completed_download_failed"


def _reconnect_required(exc: ProviderAPIError) -> bool:
    return exc.status_code in (400, 401)


class ProviderConnectionService:
    """
    Docusign OAuth connection per landlord account: connect, callback,
    token refresh and status.
    """

    def __init__(self, client=None):
        self.client = client or docusign_client

    def get_connection(self, db: Session, landlord_account_id: int) -> Optional[ProviderConnection]:
        return db.execute(
            select(ProviderConnection).where(
                ProviderConnection.landlord_account_id == landlord_account_id
            )
        ).scalar_one_or_none()

    def begin_connect(self, db: Session, landlord_account_id: int) -> ConnectRedirect:
        """
        Start an authorization attempt. A newer attempt replaces any in-flight one.
        """
        state = oauth.generate_state()
        verifier = oauth.generate_code_verifier()

        connection = self.get_connection(db, landlord_account_id)
        if connection is None:
            connection = ProviderConnection(landlord_account_id=landlord_account_id)
            db.add(connection)
        connection.oauth_state = state
        connection.pkce_verifier = encrypt_secret(verifier)
        db.commit()

        logger.info("Docusign connect started", landlord_account_id=landlord_account_id)
        return ConnectRedirect(
            authorization_url=oauth.build_authorization_url(state, verifier),
            state=state,
            verifier_fingerprint=fingerprint(verifier),
        )

    async def complete_connect(
        self,
        db: Session,
        code: str,
        state: str,
        cookie_state: Optional[str],
        cookie_verifier_fingerprint: Optional[str],
    ) -> ProviderConnection:
        """
        Finish the authorization started by begin_connect.

        Raises:
            OAuthStateMismatchError: the callback does not belong to a live attempt
            ProviderAuthError: Docusign rejected the code or could not be reached
        """
        if not state or not cookie_state or state != cookie_state:
            raise OAuthStateMismatchError("state does not match the browser session")

        connection = db.execute(
            select(ProviderConnection).where(ProviderConnection.oauth_state == state)
        ).scalar_one_or_none()
        if connection is None or not connection.pkce_verifier:
            raise OAuthStateMismatchError("no authorization attempt is waiting for this state")

        verifier = decrypt_secret(connection.pkce_verifier)
        if not fingerprints_match(verifier, cookie_verifier_fingerprint):
            raise OAuthStateMismatchError("verifier does not match the browser session")

        # Single use, whatever the provider says next
        connection.oauth_state = None
        connection.pkce_verifier = None

        try:
            tokens = await self.client.exchange_code(code, verifier)
            userinfo = await self.client.get_userinfo(tokens["access_token"])
        except (ProviderAPIError, KeyError) as e:
            reconnect = isinstance(e, ProviderAPIError) and _reconnect_required(e)
            connection.last_error = "Authorization code exchange failed"
            db.commit()
            logger.error(
                "Docusign code exchange failed",
                landlord_account_id=connection.landlord_account_id,
                error_message=str(e),
            )
            raise ProviderAuthError(
                "Docusign did not accept the authorization.", reconnect_required=reconnect
            ) from e

        account = self._default_account(userinfo)
        if account is None:
            connection.last_error = "Docusign user has no accounts"
            db.commit()
            raise ProviderAuthError("Docusign user has no eSignature account.", reconnect_required=True)

        self._store_tokens(connection, tokens)
        connection.provider_account_id = account.get("account_id")
        connection.provider_base_uri = account.get("base_uri")
        connection.connected_at = utcnow()
        connection.last_error = None
        db.commit()

        logger.info(
            "Docusign connected",
            landlord_account_id=connection.landlord_account_id,
            provider_account_id=connection.provider_account_id,
        )
        return connection

    @staticmethod
    def _default_account(userinfo: dict) -> Optional[dict]:
        accounts = userinfo.get("accounts") or []
        for account in accounts:
            if account.get("is_default"):
                return account
        return accounts[0] if accounts else None

    @staticmethod
    def _store_tokens(connection: ProviderConnection, tokens: dict) -> None:
        connection.access_token_encrypted = encrypt_secret(tokens["access_token"])
        if tokens.get("refresh_token"):
            connection.refresh_token_encrypted = encrypt_secret(tokens["refresh_token"])
        connection.access_token_expires_at = utcnow() + timedelta(
            seconds=int(tokens.get("expires_in") or 3600)
        )

    async def get_access_token(
        self, db: Session, landlord_account_id: int
    ) -> Tuple[str, ProviderConnection]:
        """
        A usable access token for the account, refreshing it when it is close
        to expiry.

        Raises:
            ProviderNotConnectedError, ProviderAuthError
        """
        connection = self.get_connection(db, landlord_account_id)
        if connection is None or not connection.is_connected:
            raise ProviderNotConnectedError(landlord_account_id)

        margin = timedelta(seconds=settings.docusign_token_refresh_margin_seconds)
        expires_at = as_utc(connection.access_token_expires_at)
        if connection.access_token_encrypted and expires_at and expires_at - margin > utcnow():
            return decrypt_secret(connection.access_token_encrypted), connection

        try:
            refresh_token = decrypt_secret(connection.refresh_token_encrypted)
        except ValueError as e:
            raise ProviderAuthError(
                "Stored Docusign authorization is unreadable. Please reconnect.", reconnect_required=True
            ) from e
        try:
            tokens = await self.client.refresh_access_token(refresh_token)
            access_token = tokens["access_token"]
        except (ProviderAPIError, KeyError) as e:
            reconnect = isinstance(e, ProviderAPIError) and _reconnect_required(e)
            if reconnect:
                connection.access_token_encrypted = None
                connection.refresh_token_encrypted = None
                connection.last_error = "Refresh token rejected, reconnect required"
            else:
                connection.last_error = "Token refresh failed"
            db.commit()
            logger.error(
                "Docusign token refresh failed",
                landlord_account_id=landlord_account_id,
                reconnect_required=reconnect,
            )
            raise ProviderAuthError(
                "Docusign authorization has expired. Please reconnect." if reconnect
                else "Docusign could not be reached to refresh authorization.",
                reconnect_required=reconnect,
            ) from e

        self._store_tokens(connection, tokens)
        connection.last_error = None
        db.commit()
        logger.info("Docusign token refreshed", landlord_account_id=landlord_account_id)
        return access_token, connection

    def connection_status(self, db: Session, landlord_account_id: int) -> ConnectionStatus:
        connection = self.get_connection(db, landlord_account_id)
        if connection is None:
            return ConnectionStatus(landlord_account_id=landlord_account_id, connected=False)
        return ConnectionStatus(
            landlord_account_id=landlord_account_id,
            connected=connection.is_connected,
            provider_account_id=connection.provider_account_id,
            access_token_expires_at=connection.access_token_expires_at,
            connected_at=connection.connected_at,
            last_error=connection.last_error,
        )

    async def test_connection(self, db: Session, landlord_account_id: int) -> ConnectionTestResult:
        """Live call against the connected Docusign account."""
        access_token, connection = await self.get_access_token(db, landlord_account_id)
        account = await self.client.get_account(
            access_token, connection.provider_base_uri, connection.provider_account_id
        )
        return ConnectionTestResult(
            landlord_account_id=landlord_account_id,
            ok=True,
            provider_account_id=connection.provider_account_id,
            account_name=account.get("accountName"),
        )


def client_user_id(lease: Lease, role: SigningRole) -> str:
    """Embedded-signing id for a lease party; must match between envelope and recipient view."""
    if role == SigningRole.TENANT:
        return f"tenant-{lease.tenant_id or lease.id}"
    return f"landlord-{lease.landlord_account_id}"


class EnvelopeService:
    """
    Sends leases through Docusign and reconciles the results.
    """

    def __init__(self, client=None, connections=None, storage=None, synchronizer=None, dispatcher=None):
        self.client = client or docusign_client
        self.connections = connections or provider_connection_service
        self.storage = storage or s3_utils
        self.synchronizer = synchronizer or lease_state_synchronizer
        self.dispatcher = dispatcher or notification_dispatcher

    def build_envelope_definition(self, lease: Lease) -> dict:
        tenant = lease_recipient(lease, SigningRole.TENANT)
        landlord = lease_recipient(lease, SigningRole.LANDLORD)
        document = render_lease_document(lease_terms(lease))

        initials_tabs = [
            {"anchorString": anchor.name, "anchorUnits": "pixels", "anchorXOffset": "0", "anchorYOffset": "0"}
            for anchor in document.anchors_for(SigningRole.TENANT)
            if anchor.kind == AnchorKind.INITIALS
        ]
        return {
            "emailSubject": f"Please Sign: {document.title}",
            "status": "sent",
            "documents": [
                {
                    "documentBase64": base64.b64encode(document.html.encode("utf-8")).decode("ascii"),
                    "name": document.title,
                    "fileExtension": "html",
                    "documentId": "1",
                }
            ],
            "recipients": {
                "signers": [
                    {
                        "email": str(tenant.email),
                        "name": tenant.name,
                        "recipientId": "1",
                        "routingOrder": "1",
                        "clientUserId": client_user_id(lease, SigningRole.TENANT),
                        "tabs": {
                            "initialHereTabs": initials_tabs,
                            "signHereTabs": [
                                {"anchorString": TENANT_SIGNATURE_ANCHOR, "anchorUnits": "pixels",
                                 "anchorXOffset": "0", "anchorYOffset": "0"}
                            ],
                        },
                    },
                    {
                        "email": str(landlord.email),
                        "name": landlord.name,
                        "recipientId": "2",
                        "routingOrder": "2",
                        "clientUserId": client_user_id(lease, SigningRole.LANDLORD),
                        "tabs": {
                            "signHereTabs": [
                                {"anchorString": LANDLORD_SIGNATURE_ANCHOR, "anchorUnits": "pixels",
                                 "anchorXOffset": "0", "anchorYOffset": "0"}
                            ],
                        },
                    },
                ]
            },
            "customFields": {
                "textCustomFields": [
                    {"name": "project", "value": "lease", "show": "false"},
                    {"name": "lease_id", "value": str(lease.id), "show": "false"},
                ]
            },
        }

    async def send_lease_envelope(self, db: Session, lease_id: int, created_by: Optional[int] = None) -> EnvelopeResult:
        """
        Render the lease from its current data and send it for signature.

        Raises:
            LeaseNotFoundError, RecipientMissingError, DocumentValidationError,
            ProviderNotConnectedError, ProviderAuthError, ProviderAPIError
        """
        lease = get_lease(db, lease_id)
        definition = self.build_envelope_definition(lease)
        access_token, connection = await self.connections.get_access_token(db, lease.landlord_account_id)

        response = await self.client.create_envelope(
            access_token, connection.provider_base_uri, connection.provider_account_id, definition
        )
        envelope_id = response.get("envelopeId")
        if not envelope_id:
            raise ProviderAPIError("Docusign did not return an envelope id")

        envelope = ESignEnvelope(
            envelope_id=envelope_id,
            status=response.get("status") or "sent",
            object_type="lease",
            object_id=lease.id,
            landlord_account_id=lease.landlord_account_id,
            recipient_roles=dict(RECIPIENT_ROLES),
            created_by=created_by,
        )
        db.add(envelope)
        lease.docusign_envelope_id = envelope_id
        db.commit()

        logger.info("Docusign envelope sent", lease_id=lease.id, envelope_id=envelope_id)
        return EnvelopeResult(
            lease_id=lease.id,
            envelope_id=envelope_id,
            status=envelope.status,
            recipient_roles=envelope.recipient_roles,
        )

    async def create_recipient_view(
        self, db: Session, lease_id: int, role: SigningRole, return_url: Optional[str] = None
    ) -> RecipientViewResponse:
        """
        One-time embedded signing URL for a party of the lease's envelope.
        """
        role = SigningRole(role)
        lease = get_lease(db, lease_id)
        if not lease.docusign_envelope_id:
            raise EnvelopeNotFoundError(lease.id)
        recipient = lease_recipient(lease, role)
        access_token, connection = await self.connections.get_access_token(db, lease.landlord_account_id)

        view = await self.client.create_recipient_view(
            access_token,
            connection.provider_base_uri,
            connection.provider_account_id,
            lease.docusign_envelope_id,
            {
                "returnUrl": return_url or f"{settings.frontend_url.rstrip('/')}/leases/{lease.id}",
                "authenticationMethod": "none",
                "email": str(recipient.email),
                "userName": recipient.name,
                "clientUserId": client_user_id(lease, role),
            },
        )
        return RecipientViewResponse(
            lease_id=lease.id, envelope_id=lease.docusign_envelope_id, role=role, url=view["url"]
        )

    async def download_combined_document(self, db: Session, envelope: ESignEnvelope) -> bytes:
        access_token, connection = await self.connections.get_access_token(db, envelope.landlord_account_id)
        return await self.client.download_combined_document(
            access_token, connection.provider_base_uri, connection.provider_account_id, envelope.envelope_id
        )

    async def store_completed_document(self, db: Session, envelope: ESignEnvelope) -> SignedArtifact:
        """Fetch the completed envelope PDF and keep it as a signed artifact."""
        content = await self.download_combined_document(db, envelope)
        content_hash = sha256_hex(content)
        document_key = f"signed-leases/{envelope.object_id}/{content_hash}.pdf"
        self.storage.upload_bytes(
            content, document_key, metadata={"sha256": content_hash, "envelope_id": envelope.envelope_id}
        )
        artifact = SignedArtifact(
            lease_id=envelope.object_id,
            source=ArtifactSource.DOCUSIGN.value,
            document_key=document_key,
            content_hash=content_hash,
            size_bytes=len(content),
        )
        db.add(artifact)
        get_lease(db, envelope.object_id).signed_document_key = document_key
        db.flush()
        return artifact


class WebhookService:
    """
    Applies decoded Connect events. Every write goes through a conditional
    update, so redelivered notifications change nothing.
    """

    def __init__(self, envelopes=None, synchronizer=None, dispatcher=None):
        self.envelopes = envelopes or envelope_service
        self.synchronizer = synchronizer or lease_state_synchronizer
        self.dispatcher = dispatcher or notification_dispatcher

    def _envelope(self, db: Session, envelope_id: str) -> Optional[ESignEnvelope]:
        return db.execute(
            select(ESignEnvelope).where(ESignEnvelope.envelope_id == envelope_id)
        ).scalar_one_or_none()

    def _record(self, db: Session, envelope: ESignEnvelope, role: str, occurred_at):
        return self.synchronizer.record_signature(db, envelope.object_id, role, occurred_at or utcnow())

    async def _complete(self, db: Session, envelope: ESignEnvelope, event: EnvelopeCompleted) -> List:
        # Completion implies every recipient signed, even if their own events were lost
        results = [
            self._record(db, envelope, role, event.occurred_at)
            for role in dict.fromkeys((envelope.recipient_roles or {}).values())
        ]
        claimed = db.execute(
            update(ESignEnvelope)
            .where(
                ESignEnvelope.id == envelope.id,
                ESignEnvelope.status != ENVELOPE_COMPLETED,
            )
            .values(status=ENVELOPE_COMPLETED)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        db.commit()
        if not claimed:
            return results

        try:
            artifact = await self.envelopes.store_completed_document(db, envelope)
            db.commit()
            logger.info(
                "Stored completed envelope document",
                envelope_id=envelope.envelope_id, lease_id=envelope.object_id, artifact_id=artifact.id,
            )
        except (ProviderAPIError, ProviderAuthError, ProviderNotConnectedError, StorageError) as e:
            db.rollback()
            db.execute(
                update(ESignEnvelope)
                .where(ESignEnvelope.id == envelope.id)
                .values(status=ENVELOPE_DOWNLOAD_FAILED)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.error(
                "Completed envelope document could not be stored",
                envelope_id=envelope.envelope_id, error_message=e.message,
            )
        return results

    async def handle_events(self, db: Session, events: List[WebhookEvent]) -> WebhookResult:
        applied, fully_executed = 0, False
        lease_ids = set()
        envelope_id = None

        for event in events:
            if isinstance(event, IgnoredEvent):
                logger.info("Ignoring Docusign event", event=event.event, envelope_id=event.envelope_id)
                continue

            envelope_id = event.envelope_id
            envelope = self._envelope(db, event.envelope_id)
            if envelope is None:
                logger.warning("Webhook for unknown envelope", envelope_id=event.envelope_id)
                return WebhookResult(status="ignored", envelope_id=envelope_id, reason="unknown envelope")

            results = []
            if isinstance(event, RecipientCompleted):
                role = envelope.role_for_recipient(event.recipient_id) or envelope.role_for_recipient(
                    event.routing_order
                )
                if role is None:
                    logger.warning(
                        "Recipient has no signing role",
                        envelope_id=envelope.envelope_id, recipient_id=event.recipient_id,
                    )
                    continue
                results.append(self._record(db, envelope, role, event.occurred_at))
                db.commit()
            elif isinstance(event, EnvelopeCompleted):
                results.extend(await self._complete(db, envelope, event))
            elif isinstance(event, EnvelopeStatusChanged):
                db.execute(
                    update(ESignEnvelope)
                    .where(
                        ESignEnvelope.id == envelope.id,
                        ESignEnvelope.status.not_in([ENVELOPE_COMPLETED, ENVELOPE_DOWNLOAD_FAILED]),
                    )
                    .values(status=event.status)
                    .execution_options(synchronize_session=False)
                )
                db.commit()

            for result in results:
                applied += int(result.applied)
                if result.fully_executed:
                    fully_executed = True
                    lease_ids.add(result.lease_id)

        for lease_id in lease_ids:
            dispatch_lease_events(db, self.dispatcher, lease_id=lease_id)

        logger.info(
            "Docusign webhook processed",
            envelope_id=envelope_id, applied=applied, fully_executed=fully_executed,
        )
        return WebhookResult(status="ok", envelope_id=envelope_id, applied=applied, fully_executed=fully_executed)


provider_connection_service = ProviderConnectionService()
envelope_service = EnvelopeService()
webhook_service = WebhookService()
