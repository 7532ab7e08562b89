# leasesign/esign/__init__.py

from leasesign.esign.docusign_client import DocusignClient, docusign_client
from leasesign.esign.services import (
    EnvelopeService,
    ProviderConnectionService,
    WebhookService,
    envelope_service,
    provider_connection_service,
    webhook_service,
)
from leasesign.esign.webhooks import parse_webhook

__all__ = [
    "DocusignClient",
    "docusign_client",
    "EnvelopeService",
    "ProviderConnectionService",
    "WebhookService",
    "envelope_service",
    "provider_connection_service",
    "webhook_service",
    "parse_webhook",
]
