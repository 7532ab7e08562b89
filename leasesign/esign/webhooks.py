# leasesign/esign/webhooks.py

"""
Decoding of Docusign Connect notifications.

Connect 2.0 delivers JSON events; older configurations post the
DocuSignEnvelopeInformation XML document. Both are reduced to the same
small set of typed events.
"""

import json
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from dateutil import parser as date_parser
from lxml import etree
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from leasesign.esign.exceptions import MalformedWebhookError

ENVELOPE_STATUS_EVENTS = {
    "envelope-sent": "sent",
    "envelope-delivered": "delivered",
    "envelope-declined": "declined",
    "envelope-voided": "voided",
}


class RecipientCompleted(BaseModel):
    kind: Literal["recipient_completed"] = "recipient_completed"
    envelope_id: str
    recipient_id: Optional[str] = None
    routing_order: Optional[str] = None
    occurred_at: Optional[datetime] = None


class EnvelopeCompleted(BaseModel):
    kind: Literal["envelope_completed"] = "envelope_completed"
    envelope_id: str
    occurred_at: Optional[datetime] = None


class EnvelopeStatusChanged(BaseModel):
    kind: Literal["envelope_status"] = "envelope_status"
    envelope_id: str
    status: str
    occurred_at: Optional[datetime] = None


class IgnoredEvent(BaseModel):
    kind: Literal["ignored"] = "ignored"
    event: str
    envelope_id: Optional[str] = None


WebhookEvent = Annotated[
    Union[RecipientCompleted, EnvelopeCompleted, EnvelopeStatusChanged, IgnoredEvent],
    Field(discriminator="kind"),
]

# ---- Connect 2.0 JSON ----

class ConnectData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    envelope_id: str = Field(alias="envelopeId", min_length=1)
    recipient_id: Optional[str] = Field(default=None, alias="recipientId")
    account_id: Optional[str] = Field(default=None, alias="accountId")

    @field_validator("recipient_id", "account_id", mode="before")
    @classmethod
    def _as_string(cls, value):
        return None if value is None else str(value)


class ConnectPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str
    generated_at: Optional[datetime] = Field(default=None, alias="generatedDateTime")
    data: ConnectData


def _parse_json(body: bytes) -> List[WebhookEvent]:
    try:
        raw = json.loads(body)
    except ValueError as e:
        raise MalformedWebhookError("body is not valid JSON") from e
    if not isinstance(raw, dict):
        raise MalformedWebhookError("JSON body is not an object")

    event = str(raw.get("event") or "").lower()
    known = event in ENVELOPE_STATUS_EVENTS or event in ("recipient-completed", "envelope-completed")
    if not known:
        envelope_id = (raw.get("data") or {}).get("envelopeId") if isinstance(raw.get("data"), dict) else None
        return [IgnoredEvent(event=event or "unknown", envelope_id=envelope_id)]

    try:
        payload = ConnectPayload.model_validate(raw)
    except ValidationError as e:
        raise MalformedWebhookError(f"{event} payload failed validation: {e.error_count()} error(s)") from e

    data = payload.data
    if event == "recipient-completed":
        return [
            RecipientCompleted(
                envelope_id=data.envelope_id,
                recipient_id=data.recipient_id,
                occurred_at=payload.generated_at,
            )
        ]
    if event == "envelope-completed":
        return [EnvelopeCompleted(envelope_id=data.envelope_id, occurred_at=payload.generated_at)]
    return [
        EnvelopeStatusChanged(
            envelope_id=data.envelope_id,
            status=ENVELOPE_STATUS_EVENTS[event],
            occurred_at=payload.generated_at,
        )
    ]


# ---- Legacy XML ----

def _child_text(element, name: str) -> Optional[str]:
    found = element.xpath(f"./*[local-name()='{name}']")
    if not found or found[0].text is None:
        return None
    return found[0].text.strip() or None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.isoparse(value)
    except ValueError:
        return None


def _parse_xml(body: bytes) -> List[WebhookEvent]:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(body, parser=parser)
    except etree.XMLSyntaxError as e:
        raise MalformedWebhookError("body is not well-formed XML") from e

    statuses = root.xpath("//*[local-name()='EnvelopeStatus']")
    if not statuses:
        raise MalformedWebhookError("XML has no EnvelopeStatus element")
    envelope_status = statuses[0]
    envelope_id = _child_text(envelope_status, "EnvelopeID")
    if not envelope_id:
        raise MalformedWebhookError("XML EnvelopeStatus has no EnvelopeID")

    events: List[WebhookEvent] = []
    for recipient in envelope_status.xpath(".//*[local-name()='RecipientStatus']"):
        if (_child_text(recipient, "Status") or "").lower() != "completed":
            continue
        events.append(
            RecipientCompleted(
                envelope_id=envelope_id,
                recipient_id=_child_text(recipient, "RecipientId"),
                routing_order=_child_text(recipient, "RoutingOrder"),
                occurred_at=_parse_timestamp(_child_text(recipient, "Signed")),
            )
        )

    status = (_child_text(envelope_status, "Status") or "").lower()
    if status == "completed":
        events.append(
            EnvelopeCompleted(
                envelope_id=envelope_id,
                occurred_at=_parse_timestamp(_child_text(envelope_status, "Completed")),
            )
        )
    elif status:
        events.append(EnvelopeStatusChanged(envelope_id=envelope_id, status=status))
    return events


def parse_webhook(body: bytes, content_type: Optional[str] = None) -> List[WebhookEvent]:
    """
    Decode a Connect notification into typed events.

    An XML notification can report several completed recipients at once, so
    the result is a list in the order the events should be applied.

    Raises:
        MalformedWebhookError: the body is neither JSON nor XML, or fails validation
    """
    stripped = (body or b"").lstrip()
    if not stripped:
        raise MalformedWebhookError("empty body")
    if "xml" in (content_type or "").lower() or stripped.startswith(b"<"):
        return _parse_xml(stripped)
    return _parse_json(stripped)
