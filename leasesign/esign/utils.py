# leasesign/esign/utils.py

import base64
import hashlib
import hmac
from typing import Mapping, Optional

from leasesign.core.config import settings

SIGNATURE_HEADERS = (
    "x-docusign-signature-1",
    "x-docusign-signature-2",
    "x-docusign-signature-3",
)


def compute_hmac(secret: str, raw: bytes) -> str:
    return base64.b64encode(hmac.new(secret.encode(), raw, hashlib.sha256).digest()).decode()


def verify_hmac(headers: Mapping[str, str], raw: bytes, secret: Optional[str] = None) -> bool:
    """
    Check a Connect payload against any of its HMAC signature headers.
    Always passes when no webhook secret is configured.
    """
    secret = secret if secret is not None else settings.docusign_webhook_secret
    if not secret:
        return True
    calc = compute_hmac(secret, raw)
    sigs = [headers.get(name) for name in SIGNATURE_HEADERS]
    return any(s and hmac.compare_digest(s.encode(), calc.encode()) for s in sigs)
