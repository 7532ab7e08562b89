# leasesign/esign/oauth.py

"""
OAuth 2.0 authorization-code flow with PKCE (RFC 7636, S256) for Docusign.
"""

import base64
import hashlib
import secrets
from urllib.parse import urlencode

from leasesign.core.config import settings

OAUTH_SCOPE = "signature offline_access"
CHALLENGE_METHOD = "S256"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    return _b64url(secrets.token_bytes(32))


def code_challenge(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def build_authorization_url(state: str, verifier: str) -> str:
    params = {
        "response_type": "code",
        "scope": OAUTH_SCOPE,
        "client_id": settings.docusign_integration_key,
        "redirect_uri": settings.docusign_redirect_uri,
        "state": state,
        "code_challenge": code_challenge(verifier),
        "code_challenge_method": CHALLENGE_METHOD,
    }
    return f"{settings.docusign_oauth_base}/oauth/auth?{urlencode(params)}"
