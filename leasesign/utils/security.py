# leasesign/utils/security.py

import base64
import hashlib
import hmac

from cryptography.fernet import Fernet, InvalidToken

from leasesign.core.config import settings
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


def _get_fernet() -> Fernet:
    """Build a Fernet instance from the SECRET_KEY setting."""
    if not settings.secret_key:
        raise ValueError("SECRET_KEY is not set. Cannot encrypt or decrypt provider tokens.")
    # Derive a 32-byte key so any passphrase works
    key_bytes = hashlib.sha256(settings.secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt a string using Fernet
    Args:
        plaintext: str
    Returns:
        str: Fernet token
    """
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    """
    Decrypt a Fernet token back to plaintext
    Args:
        ciphertext: str
    Returns:
        str
    Raises:
        ValueError: if the token was not produced with the current key
    """
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        logger.error("Stored secret could not be decrypted")
        raise ValueError("Stored secret could not be decrypted") from e


def fingerprint(value: str) -> str:
    """Keyed SHA-256 fingerprint of a value, safe to hand to a browser."""
    return hmac.new(settings.secret_key.encode(), value.encode(), hashlib.sha256).hexdigest()


def fingerprints_match(value: str, candidate: str) -> bool:
    if not value or not candidate:
        return False
    return hmac.compare_digest(fingerprint(value).encode(), candidate.encode())
