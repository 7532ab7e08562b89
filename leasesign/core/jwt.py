# leasesign/core/jwt.py

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt

from leasesign.core.config import settings
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

# --- JWT Token Management ---

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create an access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> dict:
    """Verify a token"""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError as ese:
        logger.warning("Token has expired.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from ese
    except JWTError as e:
        logger.warning("Error verifying token", error_message=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def create_account_token(landlord_account_id: int, user_id: Optional[int] = None) -> str:
    """Token for a platform user acting on behalf of a landlord account"""
    return create_access_token({"sub": str(landlord_account_id), "uid": user_id})


class AccountPrincipal:
    """The landlord account and platform user behind a bearer token"""

    def __init__(self, landlord_account_id: int, user_id: Optional[int] = None):
        self.landlord_account_id = landlord_account_id
        self.user_id = user_id

    def require_account(self, landlord_account_id: int) -> None:
        if self.landlord_account_id != landlord_account_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to act for this landlord account.",
            )


def get_current_account(token: Optional[str] = Depends(oauth2_scheme)) -> AccountPrincipal:
    """
    Dependency resolving the bearer token to the landlord account it was issued for.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(token)
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        logger.error("Token payload missing 'sub' field")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials.",
        )
    return AccountPrincipal(int(subject), payload.get("uid"))
