# leasesign/esign/router.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from leasesign.core.config import settings
from leasesign.core.db import get_db
from leasesign.core.jwt import AccountPrincipal, get_current_account
from leasesign.esign import utils
from leasesign.esign.exceptions import (
    ESignBaseException,
    MalformedWebhookError,
    OAuthStateMismatchError,
    convert_to_http_exception,
)
from leasesign.esign.schemas import ConnectionStatus, ConnectionTestResult, WebhookResult
from leasesign.esign.services import provider_connection_service, webhook_service
from leasesign.esign.webhooks import parse_webhook
from leasesign.utils.logger import get_logger

router = APIRouter(tags=["Esign"], prefix="/esign")
logger = get_logger(__name__)

STATE_COOKIE = "oauth_state"
VERIFIER_COOKIE = "pkce_verifier"
COOKIE_PATH = "/esign"


def _set_oauth_cookie(response, key: str, value: str) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=settings.oauth_cookie_max_age_seconds,
        path=COOKIE_PATH,
        httponly=True,
        secure=settings.oauth_cookie_secure,
        samesite="lax",
    )


def _clear_oauth_cookies(response) -> None:
    for key in (STATE_COOKIE, VERIFIER_COOKIE):
        response.delete_cookie(
            key=key, path=COOKIE_PATH, httponly=True, secure=settings.oauth_cookie_secure, samesite="lax"
        )


def _integrations_url(outcome: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/admin/integrations?docusign={outcome}"


@router.get("/connect")
def connect(
    account_id: int = Query(..., alias="accountId"),
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """
    Start the Docusign authorization for a landlord account.
    """
    principal.require_account(account_id)
    redirect = provider_connection_service.begin_connect(db, account_id)
    response = RedirectResponse(redirect.authorization_url, status_code=status.HTTP_302_FOUND)
    _set_oauth_cookie(response, STATE_COOKIE, redirect.state)
    _set_oauth_cookie(response, VERIFIER_COOKIE, redirect.verifier_fingerprint)
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Docusign redirects the browser here after the landlord grants or denies access.
    """
    if error or not code:
        logger.warning("Docusign authorization not granted", error=error)
        response = RedirectResponse(_integrations_url("error"), status_code=status.HTTP_302_FOUND)
        _clear_oauth_cookies(response)
        return response

    try:
        await provider_connection_service.complete_connect(
            db,
            code=code,
            state=state,
            cookie_state=request.cookies.get(STATE_COOKIE),
            cookie_verifier_fingerprint=request.cookies.get(VERIFIER_COOKIE),
        )
        response = RedirectResponse(_integrations_url("connected"), status_code=status.HTTP_302_FOUND)
    except OAuthStateMismatchError as e:
        logger.warning("Docusign callback rejected", reason=e.details.get("reason"))
        http_exc = convert_to_http_exception(e)
        response = JSONResponse(status_code=http_exc.status_code, content=http_exc.detail)
    except ESignBaseException as e:
        logger.error("Docusign callback failed", error_message=e.message)
        response = RedirectResponse(_integrations_url("error"), status_code=status.HTTP_302_FOUND)

    _clear_oauth_cookies(response)
    return response


@router.get("/connection", response_model=ConnectionStatus)
def get_connection_status(
    account_id: int = Query(..., alias="accountId"),
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """Connection summary for a landlord account. Never includes tokens."""
    principal.require_account(account_id)
    return provider_connection_service.connection_status(db, account_id)


@router.post("/connection/test", response_model=ConnectionTestResult)
async def test_connection(
    account_id: int = Query(..., alias="accountId"),
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """Make a live call to the connected Docusign account."""
    principal.require_account(account_id)
    try:
        return await provider_connection_service.test_connection(db, account_id)
    except ESignBaseException as e:
        raise convert_to_http_exception(e) from e


@router.post("/webhooks/docusign", response_model=WebhookResult)
async def docusign_webhooks(request: Request, db: Session = Depends(get_db)):
    """
    Docusign Connect notifications, JSON or legacy XML.

    Anything that is not structurally broken is acknowledged with a 200 so
    Docusign does not keep redelivering it.
    """
    raw = await request.body()
    if not raw or not raw.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty webhook body")

    headers = {k.lower(): v for k, v in request.headers.items()}
    if not utils.verify_hmac(headers, raw):
        logger.warning("Docusign webhook failed HMAC verification")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bad signature")

    try:
        events = parse_webhook(raw, headers.get("content-type"))
    except MalformedWebhookError as e:
        logger.warning("Ignoring malformed Docusign webhook", reason=e.details.get("reason"))
        return WebhookResult(status="ignored", reason=e.details.get("reason"))

    return await webhook_service.handle_events(db, events)
