# leasesign/esign/docusign_client.py

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from leasesign.core.config import settings
from leasesign.esign.exceptions import ProviderAPIError
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


class DocusignClient:
    """
    Thin aiohttp client for the Docusign OAuth and eSignature REST APIs.

    Network errors and 5xx responses are retried with exponential backoff;
    4xx responses are returned to the caller as ProviderAPIError immediately.
    """

    def __init__(self, max_retries: Optional[int] = None, backoff_seconds: float = 0.5):
        self.max_retries = max_retries or settings.docusign_max_retries
        self.backoff_seconds = backoff_seconds

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=settings.docusign_http_timeout_seconds,
            connect=settings.docusign_connect_timeout_seconds,
        )

    @staticmethod
    def _rest_base(base_uri: str, account_id: str) -> str:
        base = (base_uri or settings.docusign_api_base).rstrip("/")
        if not base.endswith("/restapi"):
            base = f"{base}/restapi"
        return f"{base}/v2.1/accounts/{account_id}"

    @staticmethod
    def _bearer(access_token: str, accept: str = "application/json") -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": accept}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        expected=(200, 201),
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ) -> bytes:
        """
        Perform a request and return the response body.

        Raises:
            ProviderAPIError: on a 4xx, or once retries are exhausted
        """
        last_error: Optional[ProviderAPIError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                    async with session.request(
                        method, url, headers=headers, json=json_body, data=form, auth=auth
                    ) as response:
                        body = await response.read()
                        if response.status in expected:
                            return body
                        text = body.decode("utf-8", errors="replace")
                        if response.status < 500:
                            logger.error(
                                "Docusign request rejected",
                                method=method, url=url, status=response.status, body=text[:500],
                            )
                            raise ProviderAPIError(
                                f"Docusign returned {response.status}", response.status, text
                            )
                        last_error = ProviderAPIError(
                            f"Docusign returned {response.status}", response.status, text
                        )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = ProviderAPIError(f"Docusign request failed: {e.__class__.__name__}")

            logger.warning(
                "Docusign request failed, retrying",
                method=method, url=url, attempt=attempt, error_message=last_error.message,
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        raise last_error

    async def _json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        body = await self._request(method, url, **kwargs)
        try:
            return json.loads(body) if body else {}
        except ValueError as e:
            raise ProviderAPIError("Docusign returned a non-JSON response") from e

    # ---- OAuth ----

    def _client_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(settings.docusign_integration_key or "", settings.docusign_secret_key or "")

    async def exchange_code(self, code: str, code_verifier: str) -> Dict[str, Any]:
        return await self._json(
            "POST",
            f"{settings.docusign_oauth_base}/oauth/token",
            expected=(200,),
            auth=self._client_auth(),
            form={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.docusign_redirect_uri,
                "code_verifier": code_verifier,
            },
        )

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        return await self._json(
            "POST",
            f"{settings.docusign_oauth_base}/oauth/token",
            expected=(200,),
            auth=self._client_auth(),
            form={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def get_userinfo(self, access_token: str) -> Dict[str, Any]:
        return await self._json(
            "GET",
            f"{settings.docusign_oauth_base}/oauth/userinfo",
            expected=(200,),
            headers=self._bearer(access_token),
        )

    # ---- eSignature ----

    async def get_account(self, access_token: str, base_uri: str, account_id: str) -> Dict[str, Any]:
        return await self._json(
            "GET", self._rest_base(base_uri, account_id), expected=(200,),
            headers=self._bearer(access_token),
        )

    async def create_envelope(
        self, access_token: str, base_uri: str, account_id: str, definition: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._json(
            "POST",
            f"{self._rest_base(base_uri, account_id)}/envelopes",
            expected=(201,),
            headers=self._bearer(access_token),
            json_body=definition,
        )

    async def create_recipient_view(
        self,
        access_token: str,
        base_uri: str,
        account_id: str,
        envelope_id: str,
        view_request: Dict[str, Any],
    ) -> Dict[str, Any]:
        return await self._json(
            "POST",
            f"{self._rest_base(base_uri, account_id)}/envelopes/{envelope_id}/views/recipient",
            expected=(201,),
            headers=self._bearer(access_token),
            json_body=view_request,
        )

    async def download_combined_document(
        self, access_token: str, base_uri: str, account_id: str, envelope_id: str
    ) -> bytes:
        """Downloads the final, signed PDF from a completed envelope."""
        return await self._request(
            "GET",
            f"{self._rest_base(base_uri, account_id)}/envelopes/{envelope_id}/documents/combined",
            expected=(200,),
            headers=self._bearer(access_token, accept="application/pdf"),
        )


# Singleton instance
docusign_client = DocusignClient()
