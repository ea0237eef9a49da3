"""
Microsoft Graph API client used by the SharePoint storage backend.

Authentication uses the client credentials flow (app-only) through MSAL.
Requests go through a shared httpx.AsyncClient.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
import msal

from attachstore.logging.setup import get_logger

logger = get_logger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)


class GraphAPIError(Exception):
    """
    Failed Graph API call.

    Attributes:
        status_code: HTTP status, or None when no response was received
        code: Graph error code (e.g. "itemNotFound"), if the body carried one
        message: Human-readable description
    """

    def __init__(self, status_code: int | None, code: str | None, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 or self.code == "itemNotFound"

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409 or self.code == "nameAlreadyExists"

    def __str__(self) -> str:
        status = self.status_code if self.status_code is not None else "no response"
        return f"Graph API error ({status}, {self.code or 'unknown'}): {self.message}"


def _error_from_response(response: httpx.Response) -> GraphAPIError:
    code = None
    message = response.text or response.reason_phrase
    try:
        error = response.json().get("error", {})
        code = error.get("code")
        message = error.get("message") or message
    except (ValueError, AttributeError):
        pass
    return GraphAPIError(response.status_code, code, message)


class GraphClient:
    """
    Async Microsoft Graph client with token caching.

    Tokens are reused until five minutes before they expire. Tests can pass
    a token_provider (a callable returning a bearer token) and an httpx
    transport instead of talking to Azure AD and Graph.
    """

    BASE_URL = "https://graph.microsoft.com/v1.0"
    TIMEOUT = 30  # seconds

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        timeout: float = TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        token_provider: Callable[[], str] | None = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._token_provider = token_provider

        self._access_token: str | None = None
        self._token_expiry: datetime | None = None
        self._msal_app: msal.ConfidentialClientApplication | None = None
        self._token_lock = asyncio.Lock()

        self._http = httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _get_msal_app(self) -> msal.ConfidentialClientApplication:
        if self._msal_app is None:
            self._msal_app = msal.ConfidentialClientApplication(
                client_id=self.client_id,
                client_credential=self.client_secret,
                authority=AUTHORITY_TEMPLATE.format(tenant_id=self.tenant_id),
            )
        return self._msal_app

    def _acquire_token(self) -> dict[str, Any]:
        return self._get_msal_app().acquire_token_for_client(scopes=GRAPH_SCOPES)

    async def get_access_token(self) -> str:
        """
        Get a valid access token, using the cache if possible.

        Raises:
            GraphAPIError: If token acquisition fails
        """
        if self._token_provider is not None:
            return self._token_provider()

        async with self._token_lock:
            if self._access_token and self._token_expiry:
                if datetime.now() < self._token_expiry - TOKEN_EXPIRY_BUFFER:
                    return self._access_token

            logger.debug("Acquiring new Graph API access token")
            try:
                result = await asyncio.to_thread(self._acquire_token)
            except (ValueError, httpx.HTTPError, OSError) as e:
                logger.error(f"Error acquiring Graph API token: {e}")
                raise GraphAPIError(None, "authenticationFailed",
                                    f"Error acquiring Graph API token: {e}") from e

            if "access_token" not in result:
                error_msg = result.get(
                    "error_description", result.get("error", "Unknown error"))
                logger.error(f"Failed to acquire token: {error_msg}")
                raise GraphAPIError(None, result.get("error", "authenticationFailed"),
                                    f"Failed to acquire Graph API token: {error_msg}")

            self._access_token = result["access_token"]
            expires_in = int(result.get("expires_in", 3600))
            self._token_expiry = datetime.now() + timedelta(seconds=expires_in)
            logger.info("Acquired Graph API access token")
            return self._access_token

    async def _auth_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {await self.get_access_token()}"}
        if extra:
            headers.update(extra)
        return headers

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        if authenticated:
            headers = await self._auth_headers(headers)
        logger.debug(f"Graph {method} {url}")
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling Graph API: {e}")
            raise GraphAPIError(None, None, f"HTTP error calling Graph API: {e}") from e

        if response.status_code >= 400:
            error = _error_from_response(response)
            # 404s are routine for existence checks
            log = logger.debug if error.is_not_found else logger.warning
            log(f"Graph {method} {url} failed: {error}")
            raise error
        return response

    @staticmethod
    def _json_or_none(response: httpx.Response) -> dict[str, Any] | None:
        if response.status_code in (202, 204) or not response.content:
            return None
        return response.json()

    async def request_json(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        """
        Make a JSON request to the Graph API.

        Args:
            method: HTTP method
            url: Path relative to BASE_URL, or an absolute URL
            json: Optional JSON payload
            headers: Optional additional headers

        Returns:
            Response JSON, or None for 202/204 responses

        Raises:
            GraphAPIError: On non-2xx responses and transport errors
        """
        response = await self._send(method, url, json=json, headers=headers)
        return self._json_or_none(response)

    async def get_bytes(self, url: str) -> bytes:
        """Download raw content; Graph redirects /content to a download URL."""
        response = await self._send("GET", url, follow_redirects=True)
        return bytes(response.content)

    async def put_bytes(
        self,
        url: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any] | None:
        """Upload raw bytes with a single authenticated PUT."""
        response = await self._send(
            "PUT", url, content=data, headers={"Content-Type": content_type})
        return self._json_or_none(response)

    async def put_upload_chunk(
        self,
        upload_url: str,
        chunk: bytes,
        start: int,
        total: int,
    ) -> dict[str, Any] | None:
        """
        PUT one chunk of an upload session.

        Session URLs are pre-authenticated, so no Authorization header is sent.
        Returns the drive item once the final chunk is accepted.
        """
        end = start + len(chunk) - 1
        headers = {
            "Content-Length": str(len(chunk)),
            "Content-Range": f"bytes {start}-{end}/{total}",
        }
        response = await self._send(
            "PUT", upload_url, authenticated=False, content=chunk, headers=headers)
        return self._json_or_none(response)

    async def delete_url(self, url: str, authenticated: bool = True) -> None:
        """Issue a DELETE (items, or upload sessions with authenticated=False)."""
        await self._send("DELETE", url, authenticated=authenticated)

    async def aclose(self) -> None:
        await self._http.aclose()
