"""File-backed Google OAuth token cache with refresh-token renewal.

Tokens are stored on disk as JSON ({access_token, refresh_token, expires_at,
...}) and refreshed through Google's token endpoint when they are about to
expire. A failed refresh is not an error for callers: get_access_token()
returns None and the service reports it cannot send or receive mail.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Optional

import httpx

from quote_reconciler.config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, TOKEN_CACHE_PATH
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.auth")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_REDIRECT_URI = "http://localhost:8080/oauth-callback"

# Gmail scopes: read history/messages, send replies, manage the watch.
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
]

# Refresh slightly before the real expiry.
EXPIRY_SKEW_SECONDS = 60


class OAuthError(Exception):
    """The OAuth code exchange failed."""


class OAuthTokenProvider:
    """Hands out a valid Gmail access token, refreshing and persisting as needed."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache_path: Optional[Path] = None,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        token_url: str = GOOGLE_TOKEN_URL,
    ):
        self._http = http_client
        self._cache_path = Path(cache_path) if cache_path is not None else TOKEN_CACHE_PATH
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if not self._cache_path.exists():
            return {}
        try:
            data = json.loads(self._cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("auth.token_cache_unreadable", path=str(self._cache_path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._cache_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def save_tokens(self, token_response: dict[str, Any]) -> dict[str, Any]:
        """Persist a token endpoint response (access_token, expires_in, optional refresh_token)."""
        data = self._load()
        data.update({k: v for k, v in token_response.items() if v is not None})
        if "expires_in" in token_response:
            data["expires_at"] = int(time.time()) + int(token_response["expires_in"])
            data.pop("expires_in", None)
        self._save(data)
        logger.info("auth.tokens_saved", path=str(self._cache_path), has_refresh="refresh_token" in data)
        return data

    @property
    def can_refresh(self) -> bool:
        return bool(self._client_id and self._client_secret and self._load().get("refresh_token"))

    def status(self) -> dict[str, Any]:
        data = self._load()
        expires_at = data.get("expires_at")
        expired = not expires_at or float(expires_at) <= time.time()
        return {
            "has_token": bool(data.get("access_token")),
            "expired": expired,
            "expires_at": expires_at,
            "can_refresh": self.can_refresh,
        }

    async def get_access_token(self) -> Optional[str]:
        """Return a valid access token, refreshing if needed; None when none can be obtained."""
        async with self._lock:
            data = self._load()
            token = data.get("access_token")
            expires_at = float(data.get("expires_at") or 0)
            if token and expires_at - EXPIRY_SKEW_SECONDS > time.time():
                return token
            refresh_token = data.get("refresh_token")
            if not refresh_token or not self._client_id or not self._client_secret:
                logger.warning("auth.no_usable_token", has_token=bool(token), has_refresh=bool(refresh_token))
                return None
            return await self._refresh(refresh_token)

    def authorization_url(self, redirect_uri: str = DEFAULT_REDIRECT_URI) -> str:
        """Consent screen URL; offline access so Google also returns a refresh token."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(GMAIL_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        return str(httpx.URL(GOOGLE_AUTH_URL, params=params))

    async def exchange_code(self, code: str, redirect_uri: str = DEFAULT_REDIRECT_URI) -> dict[str, Any]:
        """Trade an authorization code for tokens and persist them.

        Raises OAuthError when the client is not configured or Google refuses the code.
        """
        if not self._client_id or not self._client_secret:
            raise OAuthError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set")
        try:
            resp = await self._http.post(
                self._token_url,
                data={
                    "code": code,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.HTTPError as e:
            raise OAuthError(f"Token endpoint unreachable: {e}") from e
        if resp.status_code != 200:
            raise OAuthError(f"Code exchange rejected: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise OAuthError("Token endpoint returned a non-JSON body") from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise OAuthError("No access token in the code exchange response")
        data = self.save_tokens(payload)
        logger.info("auth.code_exchanged", has_refresh="refresh_token" in payload)
        return data

    async def _refresh(self, refresh_token: str) -> Optional[str]:
        try:
            resp = await self._http.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            logger.error("auth.refresh_failed", error=str(e), error_type=type(e).__name__)
            return None
        if resp.status_code != 200:
            logger.error("auth.refresh_rejected", status_code=resp.status_code, body=resp.text[:200])
            return None
        try:
            payload = resp.json()
        except ValueError as e:
            logger.error("auth.refresh_unreadable", error=str(e), body=resp.text[:200])
            return None
        if not isinstance(payload, dict) or not payload.get("access_token"):
            logger.error("auth.refresh_missing_token")
            return None
        try:
            self.save_tokens(payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error("auth.token_save_failed", path=str(self._cache_path), error=str(e))
            return None
        logger.info("auth.token_refreshed", expires_in=payload.get("expires_in"))
        return payload["access_token"]
