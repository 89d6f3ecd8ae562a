"""Real Gmail API mail provider (REST over httpx, async)."""

import base64
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Optional

import httpx

from quote_reconciler.auth.token_cache import OAuthTokenProvider
from quote_reconciler.config import GMAIL_USER_ID
from quote_reconciler.mail_provider.errors import (
    HistoryNotFoundError,
    MailAuthError,
    MailProviderError,
)
from quote_reconciler.mail_provider.gmail_models import (
    GmailMessage,
    HistoryPage,
    MailboxProfile,
    SentMessage,
    WatchResponse,
)
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.gmail_provider")

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users"


def _is_transient_network_error(e: Exception) -> bool:
    """True if the exception is a transient I/O/network error worth retrying once."""
    if isinstance(e, (httpx.ConnectError, httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return True
    if isinstance(e, httpx.TimeoutException):
        return True
    return isinstance(e, (ConnectionResetError, ConnectionError))


class GmailProvider:
    """MailProvider backed by the Gmail REST API."""

    def __init__(
        self,
        tokens: OAuthTokenProvider,
        http_client: httpx.AsyncClient,
        user_id: str = GMAIL_USER_ID,
        base_url: str = GMAIL_API_BASE,
    ):
        self._tokens = tokens
        self._http = http_client
        self._base = f"{base_url}/{user_id}"
        self._address: Optional[str] = None
        logger.info("mail_provider.init", provider="gmail", user_id=user_id)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        retry: bool = True,
    ) -> httpx.Response:
        token = await self._tokens.get_access_token()
        if not token:
            raise MailAuthError("No Gmail access token available")
        url = f"{self._base}/{path}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            resp = await self._http.request(method, url, params=params, json=json, headers=headers)
        except Exception as e:
            if not retry or not _is_transient_network_error(e):
                raise MailProviderError(f"Gmail {method} {path} failed: {e}") from e
            logger.warning("mail_provider.transient_error_retry", path=path, error_type=type(e).__name__)
            try:
                resp = await self._http.request(method, url, params=params, json=json, headers=headers)
            except httpx.HTTPError as e2:
                raise MailProviderError(f"Gmail {method} {path} failed after retry: {e2}") from e2
        if resp.status_code == 401:
            raise MailAuthError(f"Gmail rejected the access token ({path})")
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        if resp.status_code >= 400:
            raise MailProviderError(f"{what} failed: HTTP {resp.status_code} {resp.text[:200]}")

    async def watch(self, topic_name: str, label_ids: list[str]) -> WatchResponse:
        resp = await self._request(
            "POST",
            "watch",
            json={"topicName": topic_name, "labelIds": label_ids, "labelFilterAction": "include"},
        )
        self._raise_for_status(resp, "users.watch")
        watch = WatchResponse.model_validate(resp.json())
        logger.info("mail_provider.watch_registered", history_id=watch.history_id, expiration=watch.expiration)
        return watch

    async def stop(self) -> None:
        resp = await self._request("POST", "stop")
        self._raise_for_status(resp, "users.stop")
        logger.info("mail_provider.watch_stopped")

    async def list_history(
        self,
        start_history_id: str,
        page_token: str | None = None,
        max_results: int = 100,
        label_id: str | None = None,
    ) -> HistoryPage:
        params: dict[str, Any] = {
            "startHistoryId": start_history_id,
            "historyTypes": "messageAdded",
            "maxResults": max_results,
        }
        if page_token:
            params["pageToken"] = page_token
        if label_id:
            params["labelId"] = label_id
        resp = await self._request("GET", "history", params=params)
        if resp.status_code == 404:
            raise HistoryNotFoundError(f"History id {start_history_id} is no longer available")
        self._raise_for_status(resp, "users.history.list")
        page = HistoryPage.model_validate(resp.json())
        logger.debug(
            "mail_provider.history_page",
            start_history_id=start_history_id,
            records=len(page.history),
            has_more=bool(page.nextPageToken),
        )
        return page

    async def get_message(self, message_id: str) -> GmailMessage | None:
        resp = await self._request("GET", f"messages/{message_id}", params={"format": "full"})
        if resp.status_code == 404:
            logger.info("mail_provider.message_gone", message_id=message_id)
            return None
        self._raise_for_status(resp, "users.messages.get")
        return GmailMessage.model_validate(resp.json())

    async def get_profile(self) -> MailboxProfile:
        resp = await self._request("GET", "profile")
        self._raise_for_status(resp, "users.getProfile")
        profile = MailboxProfile.model_validate(resp.json())
        self._address = profile.email_address
        return profile

    async def send_message(
        self, to: str, subject: str, body: str, sender_name: str | None = None
    ) -> SentMessage:
        """Send a text/plain UTF-8 message via users.messages.send (RFC 2822, base64url)."""
        msg = EmailMessage()
        msg["To"] = to
        if sender_name:
            if self._address is None:
                await self.get_profile()
            msg["From"] = formataddr((sender_name, self._address))
        msg["Subject"] = subject
        msg.set_content(body, charset="utf-8")
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")
        resp = await self._request("POST", "messages/send", json={"raw": raw}, retry=False)
        self._raise_for_status(resp, "users.messages.send")
        sent = SentMessage.model_validate(resp.json())
        logger.info("mail_provider.message_sent", message_id=sent.id, to=to)
        return sent
