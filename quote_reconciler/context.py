"""Explicit application context: everything a request or CLI command needs, built once."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from quote_reconciler import config
from quote_reconciler.agents.offer_agent import OfferExtractor, build_offer_extractor
from quote_reconciler.agents.registry import AgentRegistry
from quote_reconciler.auth.token_cache import OAuthTokenProvider
from quote_reconciler.db import Database, init_db
from quote_reconciler.mail_provider.protocol import MailProvider
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.context")


@dataclass
class Settings:
    """Runtime knobs, defaulting to the values in config.py."""

    mailbox: str = ""
    pubsub_topic: str = ""
    label_ids: list[str] = field(default_factory=lambda: ["INBOX"])
    candidate_limit: int = 50
    history_page_size: int = 100
    history_max_pages: int = 10
    max_message_attempts: int = 3
    push_verification_token: str = ""
    watch_auto_renew: bool = False
    watch_renew_interval_hours: float = 144.0
    watch_renew_margin_hours: float = 24.0
    watch_check_interval_seconds: int = 3600

    @classmethod
    def from_config(cls) -> "Settings":
        return cls(
            mailbox=config.GMAIL_MAILBOX,
            pubsub_topic=config.GMAIL_PUBSUB_TOPIC,
            label_ids=list(config.GMAIL_LABEL_IDS),
            candidate_limit=config.CANDIDATE_LIMIT,
            history_page_size=config.HISTORY_PAGE_SIZE,
            history_max_pages=config.HISTORY_MAX_PAGES,
            max_message_attempts=config.MAX_MESSAGE_ATTEMPTS,
            push_verification_token=config.PUSH_VERIFICATION_TOKEN,
            watch_auto_renew=config.WATCH_AUTO_RENEW,
            watch_renew_interval_hours=config.WATCH_RENEW_INTERVAL_HOURS,
            watch_renew_margin_hours=config.WATCH_RENEW_MARGIN_HOURS,
            watch_check_interval_seconds=config.WATCH_CHECK_INTERVAL_SECONDS,
        )


@dataclass
class AppContext:
    settings: Settings
    db: Database
    provider: MailProvider
    extractor: OfferExtractor
    tokens: Optional[OAuthTokenProvider] = None
    http_client: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        if self.http_client is not None:
            try:
                await self.http_client.aclose()
            except Exception as e:
                logger.debug("context.http_client_close_error", error=str(e))
            self.http_client = None
        self.db.dispose()


def build_context(
    mock_inbox: Optional[Path] = None,
    settings: Optional[Settings] = None,
    database_url: Optional[str] = None,
) -> AppContext:
    """Wire the real service (Gmail provider), or the JSON mock provider when mock_inbox is set.

    Fails fast on a missing or invalid agents config.
    """
    settings = settings or Settings.from_config()
    registry = AgentRegistry()
    extractor = build_offer_extractor(registry, config.OPENAI_API_KEY)
    db = init_db(database_url)
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.GMAIL_API_TIMEOUT_SECONDS),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
    )
    tokens = OAuthTokenProvider(http_client)
    if mock_inbox is not None:
        from quote_reconciler.mail_provider.gmail_mock import GmailMockProvider

        provider: MailProvider = GmailMockProvider(inbox_path=mock_inbox)
    else:
        from quote_reconciler.mail_provider.gmail_real import GmailProvider

        provider = GmailProvider(tokens, http_client)
    logger.info(
        "context.built",
        provider=type(provider).__name__,
        llm_configured=extractor.configured,
        mailbox=settings.mailbox or None,
    )
    return AppContext(
        settings=settings,
        db=db,
        provider=provider,
        extractor=extractor,
        tokens=tokens,
        http_client=http_client,
    )
