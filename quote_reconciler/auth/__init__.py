"""Google OAuth token handling for the Gmail API."""

from quote_reconciler.auth.token_cache import GMAIL_SCOPES, OAuthTokenProvider

__all__ = ["GMAIL_SCOPES", "OAuthTokenProvider"]
