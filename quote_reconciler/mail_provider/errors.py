"""Mail provider error types."""


class MailProviderError(Exception):
    """A Gmail API call failed (HTTP error or transport failure)."""


class MailAuthError(MailProviderError):
    """No usable access token: the service cannot send or receive mail right now."""


class HistoryNotFoundError(MailProviderError):
    """The start history id is too old or invalid (Gmail answers 404)."""
