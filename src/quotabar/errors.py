class QuotabarError(Exception):
    """
    base class for every error raised by quotabar.
    """


class NoCredentialsError(QuotabarError):
    """
    raised when credential resolution found nothing at all: no auth
    file, no linked accounts, no environment variable, no database
    token. Fatal to the whole run.
    """


class UnknownProviderError(QuotabarError):
    """
    raised when a provider filter names no catalog entry.
    """


class ProviderError(QuotabarError):
    """
    raised by a provider when its backend was reachable in principle
    but the fetch failed (bad token, non-200 response, bad payload).
    """


class TokenRefreshError(ProviderError):
    """
    raised when an OAuth refresh-token exchange cannot produce a
    fresh access token.
    """
