"""Typed exception hierarchy for price oracle errors.

Lets the holdings pricer and the backfill loop tell credential problems
apart from transient network failures and bad payloads.
"""


class ProviderError(Exception):
    """Base exception for market data provider failures.

    Carries the provider name so callers can identify which oracle failed.
    """

    retriable = False

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """API key rejected (HTTP 401/403)."""


class ProviderConnectionError(ProviderError):
    """Timeouts, DNS failures, refused connections. Retriable by default."""

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        super().__init__(message, provider_name)
        self.retriable = retriable


class ProviderAPIError(ProviderError):
    """Error status returned by the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        """Rate limiting (429) and server errors may succeed later."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """Response could not be parsed, or had no price for the symbol."""
