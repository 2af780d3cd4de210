"""Error taxonomy for the integration lifecycle."""
from __future__ import annotations

from typing import Optional


class IntegrationError(Exception):
    """Base class for every integration-lifecycle error."""


class UnsupportedProvider(IntegrationError):
    """The provider is unknown or has no OAuth configuration."""


class NotSupported(IntegrationError):
    """No handler exists for the provider at a dispatch site."""


class Unauthorized(IntegrationError):
    """Forged, expired or undecodable OAuth state, or a user mismatch."""


class OAuthExchangeError(IntegrationError):
    """The provider rejected an authorization-code exchange.

    `status_code` and `body` are kept for logs only; the message never
    includes the provider response body.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenRefreshError(OAuthExchangeError):
    """The provider rejected a refresh-token grant."""


class ProviderAPIError(IntegrationError):
    """A provider data API call failed during sync or account lookup."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IntegrationNotFoundOrInactive(IntegrationError):
    pass


class SyncAlreadyInProgress(IntegrationError):
    pass


class InvalidSyncTransition(IntegrationError):
    """A terminal sync log was asked to transition again."""
