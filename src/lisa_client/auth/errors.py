from __future__ import annotations


class AuthError(Exception):
    """Raised when an authentication attempt cannot complete."""


class ConfigurationError(AuthError):
    """Required configuration (client id, base URL) is missing or invalid."""


class DiscoveryError(AuthError):
    """The protected-resource metadata could not be fetched or named no authorization server."""


class CallbackServerError(AuthError):
    """The loopback redirect listener could not be started."""


class AuthTimeoutError(AuthError):
    """No redirect reached the loopback listener in time."""


class AuthCancelledError(AuthError):
    """The user cancelled the pending authentication."""


class StateMismatchError(AuthError):
    """The ``state`` returned on the redirect differs from the one sent."""


class ProviderError(AuthError):
    """The authorization server redirected back with an ``error`` parameter."""

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"OAuth error: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class TokenExchangeError(AuthError):
    """The token endpoint rejected the request or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
