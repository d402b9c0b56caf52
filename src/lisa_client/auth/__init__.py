"""OAuth authentication for the AgentLISA client."""

from .authenticator import AuthorizationServerConfig, AuthState, OAuthAuthenticator, validate_callback
from .credential_store import CredentialStore
from .errors import (
    AuthCancelledError,
    AuthError,
    AuthTimeoutError,
    CallbackServerError,
    ConfigurationError,
    DiscoveryError,
    ProviderError,
    StateMismatchError,
    TokenExchangeError,
)
from .pkce import build_authorization_url, compute_code_challenge, generate_pkce_pair, generate_state
from .tokens import TokenSet

__all__ = [
    "AuthCancelledError",
    "AuthError",
    "AuthState",
    "AuthTimeoutError",
    "AuthorizationServerConfig",
    "CallbackServerError",
    "ConfigurationError",
    "CredentialStore",
    "DiscoveryError",
    "OAuthAuthenticator",
    "ProviderError",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenSet",
    "build_authorization_url",
    "compute_code_challenge",
    "generate_pkce_pair",
    "generate_state",
    "validate_callback",
]
