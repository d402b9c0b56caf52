"""OAuth 2.0 authorization-code + PKCE client for the AgentLISA service.

The authorization server is discovered from the resource server's
``/.well-known/oauth-protected-resource`` document. The browser redirect is
caught by a short-lived loopback listener, and tokens are kept in a
:class:`~lisa_client.auth.credential_store.CredentialStore`.
"""

from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

import httpx

from .callback_server import DEFAULT_CALLBACK_TIMEOUT, CallbackParams, CallbackServer
from .credential_store import CredentialStore
from .errors import (
    AuthCancelledError,
    AuthError,
    AuthTimeoutError,
    DiscoveryError,
    ProviderError,
    StateMismatchError,
    TokenExchangeError,
)
from .pkce import DEFAULT_SCOPE, build_authorization_url, generate_pkce_pair, generate_state
from .tokens import TokenSet

if TYPE_CHECKING:
    from ..services.notifications import Notifier

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/oauth-protected-resource"
REFRESH_BUFFER_SECONDS = 60.0

BrowserOpener = Callable[[str], Any]


class AuthState(str, Enum):
    """Progress of a single authentication attempt."""

    idle = "idle"
    discovering_server = "discovering_server"
    awaiting_callback = "awaiting_callback"
    exchanging_code = "exchanging_code"
    authenticated = "authenticated"
    failed = "failed"


@dataclass
class AuthorizationServerConfig:
    """Subset of the protected-resource metadata the client relies on."""

    authorization_servers: List[str]
    resource: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationServerConfig":
        servers = data.get("authorization_servers") or []
        if not isinstance(servers, list):
            servers = []
        return cls(
            authorization_servers=[str(server).rstrip("/") for server in servers if server],
            resource=data.get("resource"),
            raw=dict(data),
        )

    @property
    def authorization_server(self) -> Optional[str]:
        return self.authorization_servers[0] if self.authorization_servers else None

    @property
    def authorization_endpoint(self) -> Optional[str]:
        server = self.authorization_server
        return f"{server}/oauth/authorize" if server else None

    @property
    def token_endpoint(self) -> Optional[str]:
        server = self.authorization_server
        return f"{server}/oauth/token" if server else None


class OAuthAuthenticator:
    """Owns the token set and every way of obtaining or renewing it."""

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        credential_store: CredentialStore,
        notifier: "Notifier",
        callback_ports: Sequence[int] = (7154, 47154),
        callback_host: str = "localhost",
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        scope: str = DEFAULT_SCOPE,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 30.0,
        open_browser: Optional[BrowserOpener] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._credentials = credential_store
        self._notifier = notifier
        self._callback_ports = tuple(callback_ports)
        self._callback_host = callback_host
        self._callback_timeout = callback_timeout
        self._scope = scope
        self._client = http_client
        self._owns_client = http_client is None
        self._request_timeout = request_timeout
        self._open_browser = open_browser or webbrowser.open
        self._clock = clock

        self._tokens: Optional[TokenSet] = None
        self._server_config: Optional[AuthorizationServerConfig] = None
        self._attempt: Optional[asyncio.Task[bool]] = None
        self._refresh: Optional[asyncio.Task[bool]] = None
        self._callback_server: Optional[CallbackServer] = None
        self.state = AuthState.idle

    # ------------------------------------------------------------------ lifecycle

    def load(self) -> None:
        """Restore the persisted token set."""
        self._tokens = self._credentials.load()

    async def aclose(self) -> None:
        self.cancel_authentication()
        for task in (self._attempt, self._refresh):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ queries

    @property
    def tokens(self) -> Optional[TokenSet]:
        return self._tokens

    def is_authenticated(self) -> bool:
        return self._tokens is not None and self._tokens.is_valid(self._clock())

    def _is_expiring_soon(self) -> bool:
        return self._tokens is not None and self._tokens.expires_within(REFRESH_BUFFER_SECONDS, self._clock())

    async def get_access_token(self) -> Optional[str]:
        """Return a usable access token, refreshing or re-authenticating as needed.

        May open the browser for an interactive sign-in.
        """
        if self.is_authenticated() and not self._is_expiring_soon():
            return self._tokens.access_token if self._tokens else None

        if self._tokens is not None and self._tokens.refresh_token:
            if self.is_authenticated():
                logger.info("Access token expiring soon, refreshing...")
            else:
                logger.info("Access token expired, attempting to refresh...")
            if await self.refresh_access_token():
                return self._tokens.access_token if self._tokens else None
            logger.info("Token refresh failed, will re-authenticate")

        logger.info("No valid refresh token, starting full authentication flow")
        if not await self.authenticate():
            return None
        return self._tokens.access_token if self._tokens else None

    # ------------------------------------------------------------------ interactive flow

    async def authenticate(self) -> bool:
        """Run the interactive PKCE flow; concurrent callers share one attempt."""
        if self._attempt is None or self._attempt.done():
            self._attempt = asyncio.ensure_future(self._run_attempt())
        return await asyncio.shield(self._attempt)

    def cancel_authentication(self) -> None:
        if self._callback_server is not None:
            self._callback_server.cancel()

    async def _run_attempt(self) -> bool:
        self.state = AuthState.idle
        try:
            tokens = await self._authorize()
        except (AuthTimeoutError, AuthCancelledError) as exc:
            self.state = AuthState.failed
            logger.info("Authentication attempt ended: %s", exc)
            await self._notifier.warning(str(exc))
            return False
        except AuthError as exc:
            self.state = AuthState.failed
            logger.warning("Authentication failed: %s", exc)
            await self._notifier.error(str(exc))
            return False
        except Exception as exc:
            self.state = AuthState.failed
            logger.exception("Unexpected authentication error")
            await self._notifier.error(f"Authentication failed: {exc}")
            return False

        self._tokens = tokens
        await self._credentials.save(tokens)
        self.state = AuthState.authenticated
        await self._notifier.info("Successfully authenticated with AgentLISA!")
        return True

    async def _authorize(self) -> TokenSet:
        self.state = AuthState.discovering_server
        config = await self._get_server_config()

        code_verifier, code_challenge = generate_pkce_pair()
        state = generate_state()

        server = CallbackServer(
            self._callback_ports,
            host=self._callback_host,
            timeout=self._callback_timeout,
        )
        port = await server.start()
        self._callback_server = server
        try:
            self.state = AuthState.awaiting_callback
            redirect_uri = server.redirect_uri
            auth_url = build_authorization_url(
                config.authorization_endpoint or "",
                client_id=self._client_id,
                redirect_uri=redirect_uri,
                state=state,
                code_challenge=code_challenge,
                scope=self._scope,
            )
            logger.debug("Opening authorization URL on port %s", port)
            self._open_browser(auth_url)
            await self._notifier.info(
                f"Opening AgentLISA authentication in your browser... (Using port {port})"
            )
            params = await server.wait_for_callback()
        finally:
            self._callback_server = None
            await server.close()

        code = validate_callback(params, state)

        self.state = AuthState.exchanging_code
        return await self._exchange_code(config, code, code_verifier, redirect_uri)

    async def _exchange_code(
        self,
        config: AuthorizationServerConfig,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenSet:
        form = {
            "grant_type": "authorization_code",
            "client_id": self._client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        payload = await self._post_token(config, form)
        try:
            return TokenSet.from_token_response(payload, self._clock())
        except ValueError as exc:
            raise TokenExchangeError(f"Failed to exchange authorization code for tokens: {exc}") from exc

    # ------------------------------------------------------------------ refresh

    async def refresh_access_token(self) -> bool:
        """Renew the access token with the stored refresh token.

        Stored tokens are left untouched on any failure. Concurrent callers
        share one request.
        """
        if self._tokens is None or not self._tokens.refresh_token:
            logger.info("No refresh token available")
            return False
        if self._refresh is None or self._refresh.done():
            self._refresh = asyncio.ensure_future(self._run_refresh(self._tokens))
        return await asyncio.shield(self._refresh)

    async def _run_refresh(self, current: TokenSet) -> bool:
        try:
            config = await self._get_server_config()
            payload = await self._post_token(
                config,
                {
                    "grant_type": "refresh_token",
                    "client_id": self._client_id,
                    "refresh_token": current.refresh_token or "",
                },
            )
            tokens = TokenSet.from_token_response(
                payload,
                self._clock(),
                previous_refresh_token=current.refresh_token,
            )
        except (AuthError, ValueError) as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False

        if self._tokens is not current:
            logger.info("Credentials changed during refresh; discarding refreshed token")
            return self.is_authenticated()
        self._tokens = tokens
        await self._credentials.save(tokens)
        logger.info("Successfully refreshed access token")
        return True

    # ------------------------------------------------------------------ logout / cache

    async def logout(self) -> None:
        self._tokens = None
        self._server_config = None
        self.state = AuthState.idle
        await self._credentials.clear()

    def clear_config_cache(self) -> None:
        self._server_config = None

    # ------------------------------------------------------------------ HTTP helpers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._request_timeout)
        return self._client

    async def _get_server_config(self) -> AuthorizationServerConfig:
        if self._server_config is not None:
            return self._server_config

        url = f"{self._base_url}{WELL_KNOWN_PATH}"
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch OAuth well-known configuration: %s", exc)
            raise DiscoveryError(
                "Failed to fetch OAuth configuration. Please check your API base URL."
            ) from exc
        if response.status_code >= 400:
            logger.warning("OAuth well-known configuration returned HTTP %s", response.status_code)
            raise DiscoveryError(
                f"Failed to fetch OAuth configuration (HTTP {response.status_code}). "
                "Please check your API base URL."
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise DiscoveryError("OAuth configuration is not valid JSON.") from exc
        if not isinstance(data, dict):
            raise DiscoveryError("OAuth configuration has an unexpected shape.")

        config = AuthorizationServerConfig.from_dict(data)
        if config.authorization_server is None:
            raise DiscoveryError(
                "OAuth configuration lists no authorization server. "
                "Please check your API base URL and ensure the service is available."
            )
        self._server_config = config
        return config

    async def _post_token(self, config: AuthorizationServerConfig, form: Dict[str, str]) -> Dict[str, Any]:
        endpoint = config.token_endpoint or ""
        try:
            response = await self._get_client().post(
                endpoint,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TokenExchangeError(
                f"Token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenExchangeError("Token endpoint returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise TokenExchangeError("Token endpoint returned an unexpected payload")
        return payload


def validate_callback(params: CallbackParams, expected_state: str) -> str:
    """Return the authorization code carried by a redirect, or raise.

    Raises:
        StateMismatchError: ``state`` differs from the one sent.
        ProviderError: The redirect carries an ``error`` parameter.
        AuthError: No ``code`` was returned.
    """
    if params.state != expected_state:
        raise StateMismatchError("Invalid state parameter")
    if params.error:
        raise ProviderError(params.error, params.error_description)
    if not params.code:
        raise AuthError("Authorization response did not include a code")
    return params.code
