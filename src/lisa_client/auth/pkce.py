"""
PKCE (Proof Key for Code Exchange) helpers for the authorization-code flow.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode

CODE_CHALLENGE_METHOD = "S256"
DEFAULT_SCOPE = "email profile"


def generate_pkce_pair() -> tuple[str, str]:
    """
    Generate a PKCE code verifier and challenge pair.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    # 32 random bytes -> 43 URL-safe characters
    code_verifier = secrets.token_urlsafe(32)
    code_challenge = compute_code_challenge(code_verifier)
    return code_verifier, code_challenge


def compute_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    """Opaque value binding the redirect to this attempt (CSRF protection)."""
    return secrets.token_urlsafe(16)


def build_authorization_url(
    authorization_endpoint: str,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scope: str = DEFAULT_SCOPE,
) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    return f"{authorization_endpoint}?{urlencode(params)}"
