from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Access/refresh token pair with an absolute expiry (epoch seconds)."""

    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def expires_within(self, seconds: float, now: float) -> bool:
        return now + seconds >= self.expires_at

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        now: float,
        previous_refresh_token: Optional[str] = None,
    ) -> "TokenSet":
        """Build a token set from an OAuth token endpoint response.

        Raises:
            ValueError: If ``access_token`` or an integer ``expires_in`` is missing.
        """
        access_token = payload.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("Token response is missing access_token")
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise ValueError("Token response is missing a numeric expires_in")
        refresh_token = payload.get("refresh_token") or previous_refresh_token
        return cls(
            access_token=access_token,
            expires_at=now + int(expires_in),
            refresh_token=refresh_token,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenSet":
        """Rebuild a persisted token set (``expiresAt`` in epoch milliseconds)."""
        return cls(
            access_token=str(data["accessToken"]),
            expires_at=float(data["expiresAt"]) / 1000,
            refresh_token=data.get("refreshToken") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "accessToken": self.access_token,
            "expiresAt": int(self.expires_at * 1000),
        }
        if self.refresh_token:
            payload["refreshToken"] = self.refresh_token
        return payload

    def __repr__(self) -> str:
        return f"TokenSet(expires_at={self.expires_at!r}, has_refresh_token={self.refresh_token is not None})"
