from __future__ import annotations

import logging
from typing import Optional

from ..storage import JsonStateStore
from .tokens import TokenSet

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persist the single installation-wide token set in global state."""

    STORAGE_KEY = "agentlisa.auth"

    def __init__(self, storage: JsonStateStore) -> None:
        self._storage = storage

    def load(self) -> Optional[TokenSet]:
        data = self._storage.get(self.STORAGE_KEY)
        if not data:
            return None
        try:
            return TokenSet.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Stored credentials are unreadable (%s); ignoring them", exc)
            return None

    async def save(self, tokens: TokenSet) -> None:
        try:
            await self._storage.update(self.STORAGE_KEY, tokens.to_dict())
        except OSError as exc:
            logger.warning("Unable to save credentials to %s: %s", self._storage.path, exc)

    async def clear(self) -> None:
        try:
            await self._storage.update(self.STORAGE_KEY, None)
        except OSError as exc:
            logger.warning("Unable to clear stored credentials in %s: %s", self._storage.path, exc)
