"""API key selection state shared by the HTTP routes and the socket sessions."""
from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class CredentialStore:
    """Holds the Gemini API key the job client authenticates with."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._api_key = (api_key or "").strip() or None

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def has_credential(self) -> bool:
        return self._api_key is not None

    def select_credential(self, api_key: str) -> None:
        cleaned = (api_key or "").strip()
        if not cleaned:
            raise ValueError("API key must not be blank")
        self._api_key = cleaned
        logger.info("Gemini API key selected")

    def invalidate(self) -> None:
        """Forget the key after upstream rejected it."""

        if self._api_key is not None:
            logger.warning("Gemini API key invalidated; a new key must be selected")
        self._api_key = None
