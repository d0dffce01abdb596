"""Client for the external profile directory that owns canonical player names."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from ..config import Settings
from ..domain.outcomes import IdentityLookupError

logger = logging.getLogger(__name__)


class ProfileDirectoryClient:
    """Resolves display names to stable profile ids and back over HTTP.

    A missing profile is reported as ``None``; transport errors and unexpected
    responses raise :class:`IdentityLookupError`.
    """

    def __init__(
        self,
        lookup_url: str,
        session_url: str,
        *,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Create a new HTTP session with a retrying adapter."""
        self._lookup_url = lookup_url.rstrip("/")
        self._session_url = session_url.rstrip("/")
        self._timeout = timeout
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=2)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProfileDirectoryClient":
        return cls(
            settings.profile_lookup_url,
            settings.profile_session_url,
            timeout=settings.profile_timeout_seconds,
        )

    def resolve_id(self, name: str) -> str | None:
        """Return the profile id registered for ``name``."""
        data = self._get(f"{self._lookup_url}/{name}")
        return data.get("id") if data else None

    def resolve_name(self, external_id: str) -> str | None:
        """Return the current display name for a profile id."""
        data = self._get(f"{self._session_url}/{external_id}")
        return data.get("name") if data else None

    def _get(self, url: str) -> Optional[Dict[str, Any]]:
        logger.debug("profile lookup %s", url)
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.exceptions.RequestException as exc:
            raise IdentityLookupError(f"profile directory unreachable: {exc}") from exc
        if response.status_code in (204, 404):
            return None
        if not response.ok:
            raise IdentityLookupError(f"profile directory responded with {response.status_code}")
        try:
            data: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise IdentityLookupError("profile directory response could not be decoded") from exc
        return data
