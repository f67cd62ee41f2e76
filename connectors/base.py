"""
BaseConnector — abstract interface for all OAuth2 connectors.

Every provider (Gmail, Outlook, Salesforce, …) implements these methods;
most do so by subclassing ``OAuth2Connector`` and its provider table entry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional


class ClientCredentials(NamedTuple):
    """OAuth client id/secret pair — app-wide from settings or per organization."""

    client_id: str
    client_secret: str


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'gmail', 'outlook', 'salesforce', 'hubspot', 'monday'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested by this connector."""
        ...

    @property
    def icon(self) -> str:
        return "🔗"

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(
        self,
        state: str,
        *,
        level: str = "user",
        credentials: Optional[ClientCredentials] = None,
    ) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Signed state blob (user id, organization id, connection level).
        level : str
            ``"user"`` or ``"org"`` — selects the callback route.
        credentials : ClientCredentials, optional
            Organization-specific client credentials overriding the app's.
        """
        ...

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        *,
        level: str = "user",
        credentials: Optional[ClientCredentials] = None,
    ) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns
        -------
        dict with keys:
            access_token, refresh_token, token_type, scope, expires_in,
            plus provider extras (e.g. Salesforce ``instance_url``)
        """
        ...

    @abstractmethod
    async def refresh_access_token(
        self,
        record: Dict[str, Any],
        *,
        credentials: Optional[ClientCredentials] = None,
    ) -> Dict[str, Any]:
        """
        Refresh an expired access token from a stored (decrypted) token record.

        Raises ``ReauthorizationRequired`` when the grant cannot be refreshed.
        """
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client IDs, secrets, etc.).
        """
        return True

    def api_base(self, record: Dict[str, Any]) -> str:
        """Base URL for authenticated API calls made with *record*."""
        raise NotImplementedError
