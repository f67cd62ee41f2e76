"""
ConnectorRegistry — discovers and provides access to all connectors.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.errors import ProviderNotAvailable
from connectors.gmail import GmailConnector
from connectors.hubspot import HubSpotConnector
from connectors.monday import MondayConnector
from connectors.oauth import OAuth2Connector
from connectors.outlook import OutlookConnector
from connectors.salesforce import SalesforceConnector

logger = logging.getLogger(__name__)

# ── All known connectors — add new ones here ─────────────────────────────

_ALL_CONNECTORS: List[OAuth2Connector] = [
    GmailConnector(),
    OutlookConnector(),
    SalesforceConnector(),
    HubSpotConnector(),
    MondayConnector(),
]


class ConnectorRegistry:
    """Singleton registry for all OAuth connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            cls._instance._discovered = False
        return cls._instance

    def discover(self) -> None:
        """
        Register every usable connector.

        User-level providers need app credentials.  Org-level providers are
        always registered: their credentials may come from the org row.
        """
        if self._discovered:
            return
        for conn in _ALL_CONNECTORS:
            if conn.is_configured() or conn.spec.supports_org_level:
                self._connectors[conn.provider_name] = conn
                logger.info(
                    "Connector registered: %s (%s)",
                    conn.display_name,
                    conn.provider_name,
                )
            else:
                logger.warning(
                    "Connector %s skipped, not configured (missing client_id/secret)",
                    conn.provider_name,
                )
        self._discovered = True

    def reset(self) -> None:
        """Forget discovered connectors; the next lookup re-reads settings."""
        self._connectors = {}
        self._discovered = False

    def get(self, provider: str) -> Optional[OAuth2Connector]:
        """Get a connector by provider name."""
        self.discover()
        return self._connectors.get(provider)

    def require(self, provider: str) -> OAuth2Connector:
        """Like ``get`` but raises ``ProviderNotAvailable``."""
        connector = self.get(provider)
        if connector is None:
            raise ProviderNotAvailable(f"Provider '{provider}' not found or not configured")
        return connector

    def list_providers(self) -> List[Dict[str, Any]]:
        """Return info about all available connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "icon": c.icon,
                "configured": c.is_configured(),
                "org_level": c.spec.supports_org_level,
                "crm": c.spec.is_crm,
            }
            for c in _ALL_CONNECTORS
        ]

    def list_configured(self) -> List[str]:
        """Return names of configured connectors."""
        self.discover()
        return list(self._connectors.keys())
