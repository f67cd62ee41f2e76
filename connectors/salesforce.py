"""
SalesforceConnector — OAuth2 web-server flow and REST/SOQL access.

Salesforce differs from the plain flow in three ways:
  • organizations may register their own connected app (client id/secret),
  • token responses carry ``instance_url`` and refreshes go to that host,
  • no ``expires_in`` is returned, so expiry is discovered by a 401.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from config.settings import config
from connectors.oauth import OAuth2Connector
from connectors.providers import SALESFORCE

if TYPE_CHECKING:
    from connectors.token_manager import ProviderSession

_CONTACT_FIELDS = "Id, FirstName, LastName, Email, Title, Account.Name, LastModifiedDate"
_LEAD_FIELDS = "Id, FirstName, LastName, Email, Title, Company, Status, LastModifiedDate"


def soql_quote(value: str) -> str:
    """Escape a literal for use inside single quotes in SOQL."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def soql_like_quote(value: str) -> str:
    """Like ``soql_quote``, also escaping the LIKE wildcards ``%`` and ``_``."""
    return soql_quote(value).replace("%", "\\%").replace("_", "\\_")


def _where_clause(email: Optional[str], first_name: Optional[str], last_name: Optional[str]) -> str:
    if email:
        return f"Email = '{soql_quote(email)}'"
    name = f"{first_name or ''} {last_name or ''}".strip()
    return f"Name LIKE '%{soql_like_quote(name)}%'"


class SalesforceConnector(OAuth2Connector):
    """OAuth2 connector for Salesforce."""

    def __init__(self) -> None:
        super().__init__(SALESFORCE)

    def _url_params(self) -> Dict[str, str]:
        return {"login_url": config.salesforce_login_url.rstrip("/")}

    def _extra_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "instance_url": data.get("instance_url"),
            "id": data.get("id"),
            "issued_at": data.get("issued_at"),
        }

    def _refresh_url(self, record: Dict[str, Any]) -> str:
        instance_url = record.get("instance_url")
        if instance_url:
            return f"{instance_url.rstrip('/')}/services/oauth2/token"
        return super()._refresh_url(record)

    def api_base(self, record: Dict[str, Any]) -> str:
        return (record.get("instance_url") or "").rstrip("/")

    # ── REST helpers ────────────────────────────────────────────────────

    async def query(self, api: "ProviderSession", soql: str) -> Dict[str, Any]:
        return await api.request(
            "GET",
            f"/services/data/{config.salesforce_api_version}/query",
            params={"q": soql},
        )

    async def search_person(
        self,
        api: "ProviderSession",
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Look the person up as a Contact first, then as a Lead."""
        if not (email or first_name or last_name):
            return {"found": False, "type": None, "data": None}

        where = _where_clause(email, first_name, last_name)
        for sobject, fields in (("Contact", _CONTACT_FIELDS), ("Lead", _LEAD_FIELDS)):
            result = await self.query(
                api,
                f"SELECT {fields} FROM {sobject} WHERE {where} "
                "ORDER BY LastModifiedDate DESC LIMIT 1",
            )
            if result.get("totalSize", 0) > 0:
                record = result["records"][0]
                return {
                    "found": True,
                    "type": sobject,
                    "data": record,
                    "lastInteractionDate": record.get("LastModifiedDate"),
                }
        return {"found": False, "type": None, "data": None}
