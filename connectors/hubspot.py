"""
HubSpotConnector — OAuth2 for HubSpot CRM contacts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from connectors.oauth import OAuth2Connector
from connectors.providers import HUBSPOT

if TYPE_CHECKING:
    from connectors.token_manager import ProviderSession

_HUBSPOT_API = "https://api.hubapi.com"
_CONTACT_PROPERTIES = ["email", "firstname", "lastname", "jobtitle", "company", "lastmodifieddate"]


class HubSpotConnector(OAuth2Connector):
    """OAuth2 connector for HubSpot."""

    def __init__(self) -> None:
        super().__init__(HUBSPOT)

    def api_base(self, record: Dict[str, Any]) -> str:
        return _HUBSPOT_API

    async def search_contact(
        self,
        api: "ProviderSession",
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not (email or first_name or last_name):
            return {"found": False, "type": None, "data": None}

        filters: List[Dict[str, str]] = []
        if email:
            filters.append({"propertyName": "email", "operator": "EQ", "value": email})
        else:
            if first_name:
                filters.append({"propertyName": "firstname", "operator": "EQ", "value": first_name})
            if last_name:
                filters.append({"propertyName": "lastname", "operator": "EQ", "value": last_name})

        result = await api.request(
            "POST",
            "/crm/v3/objects/contacts/search",
            json={
                "filterGroups": [{"filters": filters}],
                "properties": _CONTACT_PROPERTIES,
                "limit": 1,
            },
        )
        if result.get("total", 0) > 0 and result.get("results"):
            contact = result["results"][0]
            return {
                "found": True,
                "type": "Contact",
                "data": contact,
                "lastInteractionDate": contact.get("properties", {}).get("lastmodifieddate"),
            }
        return {"found": False, "type": None, "data": None}
