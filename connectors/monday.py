"""
MondayConnector — OAuth2 for Monday.com and its GraphQL API.

Monday.com access tokens do not expire and no refresh token is issued.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from connectors.errors import ProviderAPIError
from connectors.oauth import OAuth2Connector
from connectors.providers import MONDAY

if TYPE_CHECKING:
    from connectors.token_manager import ProviderSession

logger = logging.getLogger(__name__)

_MONDAY_API = "https://api.monday.com/v2"
_API_VERSION = "2024-01"

_CRM_BOARDS_QUERY = """
query {
  boards(board_kind: crm, limit: 10) {
    id
    name
    items_page(limit: 50) {
      items {
        id
        name
        column_values { id text type }
        updated_at
      }
    }
  }
}
"""


def _column_text(columns: list, *needles: str, col_type: Optional[str] = None) -> Optional[str]:
    for col in columns:
        col_id = col.get("id", "")
        if (col_type and col.get("type") == col_type) or any(n in col_id for n in needles):
            return col.get("text")
    return None


class MondayConnector(OAuth2Connector):
    """OAuth2 connector for Monday.com."""

    def __init__(self) -> None:
        super().__init__(MONDAY)

    def api_base(self, record: Dict[str, Any]) -> str:
        return _MONDAY_API

    async def graphql(
        self,
        api: "ProviderSession",
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        result = await api.request(
            "POST",
            "",
            json={"query": query, "variables": variables or {}},
            headers={"API-Version": _API_VERSION},
        )
        if result.get("errors"):
            raise ProviderAPIError(f"Monday.com GraphQL error: {result['errors']}")
        return result.get("data", {})

    async def search_person(
        self,
        api: "ProviderSession",
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Scan the CRM boards for an item matching the email or the full name."""
        if not (email or first_name or last_name):
            return {"found": False, "type": None, "data": None}

        search_email = (email or "").lower()
        search_name = f"{first_name or ''} {last_name or ''}".strip().lower()

        data = await self.graphql(api, _CRM_BOARDS_QUERY)
        for board in data.get("boards") or []:
            for item in (board.get("items_page") or {}).get("items") or []:
                columns = item.get("column_values") or []
                item_email = (_column_text(columns, "email", col_type="email") or "").lower()
                item_name = (item.get("name") or "").lower()
                if (search_email and item_email and search_email in item_email) or (
                    search_name and search_name in item_name
                ):
                    logger.debug("Monday match on board %s: item %s", board.get("id"), item.get("id"))
                    return {
                        "found": True,
                        "type": "Item",
                        "data": {
                            "id": item.get("id"),
                            "name": item.get("name"),
                            "email": item_email or None,
                            "title": _column_text(columns, "title", "position"),
                            "company": _column_text(columns, "company"),
                            "board_id": board.get("id"),
                        },
                        "lastInteractionDate": item.get("updated_at"),
                    }
        return {"found": False, "type": None, "data": None}
