"""
OutlookConnector — Microsoft identity platform OAuth2 + Microsoft Graph mail.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from config.settings import config
from connectors.oauth import OAuth2Connector
from connectors.providers import OUTLOOK

if TYPE_CHECKING:
    from connectors.token_manager import ProviderSession

_GRAPH_API = "https://graph.microsoft.com/v1.0"


def _graph_message(to: str, subject: str, body: str, body_type: str) -> Dict[str, Any]:
    return {
        "subject": subject,
        "body": {
            "contentType": "HTML" if body_type == "html" else "Text",
            "content": body,
        },
        "toRecipients": [{"emailAddress": {"address": to}}],
    }


class OutlookConnector(OAuth2Connector):
    """OAuth2 connector for Outlook / Microsoft 365 mailboxes."""

    def __init__(self) -> None:
        super().__init__(OUTLOOK)

    def _url_params(self) -> Dict[str, str]:
        return {"tenant": config.microsoft_tenant_id or "common"}

    def _refresh_params(self) -> Dict[str, str]:
        # the v2.0 endpoint wants the scopes repeated on refresh
        return {"scope": " ".join(self.scopes)}

    def api_base(self, record: Dict[str, Any]) -> str:
        return _GRAPH_API

    async def create_draft(
        self,
        api: "ProviderSession",
        to: str,
        subject: str,
        body: str,
        body_type: str = "plain",
    ) -> Dict[str, Any]:
        result = await api.request("POST", "/me/messages", json=_graph_message(to, subject, body, body_type))
        return {"id": result.get("id"), "success": True, "webLink": result.get("webLink")}

    async def send_email(
        self,
        api: "ProviderSession",
        to: str,
        subject: str,
        body: str,
        body_type: str = "plain",
    ) -> Dict[str, Any]:
        # sendMail answers 202 with no body
        await api.request(
            "POST",
            "/me/sendMail",
            json={"message": _graph_message(to, subject, body, body_type), "saveToSentItems": True},
        )
        return {"id": None, "success": True}
