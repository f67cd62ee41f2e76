"""
GmailConnector — OAuth2 web flow for Gmail (and Google Calendar).

Uses Google's OAuth2 to get per-user Gmail access without the user
sharing any credentials with the application.
"""

from __future__ import annotations

import base64
import logging
from email.message import EmailMessage
from typing import TYPE_CHECKING, Any, Dict, Optional

from connectors.oauth import OAuth2Connector
from connectors.providers import GMAIL

if TYPE_CHECKING:
    from connectors.token_manager import ProviderSession

logger = logging.getLogger(__name__)

_GMAIL_API = "https://gmail.googleapis.com/gmail/v1"


def build_raw_message(
    to: str,
    subject: str,
    body: str,
    *,
    body_type: str = "plain",
    sender: Optional[str] = None,
) -> str:
    """RFC 2822 message encoded as unpadded base64url, as Gmail's ``raw`` expects."""
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body, subtype="html" if body_type == "html" else "plain")
    return base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")


class GmailConnector(OAuth2Connector):
    """OAuth2 connector for Gmail."""

    def __init__(self) -> None:
        super().__init__(GMAIL)

    def api_base(self, record: Dict[str, Any]) -> str:
        return _GMAIL_API

    async def create_draft(
        self,
        api: "ProviderSession",
        to: str,
        subject: str,
        body: str,
        body_type: str = "plain",
    ) -> Dict[str, Any]:
        raw = build_raw_message(to, subject, body, body_type=body_type)
        result = await api.request("POST", "/users/me/drafts", json={"message": {"raw": raw}})
        logger.info("Gmail draft created for user %s", api.ctx.user_id)
        return {"id": result.get("id"), "success": True}

    async def send_email(
        self,
        api: "ProviderSession",
        to: str,
        subject: str,
        body: str,
        body_type: str = "plain",
    ) -> Dict[str, Any]:
        raw = build_raw_message(to, subject, body, body_type=body_type)
        result = await api.request("POST", "/users/me/messages/send", json={"raw": raw})
        return {"id": result.get("id"), "success": True}
