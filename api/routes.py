"""
Feature routes that act on a provider with the caller's stored tokens.

Route prefix: /api
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user
from connectors.registry import ConnectorRegistry
from connectors.token_manager import ProviderSession, TokenContext
from connectors.token_store import integration_status
from database.helpers import log_activity
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["features"])

# accepted values for ``provider`` in email requests
_EMAIL_PROVIDERS = {
    "gmail": "gmail",
    "google": "gmail",
    "outlook": "outlook",
    "microsoft": "outlook",
}


class EmailRequest(BaseModel):
    to: str = Field(..., min_length=3, max_length=320)
    subject: str = Field("", max_length=998)
    body: str = ""
    bodyType: str = Field("plain", pattern="^(plain|html)$")
    provider: Optional[str] = None


async def _email_provider(session: AsyncSession, user: User, requested: Optional[str]) -> str:
    if requested:
        provider = _EMAIL_PROVIDERS.get(requested.lower())
        if provider is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported email provider '{requested}'",
            )
        return provider

    summary = await integration_status(session, user.effective_organization_id, user.id)
    if summary["emailProvider"] is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No email account connected. Connect Gmail or Outlook first.",
        )
    return _EMAIL_PROVIDERS[summary["emailProvider"]]


def _provider_session(user: User, provider: str, session: AsyncSession) -> ProviderSession:
    ctx = TokenContext(str(user.effective_organization_id), str(user.id), provider)
    return ProviderSession(ctx, db_session=session)


# ── Email ──────────────────────────────────────────────────────────────


@router.post("/email/draft")
async def create_email_draft(
    req: EmailRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Create a draft in the caller's connected mailbox."""
    provider = await _email_provider(session, user, req.provider)
    api = _provider_session(user, provider, session)
    draft = await api.connector.create_draft(api, req.to, req.subject, req.body, req.bodyType)
    await log_activity(
        session, user.id, user.effective_organization_id,
        "email_draft_created", f"Draft created via {api.connector.display_name}",
    )
    return {"ok": True, "provider": provider, "draft": draft}


@router.post("/email/send")
async def send_email(
    req: EmailRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Send an email from the caller's connected mailbox."""
    provider = await _email_provider(session, user, req.provider)
    api = _provider_session(user, provider, session)
    result = await api.connector.send_email(api, req.to, req.subject, req.body, req.bodyType)
    await log_activity(
        session, user.id, user.effective_organization_id,
        "email_sent", f"Email sent via {api.connector.display_name}",
    )
    logger.info("Email sent via %s for user %s", provider, user.id)
    return {"ok": True, "provider": provider, "message": result}


# ── CRM ────────────────────────────────────────────────────────────────


@router.get("/crm/search")
async def search_crm(
    email: Optional[str] = Query(None),
    firstName: Optional[str] = Query(None),
    lastName: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Look a person up in the organization's active CRM."""
    if not (email or firstName or lastName):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide an email or a name to search for",
        )

    summary = await integration_status(session, user.effective_organization_id, user.id)
    crm = summary["activeCrm"]
    if crm is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No CRM connected",
        )

    api = _provider_session(user, crm, session)
    connector = ConnectorRegistry().require(crm)
    if crm == "hubspot":
        result = await connector.search_contact(api, email=email, first_name=firstName, last_name=lastName)
    else:
        result = await connector.search_person(api, email=email, first_name=firstName, last_name=lastName)
    return {"ok": True, "crm": crm, **result}
