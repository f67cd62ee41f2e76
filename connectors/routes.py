"""
Connector API routes — OAuth connect/callback, credentials, status, disconnect.

Route prefix: /api

User-level connections (``/{provider}/auth-user`` → ``/{provider}/user-callback``)
store tokens for the calling user only.  Org-level connections
(``/{provider}/auth`` → ``/{provider}/callback``) are admin-only and store one
set of tokens for the whole organization.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user, require_admin
from config.settings import config
from connectors.errors import ConnectorError, InvalidStateError
from connectors.oauth import OAuth2Connector
from connectors.providers import PROVIDERS_BY_SLUG
from connectors.registry import ConnectorRegistry
from connectors.state import decode_state, encode_state
from connectors.token_store import (
    OAuthTokenRecord,
    clear_org_tokens,
    disable_other_crms,
    get_org_credentials,
    get_user_tokens,
    integration_status,
    remove_user_tokens,
    save_org_credentials,
    store_org_tokens,
    upsert_user_tokens,
)
from database.helpers import log_activity
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


class CredentialsRequest(BaseModel):
    clientId: str = Field("", max_length=512)
    clientSecret: str = Field("", max_length=512)


# ── Helpers ────────────────────────────────────────────────────────────


def _connector(provider: str) -> OAuth2Connector:
    return ConnectorRegistry().require(provider)


def _org_connector(provider: str) -> OAuth2Connector:
    connector = _connector(provider)
    if not connector.spec.supports_org_level:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{connector.display_name} has no organization-level connection",
        )
    return connector


def _dashboard_redirect(*, success: Optional[str] = None, error: Optional[str] = None) -> RedirectResponse:
    query = urlencode({"success": success} if success else {"error": error or "Unknown error"})
    return RedirectResponse(f"{config.app_url.rstrip('/')}/dashboard?{query}", status_code=status.HTTP_302_FOUND)


# ── Listing & status ───────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> list[dict]:
    """
    List all available connector providers and their configuration status.
    No auth required — used by frontend to show available connectors.
    """
    return ConnectorRegistry().list_providers()


@router.get("/integrations/status")
async def get_integration_status(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Connection status of every provider for the caller."""
    return await integration_status(session, user.effective_organization_id, user.id)


# ── Initiation ─────────────────────────────────────────────────────────


@router.get("/{provider}/auth-user")
async def start_user_auth(
    provider: str,
    force: bool = Query(False, description="Reconnect even if tokens are stored"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """
    Get the OAuth authorization URL for a user-level connection.

    Frontend should open ``authUrl`` in a popup or redirect to it.
    """
    connector = _connector(provider)
    org_id = user.effective_organization_id

    if not force and await get_user_tokens(session, org_id, user.id, provider) is not None:
        return {"ok": True, "connected": True}

    credentials = await get_org_credentials(session, org_id, provider)
    if not connector.is_configured() and credentials is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{connector.display_name} is not configured",
        )

    state = encode_state(str(user.id), str(org_id), connector.spec.user_integration_type)
    auth_url = connector.get_auth_url(state, level="user", credentials=credentials)
    logger.info("Started %s user-level OAuth for user %s", provider, user.id)
    return {"ok": True, "authUrl": auth_url}


@router.get("/{provider}/auth")
async def start_org_auth(
    provider: str,
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Get the OAuth authorization URL for an org-wide connection (admins only)."""
    connector = _org_connector(provider)
    org_id = user.effective_organization_id

    credentials = await get_org_credentials(session, org_id, provider)
    if credentials is None and not connector.is_configured():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Save your {connector.display_name} client credentials first",
        )

    state = encode_state(str(user.id), str(org_id), connector.spec.integration_type("org"))
    auth_url = connector.get_auth_url(state, level="org", credentials=credentials)
    logger.info("Started %s org-level OAuth for org %s", provider, org_id)
    return {"ok": True, "authUrl": auth_url}


# ── Callbacks ──────────────────────────────────────────────────────────


async def _handle_callback(
    provider: str,
    level: str,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    session: AsyncSession,
) -> RedirectResponse:
    spec = PROVIDERS_BY_SLUG.get(provider)
    display = spec.display_name if spec else provider
    if error:
        logger.warning("%s OAuth denied: %s", provider, error)
        return _dashboard_redirect(error=f"{display} authorization failed: {error}")
    if not code or not state:
        return _dashboard_redirect(error=f"Invalid {display} callback")

    try:
        connector = _connector(provider)
        payload = decode_state(state, expected_kind=connector.spec.integration_type(level))
        user_id = payload["userId"]
        org_id = payload["organizationId"]

        credentials = await get_org_credentials(session, org_id, provider)
        token_data = await connector.exchange_code(code, level=level, credentials=credentials)
        record = OAuthTokenRecord.from_token_response(provider, token_data)

        if level == "org":
            await store_org_tokens(session, org_id, provider, record, enabled_by=user_id)
        else:
            await upsert_user_tokens(session, org_id, user_id, provider, record)
        await disable_other_crms(session, org_id, provider)
        await log_activity(
            session,
            user_id,
            org_id,
            "integration_connected",
            f"{display} Connected",
            f"{display} {'organization' if level == 'org' else 'user'}-level integration enabled",
        )
        await session.commit()
    except (ConnectorError, ValueError, SQLAlchemyError) as exc:
        await session.rollback()
        message = exc.message if isinstance(exc, ConnectorError) else f"Could not connect {display}: {exc}"
        if isinstance(exc, InvalidStateError):
            logger.warning("%s callback rejected: %s", provider, message)
        else:
            logger.error("%s OAuth callback failed: %s", provider, message)
        return _dashboard_redirect(error=message)

    logger.info("OAuth connected: provider=%s level=%s user=%s org=%s", provider, level, user_id, org_id)
    return _dashboard_redirect(success=f"{display} connected successfully")


@router.get("/{provider}/user-callback")
async def user_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    """Provider redirects here after a user-level consent."""
    return await _handle_callback(provider, "user", code, state, error, session)


@router.get("/{provider}/callback")
async def org_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    """Provider redirects here after an org-level consent."""
    return await _handle_callback(provider, "org", code, state, error, session)


# ── Credentials ────────────────────────────────────────────────────────


@router.post("/{provider}/credentials")
async def save_credentials(
    provider: str,
    req: CredentialsRequest,
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Save the organization's own OAuth client id/secret (admins only)."""
    connector = _org_connector(provider)
    if not req.clientId or not req.clientSecret:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Client ID and Client Secret are required",
        )
    await save_org_credentials(
        session,
        user.effective_organization_id,
        provider,
        req.clientId.strip(),
        req.clientSecret.strip(),
        saved_by=user.id,
    )
    await session.commit()
    return {"ok": True, "message": f"{connector.display_name} credentials saved"}


# ── Disconnect ─────────────────────────────────────────────────────────


@router.post("/{provider}/disconnect")
async def disconnect(
    provider: str,
    level: str = Query("user", pattern="^(user|org)$"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Disconnect the caller's connection (``?level=org`` for the org-wide one, admins only)."""
    org_id = user.effective_organization_id
    if level == "org":
        if not user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only organization admins can disconnect organization integrations",
            )
        connector = _org_connector(provider)
        removed = await clear_org_tokens(session, org_id, provider)
    else:
        connector = _connector(provider)
        removed = await remove_user_tokens(session, org_id, user.id, provider)

    if removed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{connector.display_name} is not connected",
        )

    await log_activity(
        session,
        user.id,
        org_id,
        "integration_disconnected",
        f"{connector.display_name} Disconnected",
        f"{level}-level integration removed",
    )
    await session.commit()

    revoked = await connector.revoke_token(removed.access_token)
    logger.info("Disconnected %s (%s level) for user %s, revoked=%s", provider, level, user.id, revoked)
    return {"ok": True, "message": f"{connector.display_name} disconnected", "revoked": revoked}


@router.get("/{provider}/status")
async def provider_status(
    provider: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Is *provider* connected for the caller?"""
    if provider not in PROVIDERS_BY_SLUG:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Provider '{provider}' not found")
    summary = await integration_status(session, user.effective_organization_id, user.id)
    info = summary["providers"][provider]
    name = PROVIDERS_BY_SLUG[provider].display_name
    return {
        **info,
        "message": f"{name} is connected" if info["connected"] else f"{name} is not connected",
    }
