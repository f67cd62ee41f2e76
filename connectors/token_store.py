"""
Token store — OAuth tokens inside ``organization_integrations.configuration``.

User-level integration types (``gmail_user``, ``salesforce_user`` …) keep a
map of ``user_id -> token record``; org-level types (``salesforce``,
``monday``) keep the organization's client credentials plus one set of
tokens at the top level.

Every read-modify-write of a configuration blob happens under a row lock
(``SELECT … FOR UPDATE``) and only touches the caller's key, so two users
connecting at the same time cannot overwrite each other's tokens.  Secret
fields are Fernet-encrypted on the way in and decrypted on the way out.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import ClientCredentials
from connectors.encryption import decrypt_fields, decrypt_token, encrypt_fields, encrypt_token
from connectors.providers import ALL_PROVIDERS, PROVIDERS_BY_SLUG, ProviderSpec, crm_integration_types
from database.helpers import to_uuid
from database.models import OrganizationIntegration

logger = logging.getLogger(__name__)

_CREDENTIAL_KEYS = ("client_id", "client_secret")

IdLike = str | uuid.UUID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _spec(provider: str) -> ProviderSpec:
    try:
        return PROVIDERS_BY_SLUG[provider]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider}") from None


# ── Token record ───────────────────────────────────────────────────────


class OAuthTokenRecord(BaseModel):
    """One provider grant as stored in a configuration blob."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_in: Optional[int] = None
    token_expiry: Optional[int] = None      # epoch seconds; None = never expires
    provider: str
    connected_at: Optional[str] = None

    @field_validator("token_expiry", mode="before")
    @classmethod
    def _coerce_expiry(cls, value: Any) -> Any:
        # rows written by the web app hold an ISO timestamp
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp())
        return value

    @classmethod
    def from_token_response(
        cls,
        provider: str,
        data: Dict[str, Any],
        *,
        connected_at: Optional[str] = None,
    ) -> "OAuthTokenRecord":
        """Build a record from a connector's normalized token response."""
        fields = {k: v for k, v in data.items() if v is not None}
        expires_in = fields.get("expires_in")
        fields.update(
            provider=provider,
            token_expiry=int(time.time()) + int(expires_in) if expires_in else None,
            connected_at=connected_at or _utcnow().isoformat(),
        )
        return cls(**fields)

    @classmethod
    def from_storage(cls, data: Dict[str, Any], provider: Optional[str] = None) -> "OAuthTokenRecord":
        """
        Rebuild a record from a configuration blob.

        Rows written by the web app hold the raw token response with no
        ``provider`` key; *provider* fills it in.
        """
        clean = {k: v for k, v in data.items() if k not in _CREDENTIAL_KEYS}
        if provider and not clean.get("provider"):
            clean["provider"] = provider
        return cls(**decrypt_fields(clean))

    def to_storage(self) -> Dict[str, Any]:
        return encrypt_fields(self.model_dump(exclude_none=True))

    def is_expired(self, skew: int = 0, now: Optional[float] = None) -> bool:
        if self.token_expiry is None:
            return False
        return self.token_expiry <= (now if now is not None else time.time()) + skew


# ── Row access ─────────────────────────────────────────────────────────


async def get_integration(
    session: AsyncSession,
    organization_id: IdLike,
    integration_type: str,
    *,
    for_update: bool = False,
) -> Optional[OrganizationIntegration]:
    # populate_existing: pick up rows committed by other sessions since this one loaded them
    stmt = (
        select(OrganizationIntegration)
        .where(
            OrganizationIntegration.organization_id == to_uuid(organization_id),
            OrganizationIntegration.integration_type == integration_type,
        )
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _lock_or_create(
    session: AsyncSession,
    organization_id: IdLike,
    integration_type: str,
) -> OrganizationIntegration:
    """Return the locked row, inserting an empty disabled one if it does not exist."""
    row = await get_integration(session, organization_id, integration_type, for_update=True)
    if row is not None:
        return row
    try:
        async with session.begin_nested():
            row = OrganizationIntegration(
                organization_id=to_uuid(organization_id),
                integration_type=integration_type,
                is_enabled=False,
                configuration={},
            )
            session.add(row)
    except IntegrityError:
        # lost the race to create it; the winner's row is there now
        logger.info("Concurrent create of %s for org %s", integration_type, organization_id)
        row = await get_integration(session, organization_id, integration_type, for_update=True)
        if row is None:
            raise
    return row


def _enable(row: OrganizationIntegration, enabled_by: Optional[IdLike]) -> None:
    now = _utcnow()
    row.is_enabled = True
    row.enabled_at = now
    if enabled_by is not None:
        row.enabled_by = to_uuid(enabled_by)
    row.updated_at = now


# ── User-level tokens ──────────────────────────────────────────────────


async def get_user_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
    provider: str,
) -> Optional[OAuthTokenRecord]:
    row = await get_integration(session, organization_id, _spec(provider).user_integration_type)
    if row is None or not row.is_enabled:
        return None
    stored = (row.configuration or {}).get(str(user_id))
    if not stored or not stored.get("access_token"):
        return None
    return OAuthTokenRecord.from_storage(stored, provider)


async def upsert_user_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
    provider: str,
    record: OAuthTokenRecord,
    *,
    connected: bool = True,
) -> OrganizationIntegration:
    """
    Store *record* under ``configuration[user_id]``, leaving other users' keys untouched.

    ``connected=False`` (a refresh) only stamps ``updated_at``.
    """
    row = await _lock_or_create(session, organization_id, _spec(provider).user_integration_type)
    configuration = dict(row.configuration or {})
    configuration[str(user_id)] = record.to_storage()
    row.configuration = configuration
    if connected:
        _enable(row, user_id)
    else:
        row.updated_at = _utcnow()
    await session.flush()
    logger.info("Stored %s tokens for user %s (org %s)", provider, user_id, organization_id)
    return row


async def remove_user_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
    provider: str,
) -> Optional[OAuthTokenRecord]:
    """
    Delete the user's key; disable and clear the row once no users remain.

    Returns the removed record, or None when the user had no tokens.
    """
    row = await get_integration(
        session, organization_id, _spec(provider).user_integration_type, for_update=True
    )
    if row is None:
        return None
    configuration = dict(row.configuration or {})
    stored = configuration.pop(str(user_id), None)
    if stored is None:
        return None

    if configuration:
        row.configuration = configuration
    else:
        row.configuration = {}
        row.is_enabled = False
    row.updated_at = _utcnow()
    await session.flush()
    logger.info(
        "Removed %s tokens for user %s (org %s, %d users left)",
        provider, user_id, organization_id, len(configuration),
    )
    return OAuthTokenRecord.from_storage(stored, provider) if stored.get("access_token") else None


# ── Org-level credentials and tokens ───────────────────────────────────


async def save_org_credentials(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
    client_id: str,
    client_secret: str,
    *,
    saved_by: Optional[IdLike] = None,
) -> OrganizationIntegration:
    row = await _lock_or_create(session, organization_id, _spec(provider).integration_type("org"))
    configuration = dict(row.configuration or {})
    configuration["client_id"] = client_id
    configuration["client_secret"] = encrypt_token(client_secret)
    row.configuration = configuration
    if saved_by is not None:
        row.enabled_by = to_uuid(saved_by)
    row.updated_at = _utcnow()
    await session.flush()
    logger.info("Saved %s client credentials for org %s", provider, organization_id)
    return row


async def get_org_credentials(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
) -> Optional[ClientCredentials]:
    spec = _spec(provider)
    if not spec.supports_org_level:
        return None
    row = await get_integration(session, organization_id, spec.integration_type("org"))
    if row is None:
        return None
    configuration = row.configuration or {}
    client_id = configuration.get("client_id")
    client_secret = configuration.get("client_secret")
    if not client_id or not client_secret:
        return None
    return ClientCredentials(client_id, decrypt_token(client_secret))


async def get_org_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
) -> Optional[OAuthTokenRecord]:
    spec = _spec(provider)
    if not spec.supports_org_level:
        return None
    row = await get_integration(session, organization_id, spec.integration_type("org"))
    if row is None or not row.is_enabled:
        return None
    configuration = row.configuration or {}
    if not configuration.get("access_token"):
        return None
    return OAuthTokenRecord.from_storage(configuration, provider)


async def store_org_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
    record: OAuthTokenRecord,
    *,
    enabled_by: Optional[IdLike] = None,
    connected: bool = True,
) -> OrganizationIntegration:
    """Merge org-wide tokens into the org row, keeping the stored credentials."""
    row = await _lock_or_create(session, organization_id, _spec(provider).integration_type("org"))
    configuration = dict(row.configuration or {})
    configuration.update(record.to_storage())
    row.configuration = configuration
    if connected:
        _enable(row, enabled_by)
    else:
        row.updated_at = _utcnow()
    await session.flush()
    logger.info("Stored org-level %s tokens for org %s", provider, organization_id)
    return row


async def clear_org_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
) -> Optional[OAuthTokenRecord]:
    """Drop the org tokens (credentials stay) and disable the row."""
    row = await get_integration(
        session, organization_id, _spec(provider).integration_type("org"), for_update=True
    )
    if row is None:
        return None
    configuration = row.configuration or {}
    removed = OAuthTokenRecord.from_storage(configuration, provider) if configuration.get("access_token") else None
    row.configuration = {k: v for k, v in configuration.items() if k in _CREDENTIAL_KEYS}
    row.is_enabled = False
    row.updated_at = _utcnow()
    await session.flush()
    logger.info("Cleared org-level %s tokens for org %s", provider, organization_id)
    return removed


# ── Resolution ─────────────────────────────────────────────────────────


async def resolve_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
    provider: str,
) -> Tuple[Optional[OAuthTokenRecord], str]:
    """
    Tokens to act with: the user's own, else the organization's.

    Returns ``(record, level)`` where level says where to write a refresh back.
    """
    record = await get_user_tokens(session, organization_id, user_id, provider)
    if record is not None:
        return record, "user"
    record = await get_org_tokens(session, organization_id, provider)
    if record is not None:
        return record, "org"
    return None, "user"


async def save_tokens(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
    provider: str,
    record: OAuthTokenRecord,
    level: str,
) -> None:
    """Write a refreshed record back to the level it was read from."""
    if level == "org":
        await store_org_tokens(session, organization_id, provider, record, connected=False)
    else:
        await upsert_user_tokens(session, organization_id, user_id, provider, record, connected=False)


# ── CRM exclusivity and status ─────────────────────────────────────────


async def disable_other_crms(
    session: AsyncSession,
    organization_id: IdLike,
    provider: str,
) -> List[str]:
    """Disable every other CRM's rows for the org; returns the types disabled."""
    if not _spec(provider).is_crm:
        return []
    result = await session.execute(
        select(OrganizationIntegration).where(
            OrganizationIntegration.organization_id == to_uuid(organization_id),
            OrganizationIntegration.integration_type.in_(crm_integration_types(provider)),
            OrganizationIntegration.is_enabled.is_(True),
        )
    )
    disabled = []
    for row in result.scalars().all():
        row.is_enabled = False
        row.updated_at = _utcnow()
        disabled.append(row.integration_type)
    if disabled:
        await session.flush()
        logger.info("Connecting %s disabled %s for org %s", provider, disabled, organization_id)
    return disabled


async def integration_status(
    session: AsyncSession,
    organization_id: IdLike,
    user_id: IdLike,
) -> Dict[str, Any]:
    """Per-provider connection status for one user, plus the active email provider and CRM."""
    result = await session.execute(
        select(OrganizationIntegration).where(
            OrganizationIntegration.organization_id == to_uuid(organization_id)
        )
    )
    rows = {row.integration_type: row for row in result.scalars().all()}
    user_key = str(user_id)

    providers: Dict[str, Dict[str, Any]] = {}
    for spec in ALL_PROVIDERS:
        user_row = rows.get(spec.user_integration_type)
        org_row = rows.get(spec.org_integration_type) if spec.org_integration_type else None

        has_user_tokens = bool(
            user_row is not None
            and user_row.is_enabled
            and (user_row.configuration or {}).get(user_key, {}).get("access_token")
        )
        has_org_tokens = bool(
            org_row is not None
            and org_row.is_enabled
            and (org_row.configuration or {}).get("access_token")
        )
        updated = [_aware(r.updated_at) for r in (user_row, org_row) if r is not None and r.updated_at]
        providers[spec.slug] = {
            "connected": has_user_tokens or has_org_tokens,
            "enabled": any(r is not None and r.is_enabled for r in (user_row, org_row)),
            "hasUserTokens": has_user_tokens,
            "hasOrgTokens": has_org_tokens,
            "lastUpdated": max(updated).isoformat() if updated else None,
        }

    email_provider = None
    for spec in ALL_PROVIDERS:
        if spec.email_provider and providers[spec.slug]["hasUserTokens"]:
            email_provider = spec.email_provider
            break

    active_crm = next(
        (spec.slug for spec in ALL_PROVIDERS if spec.is_crm and providers[spec.slug]["connected"]),
        None,
    )
    return {"providers": providers, "emailProvider": email_provider, "activeCrm": active_crm}
