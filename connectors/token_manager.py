"""
Token manager — get / refresh per-user OAuth tokens and call provider APIs.

This is the single interface that feature routes use to act on a user's
behalf with a provider:

    api = ProviderSession(TokenContext(org_id, user_id, "gmail"), db_session=session)
    await api.request("POST", "/users/me/drafts", json=...)

Expired tokens are refreshed before the call; a 401 from the provider
forces one refresh and one retry.  A request never refreshes twice.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from connectors.errors import NotConnectedError, ProviderAPIError, ReauthorizationRequired
from connectors.registry import ConnectorRegistry
from connectors.token_store import (
    OAuthTokenRecord,
    get_org_credentials,
    resolve_tokens,
    save_tokens,
)
from database.session import async_session_factory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenContext:
    organization_id: str
    user_id: str
    provider: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return (str(self.organization_id), str(self.user_id), self.provider)


# One lock per (org, user, provider); an entry lives only while someone holds or awaits it
_refresh_locks: weakref.WeakValueDictionary[Tuple[str, str, str], asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(ctx: TokenContext) -> asyncio.Lock:
    lock = _refresh_locks.get(ctx.key)
    if lock is None:
        lock = asyncio.Lock()
        _refresh_locks[ctx.key] = lock
    return lock


async def _refresh(
    session: AsyncSession,
    ctx: TokenContext,
    record: OAuthTokenRecord,
    level: str,
) -> OAuthTokenRecord:
    connector = ConnectorRegistry().require(ctx.provider)
    credentials = await get_org_credentials(session, ctx.organization_id, ctx.provider)
    data = await connector.refresh_access_token(record.model_dump(), credentials=credentials)
    refreshed = OAuthTokenRecord.from_token_response(
        ctx.provider, data, connected_at=record.connected_at
    )
    await save_tokens(session, ctx.organization_id, ctx.user_id, ctx.provider, refreshed, level)
    # committed before the lock is released
    await session.commit()
    logger.info(
        "Refreshed %s token for user %s (org %s, %s level)",
        ctx.provider, ctx.user_id, ctx.organization_id, level,
    )
    return refreshed


async def _ensure_token(
    session: AsyncSession,
    ctx: TokenContext,
    *,
    force_refresh: bool = False,
    stale_token: Optional[str] = None,
) -> Tuple[OAuthTokenRecord, bool]:
    """Return ``(record, refreshed)``."""
    skew = config.token_refresh_skew_seconds
    record, _ = await resolve_tokens(session, ctx.organization_id, ctx.user_id, ctx.provider)
    if record is None:
        raise NotConnectedError(f"{ctx.provider} is not connected for this user")
    if not force_refresh and not record.is_expired(skew):
        return record, False

    async with _lock_for(ctx):
        # re-read: another request may have refreshed while we waited
        record, level = await resolve_tokens(session, ctx.organization_id, ctx.user_id, ctx.provider)
        if record is None:
            raise NotConnectedError(f"{ctx.provider} is not connected for this user")
        if force_refresh:
            if stale_token and record.access_token != stale_token:
                return record, True
        elif not record.is_expired(skew):
            return record, True
        return await _refresh(session, ctx, record, level), True


async def get_valid_token(
    ctx: TokenContext,
    *,
    db_session: Optional[AsyncSession] = None,
) -> OAuthTokenRecord:
    """
    Get a usable token record for the user + provider.

    1. Load the user's tokens (or the organization's for org-level providers).
    2. If the token expires within the skew, refresh it under the per-key lock.
    3. Write the refreshed token back.

    Raises ``NotConnectedError`` when nothing is stored and
    ``ReauthorizationRequired`` when the grant cannot be refreshed.
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    try:
        record, _ = await _ensure_token(session, ctx)
        return record
    finally:
        if own_session:
            await session.close()


class ProviderSession:
    """Authenticated provider API access for one request."""

    def __init__(self, ctx: TokenContext, *, db_session: Optional[AsyncSession] = None) -> None:
        self.ctx = ctx
        self.connector = ConnectorRegistry().require(ctx.provider)
        self.refreshed = False
        self._db = db_session
        self._record: Optional[OAuthTokenRecord] = None

    async def _session_call(self, **kwargs: Any) -> OAuthTokenRecord:
        if self._db is not None:
            record, refreshed = await _ensure_token(self._db, self.ctx, **kwargs)
        else:
            async with async_session_factory() as session:
                record, refreshed = await _ensure_token(session, self.ctx, **kwargs)
        self.refreshed = self.refreshed or refreshed
        self._record = record
        return record

    async def token(self) -> OAuthTokenRecord:
        if self._record is None:
            await self._session_call()
        return self._record

    def _url(self, record: OAuthTokenRecord, path_or_url: str) -> str:
        if path_or_url and not path_or_url.startswith("/"):
            return path_or_url
        base = self.connector.api_base(record.model_dump())
        if not base:
            raise ProviderAPIError(f"No API endpoint known for {self.connector.display_name}")
        return base + path_or_url

    async def _send(
        self,
        record: OAuthTokenRecord,
        method: str,
        path_or_url: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged = {"Authorization": f"Bearer {record.access_token}", "Accept": "application/json"}
        merged.update(headers or {})
        url = self._url(record, path_or_url)
        try:
            async with self.connector.http_client() as client:
                return await client.request(method, url, json=json, params=params, headers=merged)
        except httpx.HTTPError as exc:
            raise ProviderAPIError(f"{self.connector.display_name} request failed: {exc}") from exc

    async def request(
        self,
        method: str,
        path_or_url: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Call the provider API with the user's bearer token.

        *path_or_url* starting with ``/`` (or empty) is relative to the
        connector's API base.  Returns the decoded JSON body, ``{}`` for
        empty answers.
        """
        record = await self.token()
        kwargs = {"json": json, "params": params, "headers": headers}
        resp = await self._send(record, method, path_or_url, **kwargs)

        if resp.status_code == 401 and not self.refreshed:
            logger.info(
                "%s answered 401 for user %s, refreshing once",
                self.ctx.provider, self.ctx.user_id,
            )
            record = await self._session_call(force_refresh=True, stale_token=record.access_token)
            resp = await self._send(record, method, path_or_url, **kwargs)

        if resp.status_code == 401:
            raise ReauthorizationRequired(
                f"{self.connector.display_name} authentication failed. Please sign in again."
            )
        if resp.status_code >= 400:
            logger.warning(
                "%s API %s %s -> %s", self.ctx.provider, method, path_or_url, resp.status_code
            )
            raise ProviderAPIError(
                f"{self.connector.display_name} API error ({resp.status_code}): {resp.text[:300]}",
                upstream_status=resp.status_code,
            )
        if resp.status_code in (202, 204) or not resp.content:
            return {}
        return resp.json()
