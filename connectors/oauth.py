"""
OAuth2Connector — the authorization-code flow driven by a ``ProviderSpec``.

Provider subclasses override the small hooks (URL templating, extra token
fields, refresh endpoint) instead of re-implementing the flow.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import BaseConnector, ClientCredentials
from connectors.errors import ProviderAPIError, ReauthorizationRequired, TokenExchangeError
from connectors.providers import ProviderSpec

logger = logging.getLogger(__name__)


class OAuth2Connector(BaseConnector):
    """Generic OAuth2 authorization-code connector."""

    spec: ProviderSpec

    def __init__(self, spec: ProviderSpec) -> None:
        self.spec = spec

    @property
    def provider_name(self) -> str:
        return self.spec.slug

    @property
    def display_name(self) -> str:
        return self.spec.display_name

    @property
    def scopes(self) -> List[str]:
        return list(self.spec.scopes)

    @property
    def icon(self) -> str:
        return self.spec.icon

    def is_configured(self) -> bool:
        client_id, client_secret = config.client_credentials(self.spec.settings_prefix)
        return bool(client_id and client_secret)

    # ── Hooks ───────────────────────────────────────────────────────────

    def _url_params(self) -> Dict[str, str]:
        """Values substituted into the provider's URL templates."""
        return {}

    def _url(self, template: str) -> str:
        return template.format(**self._url_params())

    def _redirect_uri(self, level: str) -> str:
        route = "callback" if level == "org" else "user-callback"
        return f"{config.oauth_redirect_base}/api/{self.spec.slug}/{route}"

    def _credentials(self, credentials: Optional[ClientCredentials]) -> ClientCredentials:
        if credentials and credentials.client_id and credentials.client_secret:
            return credentials
        return ClientCredentials(*config.client_credentials(self.spec.settings_prefix))

    def _extra_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Provider-specific fields to keep from a token response."""
        return {}

    def _refresh_url(self, record: Dict[str, Any]) -> str:
        return self._url(self.spec.token_url)

    def _refresh_params(self) -> Dict[str, str]:
        return {}

    def http_client(self) -> httpx.AsyncClient:
        """HTTP client for token endpoint and provider API calls."""
        return httpx.AsyncClient(timeout=config.http_timeout_seconds)

    def _normalize(
        self,
        data: Dict[str, Any],
        previous: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        previous = previous or {}
        expires_in = data.get("expires_in", self.spec.default_expires_in)
        token = {
            "access_token": data["access_token"],
            # providers that don't rotate refresh tokens omit them on refresh
            "refresh_token": data.get("refresh_token") or previous.get("refresh_token"),
            "token_type": data.get("token_type", "Bearer"),
            "scope": data.get("scope", previous.get("scope", " ".join(self.scopes))),
            "expires_in": int(expires_in) if expires_in is not None else None,
        }
        token.update(self._extra_fields({**previous, **data}))
        return token

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(
        self,
        state: str,
        *,
        level: str = "user",
        credentials: Optional[ClientCredentials] = None,
    ) -> str:
        creds = self._credentials(credentials)
        params = {
            "client_id": creds.client_id,
            "redirect_uri": self._redirect_uri(level),
            "response_type": "code",
            "state": state,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        params.update(self.spec.extra_auth_params)
        return f"{self._url(self.spec.authorize_url)}?{urlencode(params)}"

    async def exchange_code(
        self,
        code: str,
        *,
        level: str = "user",
        credentials: Optional[ClientCredentials] = None,
    ) -> Dict[str, Any]:
        """Exchange auth code for tokens."""
        creds = self._credentials(credentials)
        try:
            async with self.http_client() as client:
                resp = await client.post(
                    self._url(self.spec.token_url),
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "client_id": creds.client_id,
                        "client_secret": creds.client_secret,
                        "redirect_uri": self._redirect_uri(level),
                    },
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"{self.display_name} token exchange failed: {exc}") from exc

        if resp.status_code >= 400:
            raise TokenExchangeError(f"{self.display_name} token exchange failed: {resp.text}")
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise TokenExchangeError(f"{self.display_name} token exchange failed: unexpected response")
        if "error" in data or "access_token" not in data:
            raise TokenExchangeError(
                f"{self.display_name} token exchange failed: "
                f"{data.get('error_description', data.get('error', 'no access_token'))}"
            )
        return self._normalize(data)

    async def refresh_access_token(
        self,
        record: Dict[str, Any],
        *,
        credentials: Optional[ClientCredentials] = None,
    ) -> Dict[str, Any]:
        """Use the stored refresh token to get a new access token."""
        refresh_token = record.get("refresh_token")
        if not self.spec.supports_refresh or not refresh_token:
            raise ReauthorizationRequired(
                f"{self.display_name} session expired. Please sign in again."
            )

        creds = self._credentials(credentials)
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
        }
        payload.update(self._refresh_params())
        try:
            async with self.http_client() as client:
                resp = await client.post(
                    self._refresh_url(record),
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise ProviderAPIError(f"{self.display_name} token refresh failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning(
                "%s refresh rejected (%s): %s", self.provider_name, resp.status_code, resp.text[:200]
            )
            raise ReauthorizationRequired(
                f"{self.display_name} authentication failed. Please sign in again."
            )
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or "access_token" not in data:
            raise ReauthorizationRequired(
                f"{self.display_name} authentication failed. Please sign in again."
            )
        return self._normalize(data, previous=record)

    async def revoke_token(self, access_token: str) -> bool:
        if not self.spec.revoke_url:
            return False
        try:
            async with self.http_client() as client:
                resp = await client.post(
                    self._url(self.spec.revoke_url),
                    params={"token": access_token},
                )
                return resp.status_code == 200
        except httpx.HTTPError:
            logger.warning("%s token revocation failed", self.provider_name, exc_info=True)
            return False
