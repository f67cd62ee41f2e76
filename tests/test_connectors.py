"""
Tests for the OAuth2 connectors — authorize URLs, code exchange, refresh
and the provider API helpers.
"""

import base64
from email import message_from_bytes
from types import SimpleNamespace
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.base import ClientCredentials
from connectors.errors import (
    ProviderAPIError,
    ProviderNotAvailable,
    ReauthorizationRequired,
    TokenExchangeError,
)
from connectors.gmail import build_raw_message
from connectors.registry import ConnectorRegistry
from connectors.salesforce import soql_like_quote, soql_quote


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _fake_api(*responses):
    """Stand-in for ProviderSession returning canned JSON bodies in order."""
    return SimpleNamespace(
        request=AsyncMock(side_effect=list(responses)),
        ctx=SimpleNamespace(user_id="u-1", organization_id="o-1", provider="test"),
    )


class TestRegistry:
    def test_all_providers_listed(self):
        providers = {p["provider"]: p for p in ConnectorRegistry().list_providers()}
        assert set(providers) == {"gmail", "outlook", "salesforce", "hubspot", "monday"}
        assert providers["salesforce"]["org_level"] is True
        assert providers["gmail"]["crm"] is False

    def test_require_unknown_provider(self):
        with pytest.raises(ProviderNotAvailable):
            ConnectorRegistry().require("myspace")


class TestAuthUrls:
    def test_gmail_requests_offline_access(self):
        connector = ConnectorRegistry().require("gmail")
        url = connector.get_auth_url("st4te")
        params = _query(url)
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert params["client_id"] == "google-id"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["state"] == "st4te"
        assert params["redirect_uri"] == "http://api.test/api/gmail/user-callback"
        assert "https://www.googleapis.com/auth/gmail.compose" in params["scope"].split()

    def test_outlook_uses_tenant(self):
        url = ConnectorRegistry().require("outlook").get_auth_url("s")
        assert url.startswith("https://login.microsoftonline.com/common/oauth2/v2.0/authorize?")
        assert "offline_access" in _query(url)["scope"].split()

    def test_salesforce_org_level_uses_org_credentials(self):
        connector = ConnectorRegistry().require("salesforce")
        url = connector.get_auth_url(
            "s", level="org", credentials=ClientCredentials("org-client", "org-secret")
        )
        params = _query(url)
        assert url.startswith("https://login.salesforce.com/services/oauth2/authorize?")
        assert params["client_id"] == "org-client"
        assert params["redirect_uri"] == "http://api.test/api/salesforce/callback"

    def test_incomplete_org_credentials_fall_back_to_app(self):
        connector = ConnectorRegistry().require("monday")
        url = connector.get_auth_url("s", credentials=ClientCredentials("org-client", ""))
        assert _query(url)["client_id"] == "monday-id"


class TestCodeExchange:
    @pytest.mark.asyncio
    async def test_exchange_posts_authorization_code(self, mock_http):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "hs-at", "refresh_token": "hs-rt"})

        connector = mock_http("hubspot", handler)
        tokens = await connector.exchange_code("the-code")

        assert seen["url"] == "https://api.hubapi.com/oauth/v1/token"
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["the-code"]
        assert seen["form"]["redirect_uri"] == ["http://api.test/api/hubspot/user-callback"]
        assert tokens["access_token"] == "hs-at"
        assert tokens["expires_in"] == 1800

    @pytest.mark.asyncio
    async def test_salesforce_keeps_instance_url(self, mock_http):
        connector = mock_http(
            "salesforce",
            lambda request: httpx.Response(
                200,
                json={
                    "access_token": "sf-at",
                    "refresh_token": "sf-rt",
                    "instance_url": "https://acme.my.salesforce.com",
                    "issued_at": "1700000000000",
                },
            ),
        )
        tokens = await connector.exchange_code("c", level="org")
        assert tokens["instance_url"] == "https://acme.my.salesforce.com"
        assert tokens["expires_in"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(400, json={"error": "invalid_grant"}),
            httpx.Response(200, json={"error": "invalid_grant", "error_description": "Code expired"}),
            httpx.Response(200, json={"token_type": "Bearer"}),
            httpx.Response(200, json=["not", "an", "object"]),
            httpx.Response(200, text="<html>oops</html>"),
        ],
    )
    async def test_exchange_failures(self, mock_http, response):
        connector = mock_http("gmail", lambda request: response)
        with pytest.raises(TokenExchangeError):
            await connector.exchange_code("bad")

    @pytest.mark.asyncio
    async def test_transport_error(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        connector = mock_http("gmail", handler)
        with pytest.raises(TokenExchangeError):
            await connector.exchange_code("c")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, mock_http):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "new-at", "expires_in": 3599})

        connector = mock_http("gmail", handler)
        tokens = await connector.refresh_access_token({"access_token": "old", "refresh_token": "rt"})
        assert seen["form"]["grant_type"] == ["refresh_token"]
        assert tokens["access_token"] == "new-at"
        assert tokens["refresh_token"] == "rt"
        assert tokens["expires_in"] == 3599

    @pytest.mark.asyncio
    async def test_salesforce_refreshes_at_instance(self, mock_http):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"access_token": "new-at"})

        connector = mock_http("salesforce", handler)
        tokens = await connector.refresh_access_token(
            {"access_token": "a", "refresh_token": "r", "instance_url": "https://acme.my.salesforce.com"}
        )
        assert seen["url"] == "https://acme.my.salesforce.com/services/oauth2/token"
        assert tokens["instance_url"] == "https://acme.my.salesforce.com"

    @pytest.mark.asyncio
    async def test_outlook_sends_scope(self, mock_http):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "x", "expires_in": 3600})

        connector = mock_http("outlook", handler)
        await connector.refresh_access_token({"access_token": "a", "refresh_token": "r"})
        assert "Mail.Send" in seen["form"]["scope"][0]

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self):
        connector = ConnectorRegistry().require("gmail")
        with pytest.raises(ReauthorizationRequired, match="sign in again"):
            await connector.refresh_access_token({"access_token": "a"})

    @pytest.mark.asyncio
    async def test_monday_cannot_refresh(self):
        connector = ConnectorRegistry().require("monday")
        with pytest.raises(ReauthorizationRequired):
            await connector.refresh_access_token({"access_token": "a", "refresh_token": "r"})

    @pytest.mark.asyncio
    async def test_rejected_refresh(self, mock_http):
        connector = mock_http("hubspot", lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        with pytest.raises(ReauthorizationRequired):
            await connector.refresh_access_token({"access_token": "a", "refresh_token": "r"})


class TestGmailHelpers:
    def test_raw_message_is_unpadded_base64url(self):
        raw = build_raw_message("lead@example.com", "Hello", "Body text")
        assert "=" not in raw and "+" not in raw and "/" not in raw
        msg = message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
        assert msg["To"] == "lead@example.com"
        assert msg["Subject"] == "Hello"
        assert "Body text" in msg.get_payload()

    @pytest.mark.asyncio
    async def test_create_draft(self):
        api = _fake_api({"id": "r-123", "message": {"id": "m-1"}})
        result = await ConnectorRegistry().require("gmail").create_draft(api, "a@b.co", "S", "B")
        assert result == {"id": "r-123", "success": True}
        method, path = api.request.call_args.args
        assert (method, path) == ("POST", "/users/me/drafts")
        assert "raw" in api.request.call_args.kwargs["json"]["message"]


class TestCrmHelpers:
    def test_soql_quote(self):
        assert soql_quote("o'brien\\x") == "o\\'brien\\\\x"

    def test_soql_like_quote_escapes_wildcards(self):
        assert soql_like_quote("100%_o'k") == "100\\%\\_o\\'k"

    @pytest.mark.asyncio
    async def test_salesforce_name_search_is_literal(self):
        api = _fake_api({"totalSize": 0, "records": []}, {"totalSize": 0, "records": []})
        await ConnectorRegistry().require("salesforce").search_person(api, first_name="50%", last_name="o_k")

        soql = api.request.call_args_list[0].kwargs["params"]["q"]
        assert "Name LIKE '%50\\% o\\_k%'" in soql

    @pytest.mark.asyncio
    async def test_salesforce_falls_back_to_lead(self):
        lead = {"Id": "00Q1", "Email": "jo@acme.com", "LastModifiedDate": "2024-05-01T00:00:00Z"}
        api = _fake_api({"totalSize": 0, "records": []}, {"totalSize": 1, "records": [lead]})
        result = await ConnectorRegistry().require("salesforce").search_person(api, email="jo@acme.com")

        assert result["found"] is True
        assert result["type"] == "Lead"
        assert result["lastInteractionDate"] == "2024-05-01T00:00:00Z"
        first_soql = api.request.call_args_list[0].kwargs["params"]["q"]
        assert "FROM Contact" in first_soql and "Email = 'jo@acme.com'" in first_soql

    @pytest.mark.asyncio
    async def test_salesforce_nothing_to_search(self):
        api = _fake_api()
        result = await ConnectorRegistry().require("salesforce").search_person(api)
        assert result["found"] is False
        api.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_hubspot_search_by_name(self):
        contact = {"id": "901", "properties": {"email": "x@y.z", "lastmodifieddate": "2024-01-01"}}
        api = _fake_api({"total": 1, "results": [contact]})
        result = await ConnectorRegistry().require("hubspot").search_contact(
            api, first_name="Ada", last_name="Lovelace"
        )
        assert result["found"] is True and result["data"]["id"] == "901"
        filters = api.request.call_args.kwargs["json"]["filterGroups"][0]["filters"]
        assert {f["propertyName"] for f in filters} == {"firstname", "lastname"}

    @pytest.mark.asyncio
    async def test_monday_matches_email_column(self):
        boards = {
            "data": {
                "boards": [
                    {
                        "id": "b1",
                        "name": "Leads",
                        "items_page": {
                            "items": [
                                {
                                    "id": "i1",
                                    "name": "Someone Else",
                                    "column_values": [{"id": "email", "text": "else@x.com", "type": "email"}],
                                },
                                {
                                    "id": "i2",
                                    "name": "Ada Lovelace",
                                    "column_values": [
                                        {"id": "email", "text": "ada@x.com", "type": "email"},
                                        {"id": "company", "text": "Analytical", "type": "text"},
                                    ],
                                    "updated_at": "2024-02-02",
                                },
                            ]
                        },
                    }
                ]
            }
        }
        api = _fake_api(boards)
        result = await ConnectorRegistry().require("monday").search_person(api, email="ADA@x.com")
        assert result["found"] is True
        assert result["data"]["id"] == "i2"
        assert result["data"]["company"] == "Analytical"
        assert api.request.call_args.kwargs["headers"] == {"API-Version": "2024-01"}

    @pytest.mark.asyncio
    async def test_monday_graphql_errors(self):
        api = _fake_api({"errors": [{"message": "Not authorized"}]})
        with pytest.raises(ProviderAPIError):
            await ConnectorRegistry().require("monday").graphql(api, "query { me { id } }")
