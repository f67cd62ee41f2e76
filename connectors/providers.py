"""
Provider table — the per-provider facts the generic OAuth2 connector needs.

Adding a provider that follows the plain authorization-code flow is a new
entry here plus a thin ``OAuth2Connector`` subclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class ProviderSpec:
    slug: str
    display_name: str
    authorize_url: str
    token_url: str
    scopes: List[str] = field(default_factory=list)
    settings_prefix: str = ""                      # e.g. "google" -> config.google_client_id
    org_integration_type: Optional[str] = None     # set when org-wide connections exist
    extra_auth_params: Dict[str, str] = field(default_factory=dict)
    revoke_url: Optional[str] = None
    supports_refresh: bool = True
    default_expires_in: Optional[int] = 3600       # None -> provider does not report expiry
    is_crm: bool = False
    email_provider: Optional[str] = None           # "google" / "microsoft" for mail-capable providers
    icon: str = "🔗"

    @property
    def user_integration_type(self) -> str:
        return f"{self.slug}_user"

    @property
    def supports_org_level(self) -> bool:
        return self.org_integration_type is not None

    def integration_type(self, level: str) -> str:
        if level == "org":
            if not self.org_integration_type:
                raise ValueError(f"{self.slug} has no organization-level connection")
            return self.org_integration_type
        return self.user_integration_type


GMAIL = ProviderSpec(
    slug="gmail",
    display_name="Google Workspace",
    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    revoke_url="https://oauth2.googleapis.com/revoke",
    scopes=[
        "https://www.googleapis.com/auth/gmail.compose",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/userinfo.email",
    ],
    settings_prefix="google",
    extra_auth_params={"access_type": "offline", "prompt": "consent"},
    email_provider="google",
    icon="📧",
)

OUTLOOK = ProviderSpec(
    slug="outlook",
    display_name="Outlook",
    # {tenant} is filled from config.microsoft_tenant_id
    authorize_url="https://login.microsoftonline.com/{tenant}/oauth2/v2.0/authorize",
    token_url="https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token",
    scopes=[
        "openid",
        "offline_access",
        "Mail.Send",
        "Mail.ReadWrite",
        "User.Read",
        "Calendars.Read",
        "Calendars.ReadWrite",
    ],
    settings_prefix="microsoft",
    extra_auth_params={"response_mode": "query"},
    email_provider="microsoft",
    icon="📨",
)

SALESFORCE = ProviderSpec(
    slug="salesforce",
    display_name="Salesforce",
    authorize_url="{login_url}/services/oauth2/authorize",
    token_url="{login_url}/services/oauth2/token",
    revoke_url="{login_url}/services/oauth2/revoke",
    settings_prefix="salesforce",
    org_integration_type="salesforce",
    extra_auth_params={"prompt": "consent"},
    default_expires_in=None,
    is_crm=True,
    icon="☁️",
)

HUBSPOT = ProviderSpec(
    slug="hubspot",
    display_name="HubSpot",
    authorize_url="https://app.hubspot.com/oauth/authorize",
    token_url="https://api.hubapi.com/oauth/v1/token",
    scopes=[
        "crm.objects.contacts.read",
        "crm.objects.contacts.write",
        "crm.objects.companies.read",
    ],
    settings_prefix="hubspot",
    default_expires_in=1800,
    is_crm=True,
    icon="🟠",
)

MONDAY = ProviderSpec(
    slug="monday",
    display_name="Monday.com",
    authorize_url="https://auth.monday.com/oauth2/authorize",
    token_url="https://auth.monday.com/oauth2/token",
    settings_prefix="monday",
    org_integration_type="monday",
    supports_refresh=False,
    default_expires_in=None,
    is_crm=True,
    icon="🟣",
)

ALL_PROVIDERS: List[ProviderSpec] = [GMAIL, OUTLOOK, SALESFORCE, HUBSPOT, MONDAY]

PROVIDERS_BY_SLUG: Dict[str, ProviderSpec] = {p.slug: p for p in ALL_PROVIDERS}


def crm_integration_types(excluding: str) -> List[str]:
    """Integration types of every CRM except *excluding* (user and org level)."""
    types: List[str] = []
    for spec in ALL_PROVIDERS:
        if not spec.is_crm or spec.slug == excluding:
            continue
        types.append(spec.user_integration_type)
        if spec.org_integration_type:
            types.append(spec.org_integration_type)
    return types
