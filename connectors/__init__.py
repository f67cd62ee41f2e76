"""
connectors — OAuth integration module for external services.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation with a signed state
  • Callback handling (code → token exchange)
  • Per-user and per-organization token storage & auto-refresh
  • Fernet encryption of tokens at rest
  • Revocation / disconnect

Each provider (Gmail, Outlook, Salesforce, HubSpot, Monday.com) is an
``OAuth2Connector`` subclass driven by its entry in ``providers.py``.
"""
