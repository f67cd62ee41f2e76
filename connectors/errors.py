"""
Connector exceptions.

Each carries the HTTP status the API layer should answer with; see
``api/errors.py`` for the handler that renders them as ``{"error": ...}``.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base exception for connector and token lifecycle failures."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ProviderNotAvailable(ConnectorError):
    status_code = 404


class NotConnectedError(ConnectorError):
    status_code = 404


class ReauthorizationRequired(ConnectorError):
    """The stored grant can no longer produce an access token."""

    status_code = 401


class InvalidStateError(ConnectorError):
    status_code = 400


class TokenExchangeError(ConnectorError):
    status_code = 502


class ProviderAPIError(ConnectorError):
    """Non-2xx answer from a provider API call."""

    status_code = 502

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
