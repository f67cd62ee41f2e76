"""
OAuth ``state`` codec (CSRF protection).

The state carries who started the flow so the callback, which arrives
without a session, knows where to store the tokens::

    base64url({"userId", "organizationId", "type", "timestamp"}) + "." + hmac

The signature is a truncated HMAC-SHA256 keyed by
``config.oauth_state_secret``.  When ``config.oauth_state_ttl_seconds`` is
positive, states older than that are rejected.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional

from config.settings import config
from connectors.errors import InvalidStateError

_SIG_LENGTH = 32


def _sign(raw: bytes) -> str:
    return hmac.new(config.oauth_state_secret.encode(), raw, hashlib.sha256).hexdigest()[:_SIG_LENGTH]


def _b64decode(value: str) -> bytes:
    return urlsafe_b64decode(value + "=" * (-len(value) % 4))


def encode_state(user_id: str, organization_id: str, kind: str) -> str:
    """Create a signed state for a flow of the given *kind* (e.g. ``gmail_user``)."""
    payload = {
        "userId": str(user_id),
        "organizationId": str(organization_id),
        "type": kind,
        "timestamp": int(time.time() * 1000),
    }
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return urlsafe_b64encode(raw).decode().rstrip("=") + "." + _sign(raw)


def decode_state(state: str, expected_kind: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify *state* and return its payload.

    Raises ``InvalidStateError`` on a malformed or tampered state, missing
    ids, a flow-kind mismatch or, when a TTL is configured, an expired one.
    A state without a ``type`` is accepted for any kind.
    """
    encoded, sep, sig = (state or "").partition(".")
    if not sep or not encoded or not sig:
        raise InvalidStateError("Invalid OAuth state: bad format")
    try:
        raw = _b64decode(encoded)
    except (binascii.Error, ValueError) as exc:
        raise InvalidStateError("Invalid OAuth state: bad encoding") from exc
    if not hmac.compare_digest(sig, _sign(raw)):
        raise InvalidStateError("Invalid OAuth state: bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidStateError("Invalid OAuth state: bad payload") from exc
    if not isinstance(payload, dict):
        raise InvalidStateError("Invalid OAuth state: bad payload")

    if not payload.get("userId") or not payload.get("organizationId"):
        raise InvalidStateError("Invalid OAuth state: missing user or organization")

    kind = payload.get("type")
    if expected_kind and kind and kind != expected_kind:
        raise InvalidStateError(f"Invalid OAuth state: expected {expected_kind}, got {kind}")

    ttl = config.oauth_state_ttl_seconds
    if ttl > 0:
        issued = payload.get("timestamp", 0) / 1000
        if issued + ttl < time.time():
            raise InvalidStateError("OAuth state expired, please try connecting again")

    return payload
