"""
Tests for the signed OAuth state codec.
"""

import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from unittest.mock import patch

import pytest

from config.settings import config
from connectors.errors import InvalidStateError
from connectors.state import _sign, decode_state, encode_state


def _forge(payload: dict) -> str:
    """A correctly signed state for an arbitrary payload."""
    raw = json.dumps(payload).encode()
    return urlsafe_b64encode(raw).decode().rstrip("=") + "." + _sign(raw)


class TestStateCodec:
    def test_decode_returns_ids_and_kind(self):
        state = encode_state("user-1", "org-1", "gmail_user")
        payload = decode_state(state, expected_kind="gmail_user")
        assert payload["userId"] == "user-1"
        assert payload["organizationId"] == "org-1"
        assert payload["type"] == "gmail_user"
        assert abs(payload["timestamp"] / 1000 - time.time()) < 5

    def test_payload_is_base64url_json(self):
        state = encode_state("user-1", "org-1", "salesforce")
        encoded = state.split(".")[0]
        assert "=" not in encoded
        raw = urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        assert json.loads(raw)["organizationId"] == "org-1"

    def test_tampered_payload_rejected(self):
        state = encode_state("user-1", "org-1", "gmail_user")
        _, sig = state.split(".")
        forged = urlsafe_b64encode(
            json.dumps({"userId": "attacker", "organizationId": "org-1"}).encode()
        ).decode().rstrip("=")
        with pytest.raises(InvalidStateError, match="signature"):
            decode_state(f"{forged}.{sig}")

    @pytest.mark.parametrize("state", ["", "no-dot-here", ".abc", "abc.", "!!!.deadbeef"])
    def test_malformed_state_rejected(self, state):
        with pytest.raises(InvalidStateError):
            decode_state(state)

    def test_kind_mismatch_rejected(self):
        state = encode_state("user-1", "org-1", "hubspot_user")
        with pytest.raises(InvalidStateError, match="expected gmail_user"):
            decode_state(state, expected_kind="gmail_user")

    def test_state_without_kind_accepted(self):
        state = _forge({"userId": "u", "organizationId": "o"})
        assert decode_state(state, expected_kind="gmail_user")["userId"] == "u"

    def test_missing_ids_rejected(self):
        with pytest.raises(InvalidStateError, match="missing"):
            decode_state(_forge({"userId": "u", "type": "gmail_user"}))

    def test_no_age_check_by_default(self):
        state = encode_state("user-1", "org-1", "gmail_user")
        with patch("connectors.state.time") as fake_time:
            fake_time.time.return_value = time.time() + 30 * 86400
            assert decode_state(state)["userId"] == "user-1"

    def test_expired_when_ttl_configured(self):
        state = encode_state("user-1", "org-1", "gmail_user")
        with patch.object(config, "oauth_state_ttl_seconds", 600), patch(
            "connectors.state.time"
        ) as fake_time:
            fake_time.time.return_value = time.time() + 601
            with pytest.raises(InvalidStateError, match="expired"):
                decode_state(state)
