"""
Download token tests.

Covers signing/verification of the stateless download capability:
round-trip, expiry, tampering, malformed tokens and secret rotation.
"""

import base64
import json
import time

import pytest

from app.services.download_token import (
    _mac,
    issue_download_token,
    sign_download_token,
    verify_download_token,
)

SECRET = "test-download-secret"


def _flip_one_bit(text: str, index: int) -> str:
    """Return text with the lowest bit of the character at index flipped."""
    ch = text[index]
    flipped = chr(ord(ch) ^ 1)
    return text[:index] + flipped + text[index + 1:]


class TestRoundTrip:
    def test_verify_returns_signed_payload(self):
        payload = {"name": "devis-123.pdf", "exp": int(time.time()) + 600}
        token = sign_download_token(payload, SECRET)

        assert verify_download_token(token, SECRET) == payload

    def test_token_has_exactly_one_separator_and_no_padding(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 4102444800}, SECRET)

        assert token.count(".") == 1
        assert "=" not in token
        assert "+" not in token and "/" not in token

    def test_payload_part_is_base64url_json(self):
        payload = {"name": "devis-1.pdf", "exp": 4102444800}
        encoded = sign_download_token(payload, SECRET).split(".")[0]
        padded = encoded + "=" * (-len(encoded) % 4)

        assert json.loads(base64.urlsafe_b64decode(padded)) == payload

    def test_issue_download_token_embeds_name_and_ttl(self):
        before = int(time.time())
        token = issue_download_token("devis-42.pdf", SECRET, 3600)
        payload = verify_download_token(token, SECRET)

        assert payload["name"] == "devis-42.pdf"
        assert before + 3600 <= payload["exp"] <= int(time.time()) + 3600


class TestRejection:
    def test_expired_token_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": int(time.time()) - 1}, SECRET)
        assert verify_download_token(token, SECRET) is None

    def test_expiry_is_checked_against_supplied_now(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 1_000}, SECRET)

        assert verify_download_token(token, SECRET, now=999) is not None
        assert verify_download_token(token, SECRET, now=1_001) is None

    def test_missing_exp_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf"}, SECRET)
        assert verify_download_token(token, SECRET) is None

    def test_non_numeric_exp_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": "tomorrow"}, SECRET)
        assert verify_download_token(token, SECRET) is None

    @pytest.mark.parametrize("index", [0, 5, -1])
    def test_mac_bit_flip_is_rejected(self, index):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 4102444800}, SECRET)
        payload_part, mac = token.split(".")
        tampered = f"{payload_part}.{_flip_one_bit(mac, index % len(mac))}"

        assert verify_download_token(tampered, SECRET) is None

    def test_payload_bit_flip_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 4102444800}, SECRET)
        payload_part, mac = token.split(".")
        tampered = f"{_flip_one_bit(payload_part, 3)}.{mac}"

        assert verify_download_token(tampered, SECRET) is None

    def test_truncated_mac_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 4102444800}, SECRET)
        assert verify_download_token(token[:-2], SECRET) is None

    @pytest.mark.parametrize("token", ["", "no-separator", "a.b.c", "..", "x.y.z.w"])
    def test_wrong_number_of_parts_is_rejected(self, token):
        assert verify_download_token(token, SECRET) is None

    def test_token_signed_with_other_secret_is_rejected(self):
        token = sign_download_token({"name": "devis-1.pdf", "exp": 4102444800}, "old-secret")
        assert verify_download_token(token, SECRET) is None

    def test_validly_signed_garbage_payload_is_rejected(self):
        garbage = base64.urlsafe_b64encode(b"not json").rstrip(b"=").decode()
        token = f"{garbage}.{_mac(garbage, SECRET)}"

        assert verify_download_token(token, SECRET) is None

    def test_non_string_token_is_rejected(self):
        assert verify_download_token(None, SECRET) is None
