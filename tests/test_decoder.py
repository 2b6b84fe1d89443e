"""
Unit tests for nested token decoding.
"""

import pytest

from conftest import b64url, make_key, sign_token, unsigned_token
from services.notifications.decoder import decode_nested, decode_segments, extract_nested
from services.notifications.errors import DecodeError


class TestDecodeNested:

    def test_returns_payload_without_verification(self, transaction_claims):
        token = unsigned_token(transaction_claims)
        assert decode_nested(token) == transaction_claims

    def test_ignores_header_and_signature(self, transaction_claims):
        token = sign_token(transaction_claims, make_key("other"), kid="other")
        assert decode_nested(token) == transaction_claims

    def test_keeps_epoch_millisecond_fields_unchanged(self, transaction_claims):
        decoded = decode_nested(unsigned_token(transaction_claims))
        assert decoded["expiresDate"] == 1767225600000
        assert isinstance(decoded["expiresDate"], int)

    @pytest.mark.parametrize("token", [
        "onlyone",
        "two.segments",
        "a.b.c.d",
        "",
    ])
    def test_wrong_segment_count(self, token):
        with pytest.raises(DecodeError):
            decode_nested(token)

    def test_payload_not_base64_json(self):
        with pytest.raises(DecodeError):
            decode_nested(f"{b64url({'alg': 'ES256'})}.!!!notjson!!!.sig")

    def test_payload_not_object(self):
        with pytest.raises(DecodeError):
            decode_nested(f"{b64url({'alg': 'ES256'})}.{b64url([1, 2, 3])}.sig")

    def test_non_string_token(self):
        with pytest.raises(DecodeError):
            decode_nested(12345)


class TestDecodeSegments:

    def test_header_and_payload(self):
        header, payload = decode_segments(unsigned_token({"a": 1}, header={"alg": "ES256", "kid": "k"}))
        assert header == {"alg": "ES256", "kid": "k"}
        assert payload == {"a": 1}

    def test_non_canonical_segment(self):
        # {"a": 1} encodes to "eyJhIjogMX0"; "1" differs only in the unused trailing bits
        assert decode_segments(f"{b64url({'alg': 'ES256'})}.eyJhIjogMX0.sig")[1] == {"a": 1}
        with pytest.raises(DecodeError):
            decode_segments(f"{b64url({'alg': 'ES256'})}.eyJhIjogMX1.sig")

    def test_bad_header(self):
        with pytest.raises(DecodeError):
            decode_segments(f"not-base64-json.{b64url({'a': 1})}.sig")


class TestExtractNested:

    def test_both_present(self, transaction_claims, renewal_claims):
        data = {
            "signedTransactionInfo": unsigned_token(transaction_claims),
            "signedRenewalInfo": unsigned_token(renewal_claims),
        }
        assert extract_nested(data) == (transaction_claims, renewal_claims)

    def test_absent(self):
        assert extract_nested({"bundleId": "com.example.app"}) == (None, None)
        assert extract_nested(None) == (None, None)

    def test_malformed_part_is_dropped(self, renewal_claims):
        data = {
            "signedTransactionInfo": "garbage",
            "signedRenewalInfo": unsigned_token(renewal_claims),
        }
        assert extract_nested(data) == (None, renewal_claims)
