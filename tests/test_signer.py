"""Tests for webhook payload signing."""
import hashlib
import hmac

import pytest

from hookrelay.exceptions import MissingSecretError
from hookrelay.services.signer import serialize_payload, sign, verify_signature


PAYLOAD = {"event_type": "compra.aprovada", "data": {"amount": 9990, "name": "João"}}


class TestSerializePayload:
    def test_compact_utf8(self):
        body = serialize_payload(PAYLOAD)
        assert body == '{"event_type":"compra.aprovada","data":{"amount":9990,"name":"João"}}'.encode("utf-8")

    def test_stable_for_equal_payloads(self):
        assert serialize_payload(dict(PAYLOAD)) == serialize_payload(PAYLOAD)


class TestSign:
    def test_matches_hmac_sha256_hex(self):
        body = serialize_payload(PAYLOAD)
        expected = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
        assert sign("whsec_test", body) == expected

    def test_deterministic(self):
        body = serialize_payload(PAYLOAD)
        assert sign("whsec_test", body) == sign("whsec_test", body)

    def test_lowercase_hex_of_sha256_length(self):
        signature = sign("whsec_test", b"{}")
        assert len(signature) == 64
        assert signature == signature.lower()
        int(signature, 16)

    def test_single_byte_change_changes_signature(self):
        assert sign("whsec_test", b'{"a":1}') != sign("whsec_test", b'{"a":2}')

    def test_different_secret_changes_signature(self):
        assert sign("secret-a", b"{}") != sign("secret-b", b"{}")

    @pytest.mark.parametrize("secret", ["", None])
    def test_missing_secret_raises(self, secret):
        with pytest.raises(MissingSecretError):
            sign(secret, b"{}")


class TestVerifySignature:
    def test_accepts_bare_and_prefixed(self):
        body = serialize_payload(PAYLOAD)
        signature = sign("whsec_test", body)
        assert verify_signature("whsec_test", body, signature)
        assert verify_signature("whsec_test", body, f"sha256={signature}")

    def test_rejects_tampered_body(self):
        signature = sign("whsec_test", b'{"a":1}')
        assert not verify_signature("whsec_test", b'{"a":2}', signature)

    def test_rejects_missing_values(self):
        assert not verify_signature("", b"{}", "abc")
        assert not verify_signature("whsec_test", b"{}", None)
