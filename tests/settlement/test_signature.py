"""Webhook HMAC-SHA512 check over the raw body."""
import hashlib
import hmac

import pytest

from app.settlement.errors import AuthenticationFailure
from app.settlement.signature import compute_signature, verify_signature

SECRET = "sk_test_signature_secret"
BODY = b'{"event":"charge.success","data":{"reference":"ref_1"}}'


class TestComputeSignature:
    def test_hex_hmac_sha512(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha512).hexdigest()
        assert compute_signature(BODY, SECRET) == expected
        assert len(compute_signature(BODY, SECRET)) == 128


class TestVerifySignature:
    def test_valid_signature_passes(self):
        verify_signature(BODY, compute_signature(BODY, SECRET), SECRET)

    def test_uppercase_hex_accepted(self):
        verify_signature(BODY, compute_signature(BODY, SECRET).upper(), SECRET)

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_missing_signature_rejected(self, signature):
        with pytest.raises(AuthenticationFailure):
            verify_signature(BODY, signature, SECRET)

    def test_wrong_secret_rejected(self):
        with pytest.raises(AuthenticationFailure):
            verify_signature(BODY, compute_signature(BODY, "another_secret_key"), SECRET)

    def test_reserialised_body_rejected(self):
        """The digest is over the bytes received, so whitespace changes break it."""
        signature = compute_signature(BODY, SECRET)
        reformatted = b'{"event": "charge.success", "data": {"reference": "ref_1"}}'
        with pytest.raises(AuthenticationFailure):
            verify_signature(reformatted, signature, SECRET)
