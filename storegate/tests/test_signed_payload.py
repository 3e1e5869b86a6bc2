"""
Tests for signed payload (load / uninstall / remove-user JWT) verification.
"""

import time

import jwt
import pytest

from storegate.auth.signed_payload import SignedPayloadVerifier
from storegate.errors import InvalidSignedPayload
from storegate.platforms import BIGCOMMERCE, SHOPIFY

from .factories import CLIENT_ID, CLIENT_SECRET, TENANT_ID, make_signed_payload


@pytest.fixture
def verifier():
    return SignedPayloadVerifier(CLIENT_ID, CLIENT_SECRET, BIGCOMMERCE)


class TestValidPayloads:

    def test_owner_payload(self, verifier):
        payload = verifier.verify(make_signed_payload())
        assert payload.tenant_id == TENANT_ID
        assert payload.user_id == 42
        assert payload.user_email == "owner@example.com"
        assert payload.owner_id == 42
        assert payload.is_owner is True

    def test_non_owner_user(self, verifier):
        token = make_signed_payload(user={"id": 7, "email": "staff@example.com"})
        payload = verifier.verify(token)
        assert payload.user_id == 7
        assert payload.is_owner is False

    @pytest.mark.parametrize("algorithm", ["HS256", "HS384", "HS512"])
    def test_hmac_algorithms(self, verifier, algorithm):
        assert verifier.verify(make_signed_payload(algorithm=algorithm)).tenant_id == TENANT_ID

    def test_store_hash_claim_takes_priority(self, verifier):
        token = make_signed_payload(store_hash="direct1", sub="stores/fromsub", context="stores/fromctx")
        assert verifier.verify(token).tenant_id == "direct1"

    def test_sub_before_context(self, verifier):
        token = make_signed_payload(sub="stores/fromsub", context="stores/fromctx")
        assert verifier.verify(token).tenant_id == "fromsub"

    def test_context_fallback(self, verifier):
        token = make_signed_payload(sub="user-42", context="stores/fromctx")
        assert verifier.verify(token).tenant_id == "fromctx"

    def test_invalid_store_hash_falls_through_to_sub(self, verifier):
        token = make_signed_payload(store_hash="bad-hash", sub="stores/good1")
        assert verifier.verify(token).tenant_id == "good1"

    def test_clock_skew_within_leeway(self, verifier):
        now = int(time.time())
        token = make_signed_payload(iat=now + 5, nbf=now + 5)
        assert verifier.verify(token)


class TestRejectedPayloads:
    """Every failure surfaces as the single InvalidSignedPayload kind."""

    def test_wrong_secret(self, verifier):
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(secret="not-the-client-secret"))

    def test_expired(self, verifier):
        past = int(time.time()) - 3600
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(iat=past, nbf=past, exp=past + 60))

    def test_not_yet_valid(self, verifier):
        future = int(time.time()) + 600
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(nbf=future))

    def test_wrong_audience(self, verifier):
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(aud="someone-elses-app"))

    def test_wrong_issuer(self, verifier):
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(iss="evil"))

    def test_unsigned_token(self, verifier):
        claims = {"sub": f"stores/{TENANT_ID}", "user": {"id": 1}, "aud": CLIENT_ID, "iss": "bc"}
        token = jwt.encode(claims, None, algorithm="none")
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(token)

    def test_no_tenant_resolvable(self, verifier):
        token = make_signed_payload(sub="user-42", store_hash="bad-hash")
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(token)

    def test_tenant_claim_with_path_traversal(self, verifier):
        token = make_signed_payload(sub="stores/../../admin")
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(token)

    def test_missing_user(self, verifier):
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(make_signed_payload(user=None))

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_garbage(self, verifier, token):
        with pytest.raises(InvalidSignedPayload):
            verifier.verify(token)

    def test_error_carries_no_cause(self, verifier):
        with pytest.raises(InvalidSignedPayload) as exc_info:
            verifier.verify(make_signed_payload(secret="wrong"))
        assert str(exc_info.value) == "Invalid signed_payload"
        assert exc_info.value.__cause__ is None


class TestClaimEnforcement:

    def test_override_disables_audience_check(self):
        verifier = SignedPayloadVerifier(CLIENT_ID, CLIENT_SECRET, BIGCOMMERCE, enforce_claims=False)
        assert verifier.enforces_claims is False
        assert verifier.verify(make_signed_payload(aud="other", iss="other"))

    def test_shopify_defaults_to_no_enforcement(self):
        verifier = SignedPayloadVerifier(CLIENT_ID, CLIENT_SECRET, SHOPIFY)
        assert verifier.enforces_claims is False

    def test_shopify_session_token(self):
        verifier = SignedPayloadVerifier(CLIENT_ID, CLIENT_SECRET, SHOPIFY)
        token = make_signed_payload(
            iss="https://demo42.myshopify.com/admin",
            dest="https://demo42.myshopify.com",
            sub="9001",
            user=None,
            owner=None,
        )
        payload = verifier.verify(token)
        assert payload.tenant_id == "demo42"
        assert payload.user_id == 9001
        assert payload.owner_id is None
        assert payload.is_owner is False
