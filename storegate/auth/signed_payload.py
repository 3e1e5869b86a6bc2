"""
Signed Payload Verification
===========================

Verifies the HMAC-signed JWTs the platform sends to the load, uninstall and
remove-user callbacks. Every failure surfaces to the caller as the single
InvalidSignedPayload kind; the specific cause is only logged, so a remote
caller cannot use the endpoint as a verification oracle.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from jwt.exceptions import InvalidTokenError

from ..errors import InvalidSignedPayload
from ..models import SignedPayload
from ..platforms import PlatformProfile
from ..tenants.identifiers import normalize_tenant_id, try_extract_tenant_id

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ["HS256", "HS384", "HS512"]


class SignedPayloadVerifier:
    """
    Stateless verifier for platform signed payloads.

    Args:
        client_id: App client id (expected audience)
        client_secret: App client secret (HMAC key)
        profile: Platform profile supplying claim names and enforcement rules
        enforce_claims: Overrides the profile's audience/issuer enforcement
        leeway: Clock skew tolerance in seconds for exp/nbf/iat
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        profile: PlatformProfile,
        enforce_claims: Optional[bool] = None,
        leeway: int = 10,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._profile = profile
        self._enforce_claims = profile.enforce_claims if enforce_claims is None else enforce_claims
        self._leeway = leeway

    @property
    def enforces_claims(self) -> bool:
        return self._enforce_claims

    def _decode(self, token: str) -> Dict[str, Any]:
        options = {
            "verify_signature": True,
            "verify_exp": True,
            "verify_aud": self._enforce_claims,
            "verify_iss": self._enforce_claims,
        }
        kwargs: Dict[str, Any] = {}
        if self._enforce_claims:
            kwargs["audience"] = self._client_id
            if self._profile.issuer:
                kwargs["issuer"] = self._profile.issuer

        return jwt.decode(
            token,
            self._client_secret,
            algorithms=ALLOWED_ALGORITHMS,
            options=options,
            leeway=self._leeway,
            **kwargs,
        )

    def resolve_tenant_id(self, claims: Dict[str, Any]) -> Optional[str]:
        """
        Resolve the tenant id from decoded claims.

        Priority: the explicit tenant claim, then each context-shaped claim
        in profile order (sub before context for the default platform).
        """
        if self._profile.tenant_claim:
            direct = normalize_tenant_id(claims.get(self._profile.tenant_claim))
            if direct:
                return direct

        for claim in self._profile.context_claims:
            tenant_id = try_extract_tenant_id(claims.get(claim), self._profile.context_pattern)
            if tenant_id:
                return tenant_id
        return None

    @staticmethod
    def _identity(value: Any) -> Dict[str, Any]:
        # user/owner claims are {id, email} objects on one platform and a bare id on the other
        if isinstance(value, dict):
            return value
        if value is None:
            return {}
        return {"id": value}

    def verify(self, token: str) -> SignedPayload:
        """
        Verify a signed payload JWT.

        Args:
            token: The signed_payload_jwt query value

        Returns:
            SignedPayload with a validated tenant id

        Raises:
            InvalidSignedPayload: On any verification or shape failure
        """
        if not token:
            logger.warning("Signed payload verification failed", extra={"cause": "empty_token"})
            raise InvalidSignedPayload()

        try:
            claims = self._decode(token)
        except InvalidTokenError as e:
            logger.warning(
                "Signed payload verification failed",
                extra={"cause": type(e).__name__},
            )
            raise InvalidSignedPayload() from None

        tenant_id = self.resolve_tenant_id(claims)
        if not tenant_id:
            logger.warning("Signed payload verification failed", extra={"cause": "no_tenant_id"})
            raise InvalidSignedPayload()

        user = self._identity(claims.get(self._profile.user_claim))
        owner = self._identity(claims.get(self._profile.owner_claim)) if self._profile.owner_claim else {}

        try:
            user_id = int(user.get("id"))
            owner_id = int(owner["id"]) if owner.get("id") is not None else None
        except (TypeError, ValueError):
            logger.warning("Signed payload verification failed", extra={"cause": "bad_user_claim"})
            raise InvalidSignedPayload() from None

        issued_at = claims.get("iat")
        return SignedPayload(
            user_id=user_id,
            user_email=str(user.get("email") or ""),
            owner_id=owner_id,
            owner_email=owner.get("email"),
            tenant_id=tenant_id,
            issued_at=int(issued_at) if isinstance(issued_at, (int, float)) else None,
            claims=claims,
        )
