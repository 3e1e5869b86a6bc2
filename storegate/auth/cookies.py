"""
Admin Session Cookie
====================

Signs and verifies the HTTP-only session cookie set by the install and load
callbacks. The cookie carries only the tenant id and the viewing user; the
access token never leaves the database.

The cookie value is a short HS256 JWT signed over an ordered secrets list
(newest first): the newest secret signs, every listed secret verifies, so
secrets can be rotated without logging merchants out.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidSignatureError, InvalidTokenError
from starlette.responses import Response

logger = logging.getLogger(__name__)

COOKIE_ISSUER = "storegate.admin-session"
COOKIE_ALGORITHM = "HS256"
COOKIE_FIELDS = ("tenant_id", "user_id", "email")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionCookieCodec:
    """
    Encode/decode and set/clear the admin session cookie.

    Args:
        secrets: Signing secrets, newest first
        cookie_name: Cookie name
        max_age_seconds: Cookie lifetime; also the token lifetime
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        secrets: List[str],
        cookie_name: str,
        max_age_seconds: int = 60 * 60 * 24,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secrets:
            raise ValueError("At least one session secret is required")
        self.cookie_name = cookie_name
        self.max_age_seconds = max_age_seconds
        self._secrets = list(secrets)
        self._clock = clock

    def encode(self, tenant_id: str, user_id: Optional[int] = None, email: Optional[str] = None) -> str:
        now = self._clock()
        payload: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "iat": now,
            "exp": now + timedelta(seconds=self.max_age_seconds),
            "iss": COOKIE_ISSUER,
        }
        if user_id is not None:
            payload["user_id"] = user_id
        if email:
            payload["email"] = email
        return jwt.encode(payload, self._secrets[0], algorithm=COOKIE_ALGORITHM)

    def _decode_with(self, value: str, secret: str) -> Dict[str, Any]:
        return jwt.decode(
            value,
            secret,
            algorithms=[COOKIE_ALGORITHM],
            issuer=COOKIE_ISSUER,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iat": True,
                "require": ["exp", "iat", "iss", "tenant_id"],
            },
        )

    def decode(self, value: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Verify a cookie value.

        Returns:
            Cookie data, or None when missing, tampered, signed with a retired
            secret, or expired.
        """
        if not value:
            return None

        for secret in self._secrets:
            try:
                decoded = self._decode_with(value, secret)
            except InvalidSignatureError:
                continue
            except ExpiredSignatureError:
                logger.info("Rejected expired admin session cookie")
                return None
            except InvalidTokenError as e:
                logger.info("Rejected admin session cookie", extra={"cause": type(e).__name__})
                return None
            return {key: decoded[key] for key in COOKIE_FIELDS if key in decoded}

        logger.info("Rejected admin session cookie", extra={"cause": "InvalidSignatureError"})
        return None

    def set_cookie(self, response: Response, tenant_id: str,
                   user_id: Optional[int] = None, email: Optional[str] = None) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=self.encode(tenant_id, user_id, email),
            max_age=self.max_age_seconds,
            path="/",
            secure=True,
            httponly=True,
            samesite="none",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            secure=True,
            httponly=True,
            samesite="none",
        )
