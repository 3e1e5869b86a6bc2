"""
Webhook signature verification (Standard Webhooks, with svix-* header alias).

Security contract:
- Signed content is ``{id}.{timestamp}.`` + the untouched raw body bytes
- All comparisons use hmac.compare_digest() (constant-time)
- Timestamp tolerance: 300s by default, inclusive, to bound replay
- Multiple space-separated signatures are accepted (secret rotation)
- The failure reason is carried on the exception for logging only
"""

import base64
import binascii
import hashlib
import hmac
import re
import time
from typing import Callable, List, Mapping, Optional

from ..errors import (
    InvalidTimestamp,
    MissingSignatureHeaders,
    SignatureMismatch,
    TimestampOutOfTolerance,
)
from ..models import WebhookEnvelope

SECRET_PREFIX = "whsec_"
DEFAULT_TOLERANCE_SECONDS = 300

# Header triples, in lookup order
HEADER_ALIASES = (
    ("webhook-id", "webhook-timestamp", "webhook-signature"),
    ("svix-id", "svix-timestamp", "svix-signature"),
)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")


def decode_webhook_secret(secret: str) -> bytes:
    """
    Decode a webhook signing secret into key bytes.

    Secrets are issued in three encodings depending on the dashboard they
    come from: ``whsec_``-prefixed base64, bare base64, or plain text.

    Args:
        secret: Secret as configured

    Returns:
        HMAC key bytes
    """
    trimmed = secret.strip()

    if trimmed.startswith(SECRET_PREFIX):
        remainder = trimmed[len(SECRET_PREFIX):]
        try:
            return base64.b64decode(remainder + "=" * (-len(remainder) % 4), validate=True)
        except (binascii.Error, ValueError):
            return remainder.encode("utf-8")

    if _BASE64_RE.match(trimmed) and len(trimmed) % 4 == 0:
        try:
            return base64.b64decode(trimmed, validate=True)
        except (binascii.Error, ValueError):
            pass

    return trimmed.encode("utf-8")


def read_envelope(body: bytes, headers: Mapping[str, str]) -> WebhookEnvelope:
    """
    Collect the signature header triple from either alias set.

    Args:
        body: Raw request body
        headers: Request headers (lowercase keys)
    """
    def first(index: int) -> Optional[str]:
        for aliases in HEADER_ALIASES:
            value = headers.get(aliases[index])
            if value:
                return value
        return None

    return WebhookEnvelope(
        id=first(0),
        timestamp=first(1),
        signature_header=first(2),
        raw_body=body,
    )


def has_signature_headers(headers: Mapping[str, str]) -> bool:
    """True if any header of either alias set is present."""
    return any(name in headers for aliases in HEADER_ALIASES for name in aliases)


def compute_signature(secret_bytes: bytes, msg_id: str, timestamp: str, body: bytes) -> str:
    """base64(HMAC-SHA256(secret, "{id}.{timestamp}." + body))"""
    signed_content = f"{msg_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(secret_bytes, signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def parse_signature_candidates(signature_header: str) -> List[str]:
    """
    Split a signature header into candidate payloads.

    "v1,abc v1,def" -> ["abc", "def"]; untagged tokens are taken whole.
    """
    candidates = []
    for token in signature_header.split(" "):
        if not token:
            continue
        _, sep, payload = token.partition(",")
        candidate = payload if sep else token
        if candidate:
            candidates.append(candidate)
    return candidates


class WebhookSignatureVerifier:
    """
    Verifies Standard Webhooks signatures.

    Stateless apart from its configuration; safe for concurrent use.
    """

    def __init__(
        self,
        secret: str,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._secret_bytes = decode_webhook_secret(secret)
        self._tolerance = tolerance_seconds
        self._clock = clock

    def verify(self, body: bytes, headers: Mapping[str, str]) -> WebhookEnvelope:
        """
        Verify a delivery.

        Args:
            body: Raw request body bytes, exactly as received
            headers: Request headers (lowercase keys)

        Returns:
            The verified envelope

        Raises:
            MissingSignatureHeaders: Header triple incomplete
            InvalidTimestamp: Timestamp not an integer
            TimestampOutOfTolerance: Timestamp outside the tolerance window
            SignatureMismatch: No candidate signature matched
        """
        envelope = read_envelope(body, headers)
        if not envelope.id or not envelope.timestamp or not envelope.signature_header:
            raise MissingSignatureHeaders()

        try:
            timestamp = int(envelope.timestamp.strip())
        except ValueError:
            raise InvalidTimestamp() from None

        now = int(self._clock())
        if abs(now - timestamp) > self._tolerance:
            raise TimestampOutOfTolerance()

        expected = compute_signature(
            self._secret_bytes, envelope.id, envelope.timestamp, body
        ).encode("ascii")

        for candidate in parse_signature_candidates(envelope.signature_header):
            provided = candidate.encode("utf-8")
            # length differs only for malformed input; not secret-dependent
            if len(provided) != len(expected):
                continue
            if hmac.compare_digest(provided, expected):
                return envelope

        raise SignatureMismatch()
