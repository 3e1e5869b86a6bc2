"""
Exception hierarchy for the trust boundary.

Routes translate these into generic HTTP responses. The ``reason`` carried by
verification errors is for logs only and must never be echoed to the caller.
"""

from typing import Optional


class StoregateError(Exception):
    """Base exception for storegate errors"""
    pass


# =============================================================================
# Validation (400-class)
# =============================================================================

class TenantValidationError(StoregateError):
    """Malformed tenant identifier or context string."""
    pass


class InvalidContext(TenantValidationError):
    """A platform context string did not match the expected pattern."""

    def __init__(self, context: Optional[str]):
        self.context = context
        super().__init__("Invalid platform context")


# =============================================================================
# Cryptographic verification (401-class)
# =============================================================================

class CryptoVerificationError(StoregateError):
    """Signature, token or timestamp verification failed."""

    reason = "verification_failed"


class InvalidSignedPayload(CryptoVerificationError):
    """Collapses every signed-payload failure into one kind."""

    reason = "invalid_signed_payload"

    def __init__(self, message: str = "Invalid signed_payload"):
        super().__init__(message)


class WebhookVerificationError(CryptoVerificationError):
    reason = "webhook_verification_failed"

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class MissingSignatureHeaders(WebhookVerificationError):
    reason = "missing_headers"


class InvalidTimestamp(WebhookVerificationError):
    reason = "invalid_timestamp"


class TimestampOutOfTolerance(WebhookVerificationError):
    reason = "timestamp_out_of_tolerance"


class SignatureMismatch(WebhookVerificationError):
    reason = "signature_mismatch"


# =============================================================================
# Upstream platform API
# =============================================================================

class UpstreamApiError(StoregateError):
    """A call to the platform API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class OAuthExchangeError(UpstreamApiError):
    """Authorization code could not be exchanged for an access token."""
    pass


# =============================================================================
# Sessions
# =============================================================================

class SessionNotFoundError(StoregateError):
    """No tenant session could be resolved; treated as 'not authenticated'."""
    pass
