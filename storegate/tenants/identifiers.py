"""
Tenant identifier validation.

Every tenant-id-shaped value that arrives from outside (query strings,
headers, cookies, JWT claims, webhook bodies) goes through
``normalize_tenant_id`` before it is used as a store or cache key.
"""

import re
from typing import Any, Optional, Pattern

from ..errors import InvalidContext

TENANT_ID_PATTERN = re.compile(r"^[a-z0-9]+$", re.IGNORECASE | re.ASCII)

# "stores/{id}" or "stores/{id}/..."
DEFAULT_CONTEXT_PATTERN = re.compile(r"^stores/([a-z0-9]+)", re.IGNORECASE | re.ASCII)


def normalize_tenant_id(raw: Any) -> Optional[str]:
    """
    Trim and validate a tenant identifier.

    Args:
        raw: Untrusted value

    Returns:
        The trimmed identifier if it is entirely alphanumeric, None otherwise.

    Example:
        >>> normalize_tenant_id("  abc123 ")
        'abc123'
        >>> normalize_tenant_id("abc-123") is None
        True
    """
    if not raw or not isinstance(raw, str):
        return None

    trimmed = raw.strip()
    if TENANT_ID_PATTERN.fullmatch(trimmed):
        return trimmed
    return None


def extract_tenant_id(context: Optional[str], pattern: Pattern[str] = DEFAULT_CONTEXT_PATTERN) -> str:
    """
    Extract the tenant id from a platform context string.

    Args:
        context: Context such as "stores/abc123" or "stores/abc123/orders"
        pattern: Regex whose first group captures the tenant id

    Returns:
        The tenant id

    Raises:
        InvalidContext: If the context does not match
    """
    if not context or not isinstance(context, str):
        raise InvalidContext(context)

    match = pattern.match(context.strip())
    if not match:
        raise InvalidContext(context)

    tenant_id = normalize_tenant_id(match.group(1))
    if not tenant_id:
        raise InvalidContext(context)
    return tenant_id


def try_extract_tenant_id(context: Optional[str], pattern: Pattern[str] = DEFAULT_CONTEXT_PATTERN) -> Optional[str]:
    """Like extract_tenant_id, but returns None instead of raising."""
    try:
        return extract_tenant_id(context, pattern)
    except InvalidContext:
        return None
