"""
Per-tenant CORS origin allowlisting.

Storefront scripts call back into this service from the merchant's storefront
domain. An origin is only reflected in ``Access-Control-Allow-Origin`` when it
belongs to the tenant named in the request.

Allowed origins come from an origin source (derived from the tenant id, or
fetched from the platform API) and are cached per tenant with a TTL. Only one
refresh per tenant runs at a time; while it runs, readers that already have a
cached value are served the stale value instead of waiting.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

from ..platform_api import PlatformApiClient
from ..platforms import PlatformProfile
from ..security_events import EventType, SecurityEventLog, Severity
from ..tenants.identifiers import normalize_tenant_id

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_ENTRIES = 4096

DEV_HOSTS = ("localhost", "127.0.0.1")
DEV_HOST_SUFFIXES = (".ngrok.io", ".ngrok.app", ".ngrok-free.app", ".trycloudflare.com")


@dataclass
class OriginCacheEntry:
    tenant_id: str
    allowed_origins: List[str] = field(default_factory=list)
    cached_at: float = 0.0


# =============================================================================
# Origin Sources
# =============================================================================

class DerivedOriginSource:
    """The platform's deterministic storefront origin for a tenant."""

    def __init__(self, profile: PlatformProfile):
        self._profile = profile

    async def fetch(self, tenant_id: str) -> List[str]:
        origin = self._profile.derived_origin(tenant_id)
        return [origin] if origin else []


class RemoteOriginSource:
    """Storefront domains looked up through the platform API with the tenant's token."""

    def __init__(self, api: PlatformApiClient):
        self._api = api

    async def fetch(self, tenant_id: str) -> List[str]:
        return await self._api.list_domains(tenant_id)


def origin_source_for(profile: PlatformProfile, api: PlatformApiClient):
    if profile.storefront_domain:
        return DerivedOriginSource(profile)
    return RemoteOriginSource(api)


def is_dev_origin(origin: str) -> bool:
    try:
        host = urlsplit(origin).hostname or ""
    except ValueError:
        return False
    return host in DEV_HOSTS or host.endswith(DEV_HOST_SUFFIXES)


def origin_matches(origin: str, allowed: str) -> bool:
    """Exact match, or an https origin on a subdomain of an https allowed origin."""
    if origin == allowed:
        return True
    if origin.startswith("https://") and allowed.startswith("https://"):
        origin_host = origin[len("https://"):]
        allowed_host = allowed[len("https://"):]
        return origin_host.endswith(f".{allowed_host}")
    return False


# =============================================================================
# Allowlist Cache
# =============================================================================

class OriginAllowlistCache:
    """
    TTL cache of allowed origins per tenant.

    Args:
        source: Origin source with an async ``fetch(tenant_id)``
        ttl_seconds: Entry lifetime
        dev_origins_allowed: Accept localhost and tunnel origins
        clock: Monotonic clock, in seconds
        security_events: Optional log that records rejections
        max_entries: Most tenants held at once
    """

    def __init__(
        self,
        source,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        dev_origins_allowed: bool = False,
        clock: Callable[[], float] = time.monotonic,
        security_events: Optional[SecurityEventLog] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self._source = source
        self._ttl = ttl_seconds
        self._dev_origins_allowed = dev_origins_allowed
        self._clock = clock
        self._security_events = security_events
        self._max_entries = max_entries
        self._entries: Dict[str, OriginCacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: Optional[OriginCacheEntry]) -> bool:
        return entry is not None and (self._clock() - entry.cached_at) < self._ttl

    def _is_refreshing(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()

    def _release_lock(self, tenant_id: str) -> None:
        if not self._is_refreshing(tenant_id):
            self._locks.pop(tenant_id, None)

    def invalidate(self, tenant_id: str) -> None:
        self._entries.pop(tenant_id, None)
        self._release_lock(tenant_id)

    def _prune(self) -> None:
        """Make room for one entry: drop expired entries, then the oldest ones."""
        idle = [tid for tid in self._entries if not self._is_refreshing(tid)]
        for tid in idle:
            if not self._is_fresh(self._entries[tid]):
                self.invalidate(tid)

        oldest_first = sorted(
            (tid for tid in idle if tid in self._entries),
            key=lambda tid: self._entries[tid].cached_at,
        )
        for tid in oldest_first:
            if len(self._entries) < self._max_entries:
                break
            self.invalidate(tid)

    async def allowed_origins(self, tenant_id: str) -> List[str]:
        entry = self._entries.get(tenant_id)
        if self._is_fresh(entry):
            return entry.allowed_origins

        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        if lock.locked() and entry is not None:
            return entry.allowed_origins

        try:
            async with lock:
                entry = self._entries.get(tenant_id)
                if self._is_fresh(entry):
                    return entry.allowed_origins

                try:
                    origins = await self._source.fetch(tenant_id)
                except Exception as e:
                    logger.warning(
                        "Failed to refresh allowed origins",
                        extra={"tenant_id": tenant_id, "error": type(e).__name__},
                    )
                    return entry.allowed_origins if entry is not None else []

                if tenant_id not in self._entries and len(self._entries) >= self._max_entries:
                    self._prune()
                self._entries[tenant_id] = OriginCacheEntry(
                    tenant_id=tenant_id,
                    allowed_origins=list(origins),
                    cached_at=self._clock(),
                )
                return self._entries[tenant_id].allowed_origins
        finally:
            if tenant_id not in self._entries and self._locks.get(tenant_id) is lock:
                self._release_lock(tenant_id)

    async def validate(self, origin: Optional[str], tenant_id: Optional[str]) -> Optional[str]:
        """
        Check an Origin header against the tenant's allowlist.

        Returns:
            The origin to reflect, or None when it is not allowed
        """
        if not origin:
            return None

        normalized = normalize_tenant_id(tenant_id)
        if not normalized:
            return None

        if self._dev_origins_allowed and is_dev_origin(origin):
            return origin

        allowed = await self.allowed_origins(normalized)
        for candidate in allowed:
            if origin_matches(origin, candidate):
                return origin

        logger.warning("Rejected CORS origin", extra={"origin": origin, "tenant_id": normalized})
        if self._security_events is not None:
            self._security_events.record(
                EventType.CORS_REJECTED, Severity.MEDIUM, tenant_id=normalized, origin=origin
            )
        return None


def cors_headers(allowed_origin: Optional[str]) -> Dict[str, str]:
    """CORS response headers for an allowed origin; empty when not allowed."""
    if not allowed_origin:
        return {}

    return {
        "Access-Control-Allow-Origin": allowed_origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
        "Vary": "Origin",
    }
