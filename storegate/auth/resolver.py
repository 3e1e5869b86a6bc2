"""
Admin Session Resolution
========================

Authenticates ordinary admin requests coming from the embedded admin UI.

The tenant id is looked for in this order, first hit wins:
1. the signed session cookie set by a prior install/load callback
2. a ``context`` query parameter (iframes with third-party cookies blocked)
3. a same-origin custom header set by the admin UI's own fetch calls
4. the ``context`` query parameter of the Referer URL

Every candidate is normalized before use. Resolution is read-only.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from ..errors import SessionNotFoundError
from ..models import SessionExpiredResponse
from ..platforms import PlatformProfile
from ..tenants.identifiers import normalize_tenant_id, try_extract_tenant_id
from ..tenants.models import TenantSession
from ..tenants.store import TenantSessionStore
from .cookies import SessionCookieCodec

logger = logging.getLogger(__name__)

TENANT_HEADERS = ("x-store-hash", "x-tenant-context")
API_PATH_PREFIXES = ("/api/", "/admin/api/")
REAUTH_URL = "/auth?error=no_session"


@dataclass(frozen=True)
class ResolvedSession:
    session: TenantSession
    tenant_id: str
    source: str


def is_api_like_request(request: Request) -> bool:
    """
    Classify a request as API-like (JSON 401) or a document navigation (redirect).

    API-like: any non-GET method, a JSON Accept header, an XHR/fetch marker
    header, or an API path prefix.
    """
    accept = request.headers.get("accept", "")
    path = request.url.path
    return (
        request.method.upper() != "GET"
        or "application/json" in accept
        or request.headers.get("x-requested-with", "").lower() == "xmlhttprequest"
        or request.headers.get("x-fetch-request", "").lower() == "true"
        or any(path.startswith(prefix) for prefix in API_PATH_PREFIXES)
    )


class SessionResolver:
    """
    Resolves the tenant session for an admin request.

    Args:
        store: Tenant session store (read-only use)
        cookies: Session cookie codec
        profile: Platform profile, for parsing context-shaped values
    """

    def __init__(self, store: TenantSessionStore, cookies: SessionCookieCodec, profile: PlatformProfile):
        self._store = store
        self._cookies = cookies
        self._profile = profile

    def _normalize_context(self, value: Optional[str]) -> Optional[str]:
        # accepts a bare tenant id or a full context string like stores/{id}
        return normalize_tenant_id(value) or try_extract_tenant_id(value, self._profile.context_pattern)

    def _from_cookie(self, request: Request) -> Optional[str]:
        data = self._cookies.decode(request.cookies.get(self._cookies.cookie_name))
        if not data:
            return None
        return normalize_tenant_id(data.get("tenant_id"))

    def _from_query(self, request: Request) -> Optional[str]:
        return self._normalize_context(request.query_params.get("context"))

    def _from_header(self, request: Request) -> Optional[str]:
        for header in TENANT_HEADERS:
            tenant_id = self._normalize_context(request.headers.get(header))
            if tenant_id:
                return tenant_id
        return None

    def _from_referer(self, request: Request) -> Optional[str]:
        referer = request.headers.get("referer")
        if not referer:
            return None
        try:
            query = parse_qs(urlsplit(referer).query)
        except ValueError:
            return None
        values = query.get("context") or []
        return self._normalize_context(values[0]) if values else None

    def candidate_tenant_id(self, request: Request) -> Optional[Tuple[str, str]]:
        """Return (tenant_id, source) from the first rung that yields a valid id."""
        ladder = (
            ("cookie", self._from_cookie),
            ("query", self._from_query),
            ("header", self._from_header),
            ("referer", self._from_referer),
        )
        for source, rung in ladder:
            tenant_id = rung(request)
            if tenant_id:
                return tenant_id, source
        return None

    async def resolve(self, request: Request) -> ResolvedSession:
        """
        Resolve the session for a request.

        Returns:
            ResolvedSession with the stored session and tenant id

        Raises:
            SessionNotFoundError: No tenant id resolved, or no stored session
        """
        candidate = self.candidate_tenant_id(request)
        if not candidate:
            logger.info("No tenant id resolvable for admin request", extra={"path": request.url.path})
            raise SessionNotFoundError("No tenant id")

        tenant_id, source = candidate
        session = await self._store.get_session(tenant_id)
        if session is None:
            logger.info(
                "No stored session for tenant",
                extra={"tenant_id": tenant_id, "source": source, "path": request.url.path},
            )
            raise SessionNotFoundError("No stored session")

        return ResolvedSession(session=session, tenant_id=tenant_id, source=source)


def unauthenticated_response(request: Request) -> Response:
    """
    Response for a request that could not be authenticated.

    API-like requests get a machine-readable 401 so the embedded client can
    refresh itself; document navigations are redirected to re-auth.
    """
    if is_api_like_request(request):
        return JSONResponse(status_code=401, content=SessionExpiredResponse().model_dump())
    return RedirectResponse(url=REAUTH_URL, status_code=302)


async def require_admin_session(request: Request) -> ResolvedSession:
    """
    FastAPI dependency for admin routes.

    Usage in routes:
        @router.get("/admin/api/thing")
        async def thing(resolved: ResolvedSession = Depends(require_admin_session)):
            ...

    Raises:
        SessionNotFoundError: Rendered by the app's exception handler
    """
    resolver: SessionResolver = request.app.state.services.resolver
    return await resolver.resolve(request)
