"""
Storefront endpoints called cross-origin from the merchant's storefront.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request, status
from fastapi.responses import JSONResponse, Response

from ..tenants.identifiers import normalize_tenant_id
from .origins import cors_headers

logger = logging.getLogger(__name__)

storefront_router = APIRouter(prefix="/storefront", tags=["storefront"])


@storefront_router.options("/{tenant_id}/config")
async def storefront_config_preflight(
    request: Request,
    tenant_id: str,
    origin: Optional[str] = Header(None),
) -> Response:
    services = request.app.state.services

    normalized = normalize_tenant_id(tenant_id)
    if not normalized or await services.store.get_session(normalized) is None:
        return Response(status_code=status.HTTP_403_FORBIDDEN)

    allowed = await services.origin_cache.validate(origin, normalized)
    if not allowed:
        return Response(status_code=status.HTTP_403_FORBIDDEN)
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(allowed))


@storefront_router.get("/{tenant_id}/config")
async def storefront_config(
    request: Request,
    tenant_id: str,
    origin: Optional[str] = Header(None),
) -> JSONResponse:
    """
    Public storefront configuration for a tenant.

    CORS headers are only attached when the Origin belongs to the tenant;
    otherwise the browser withholds the response from the calling page.
    Unknown tenants get a 404 before the origin allowlist is consulted.
    """
    services = request.app.state.services

    normalized = normalize_tenant_id(tenant_id)
    if not normalized:
        return JSONResponse(status_code=400, content={"error": "Invalid tenant id"})

    session = await services.store.get_session(normalized)
    if session is None:
        return JSONResponse(status_code=404, content={"error": "Store not found"})

    allowed = await services.origin_cache.validate(origin, normalized)

    return JSONResponse(
        content={
            "tenantId": normalized,
            "platform": services.profile.name,
            "appUrl": services.settings.app_url_str,
        },
        headers=cors_headers(allowed),
    )
