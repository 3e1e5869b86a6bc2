"""
Platform callback and admin session routes.

Callbacks (called by the platform, or by the merchant's browser on its behalf):
    GET /auth/install      OAuth authorization-code callback
    GET /auth/load         Admin UI opened (signed payload)
    GET /auth/uninstall    App uninstalled (signed payload)
    GET /auth/remove-user  User removed from the store (signed payload)
    GET /auth              Re-auth landing page

Admin (authenticated by the session resolver):
    GET /admin
    GET /admin/api/session-check
    GET /admin/api/security-events

Error bodies are generic. Specific failure causes are logged
and recorded as security events, never returned.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from ..errors import InvalidSignedPayload, OAuthExchangeError, TenantValidationError
from ..models import SecurityEventOut, SecurityEventsResponse, SessionCheckResponse, SignedPayload
from ..security_events import EventType, Severity
from ..tenants.identifiers import normalize_tenant_id
from .resolver import ResolvedSession, require_admin_session

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["authentication"])

admin_router = APIRouter(prefix="/admin/api", tags=["admin"])

admin_ui_router = APIRouter(tags=["admin"])


# =============================================================================
# Helpers
# =============================================================================

def _verify_or_none(request: Request, token: str, callback: str) -> Optional[SignedPayload]:
    services = request.app.state.services
    try:
        return services.signed_payload_verifier.verify(token)
    except InvalidSignedPayload as e:
        services.security_events.record(
            EventType.AUTH_FAILURE,
            Severity.HIGH,
            callback=callback,
            reason=e.reason,
            ip=request.client.host if request.client else None,
        )
        return None


def _render_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    html = f"""<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body style="font-family: sans-serif; display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0;">
  <div style="text-align: center;">
    <h1>{title}</h1>
    <p>{message}</p>
  </div>
</body>
</html>"""
    return HTMLResponse(content=html, status_code=status_code)


# =============================================================================
# Install Callback
# =============================================================================

@auth_router.get("/install")
async def install_callback(
    request: Request,
    code: Optional[str] = Query(None, description="One-time authorization code"),
    scope: Optional[str] = Query(None, description="Granted scopes"),
    context: Optional[str] = Query(None, description="Platform context, e.g. stores/{id}"),
) -> Response:
    """
    OAuth install callback.

    Exchanges the code, stores the tenant session, sets the admin session
    cookie and redirects to the admin UI. Post-install setup runs in the
    background.
    """
    if not code or not scope or not context:
        logger.error(
            "Missing OAuth parameters in install callback",
            extra={"has_code": bool(code), "has_scope": bool(scope), "has_context": bool(context)},
        )
        return PlainTextResponse("Missing required OAuth parameters", status_code=400)

    services = request.app.state.services
    try:
        result = await services.oauth.install(code=code, scope=scope, context=context)
    except TenantValidationError:
        logger.warning("Install callback with invalid context")
        return PlainTextResponse("Invalid context", status_code=400)
    except OAuthExchangeError as e:
        logger.error("OAuth install failed", extra={"status": e.status_code})
        return PlainTextResponse("Installation failed. Please try again.", status_code=500)

    response = RedirectResponse(url="/admin", status_code=302)
    services.cookies.set_cookie(response, result.tenant_id, result.user_id or None, result.email)
    return response


# =============================================================================
# Signed Payload Callbacks
# =============================================================================

@auth_router.get("/load")
async def load_callback(
    request: Request,
    signed_payload_jwt: Optional[str] = Query(None),
    context: Optional[str] = Query(None),
) -> Response:
    """
    Load callback: the merchant opened the app in the control panel.

    Requires an existing installation. Upserts the viewing user (owner flag
    from the payload), sets the session cookie and redirects to the admin UI
    with the tenant id in the query string for cookie-less iframes.
    """
    if not signed_payload_jwt:
        logger.warning("Missing signed_payload_jwt in load callback")
        return PlainTextResponse("Missing signed_payload_jwt parameter", status_code=400)

    payload = _verify_or_none(request, signed_payload_jwt, "load")
    if payload is None:
        return PlainTextResponse("Failed to verify session. Please try again.", status_code=401)

    if context and normalize_tenant_id(context) not in (None, payload.tenant_id):
        # the signed claim wins over the unsigned query value
        logger.warning("Load callback context does not match signed payload", extra={"tenant_id": payload.tenant_id})

    services = request.app.state.services
    session = await services.store.get_session(payload.tenant_id)
    if session is None:
        logger.warning("No session found for tenant on load", extra={"tenant_id": payload.tenant_id})
        return PlainTextResponse(
            "App not installed. Please install the app from the platform app store.",
            status_code=403,
        )

    await services.store.upsert_user(
        payload.tenant_id, payload.user_id, payload.user_email, is_owner=payload.is_owner
    )
    await services.store.mark_loaded(payload.tenant_id)

    logger.info("App loaded", extra={"tenant_id": payload.tenant_id, "user_id": payload.user_id})

    response = RedirectResponse(url=f"/admin?context={payload.tenant_id}", status_code=302)
    services.cookies.set_cookie(response, payload.tenant_id, payload.user_id, payload.user_email)
    return response


@auth_router.get("/uninstall")
async def uninstall_callback(
    request: Request,
    signed_payload_jwt: Optional[str] = Query(None),
) -> Response:
    """
    Uninstall callback: removes storefront scripts (best-effort), then the
    tenant's session and users. Safe to receive more than once.
    """
    if not signed_payload_jwt:
        return PlainTextResponse("Missing signed_payload_jwt", status_code=400)

    payload = _verify_or_none(request, signed_payload_jwt, "uninstall")
    if payload is None:
        return PlainTextResponse("Unauthorized", status_code=401)

    services = request.app.state.services
    await services.revoke_tenant(payload.tenant_id)

    logger.info("App uninstalled", extra={"tenant_id": payload.tenant_id})
    response = PlainTextResponse("OK", status_code=200)
    services.cookies.clear_cookie(response)
    return response


@auth_router.get("/remove-user")
async def remove_user_callback(
    request: Request,
    signed_payload_jwt: Optional[str] = Query(None),
) -> Response:
    """Remove-user callback: deletes the one user row named in the payload."""
    if not signed_payload_jwt:
        return PlainTextResponse("Missing signed_payload_jwt", status_code=400)

    payload = _verify_or_none(request, signed_payload_jwt, "remove-user")
    if payload is None:
        return PlainTextResponse("Unauthorized", status_code=401)

    services = request.app.state.services
    removed = await services.store.delete_user(payload.tenant_id, payload.user_id)

    logger.info(
        "User removed from store",
        extra={"tenant_id": payload.tenant_id, "user_id": payload.user_id, "removed": removed},
    )
    return PlainTextResponse("OK", status_code=200)


# =============================================================================
# Re-auth Landing Page
# =============================================================================

@auth_router.get("")
async def auth_landing(
    error: Optional[str] = Query(None),
    context: Optional[str] = Query(None),
) -> Response:
    """
    Where unauthenticated document navigations end up.

    With a valid tenant id in ``context`` the merchant is sent back to the
    admin UI (the query rung of the resolver picks it up); otherwise they
    are asked to reopen the app from the control panel.
    """
    tenant_id = normalize_tenant_id(context)
    if tenant_id:
        return RedirectResponse(url=f"/admin?context={tenant_id}", status_code=302)

    if error == "no_session":
        return _render_page(
            title="Session Expired",
            message="Please open the app from your store control panel.",
        )
    return RedirectResponse(url="/admin", status_code=302)


# =============================================================================
# Admin API
# =============================================================================

@admin_router.get("/session-check", response_model=SessionCheckResponse)
async def session_check(resolved: ResolvedSession = Depends(require_admin_session)) -> SessionCheckResponse:
    return SessionCheckResponse(valid=True, tenantId=resolved.tenant_id, state=resolved.session.state)


@admin_router.get("/security-events", response_model=SecurityEventsResponse)
async def security_events(
    request: Request,
    hours: int = Query(24, ge=1, le=24 * 7),
    resolved: ResolvedSession = Depends(require_admin_session),
) -> SecurityEventsResponse:
    """Recent security events recorded against the resolved tenant."""
    log = request.app.state.services.security_events
    events = log.recent(resolved.tenant_id, hours=hours)
    return SecurityEventsResponse(
        tenantId=resolved.tenant_id,
        events=[
            SecurityEventOut(
                type=e.type,
                severity=e.severity,
                tenant_id=e.tenant_id,
                details=e.details,
                timestamp=e.timestamp,
            )
            for e in events
        ],
        metrics=log.metrics(resolved.tenant_id, hours=hours),
    )


@admin_ui_router.get("/admin", response_class=HTMLResponse)
async def admin_home(resolved: ResolvedSession = Depends(require_admin_session)) -> HTMLResponse:
    """Admin UI entry point. Unauthenticated navigations are redirected to /auth."""
    return _render_page(title="Store connected", message=f"Store {resolved.tenant_id} is connected.")
