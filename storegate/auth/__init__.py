"""
Authentication Package

This package decides whether platform callbacks and admin requests are
authentic, and which tenant they act for.

Modules:
- oauth: authorization-code exchange and post-install setup
- signed_payload: HMAC JWT verification for load/uninstall/remove-user
- cookies: signed admin session cookie with secret rotation
- resolver: admin session resolution (cookie, query, header, referer)
- routes: callback endpoints and the admin session API

The install flow:
1. Platform redirects the merchant to /auth/install with a one-time code
2. The code is exchanged for a tenant access token and stored
3. A session cookie is set and the merchant lands in the admin UI
4. Webhooks and storefront scripts are set up in the background
"""

from .routes import admin_router, admin_ui_router, auth_router

__all__ = [
    "admin_router",
    "admin_ui_router",
    "auth_router",
]
