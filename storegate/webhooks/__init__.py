"""
Webhooks Package
================

Receives platform webhook deliveries.

Main Components:
----------------
- verification.py: Standard Webhooks HMAC verification (webhook-* / svix-* headers)
- routes.py: POST /webhooks/{topic} receiver; app/uninstalled revokes the tenant
"""

from .routes import webhook_router

__all__ = ["webhook_router"]
