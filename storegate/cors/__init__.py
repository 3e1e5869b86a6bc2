"""
CORS Package

Per-tenant origin allowlisting for storefront calls.
"""

from .routes import storefront_router

__all__ = ["storefront_router"]
