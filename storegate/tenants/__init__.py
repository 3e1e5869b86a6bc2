"""
Tenants Package

Tenant identifier validation and durable per-tenant session storage.

Modules:
- identifiers: normalize_tenant_id / extract_tenant_id
- db: async engine, session factory and declarative base
- models: TenantSession and TenantUser tables
- store: TenantSessionStore repository (dialect-native upserts)
"""

from .identifiers import extract_tenant_id, normalize_tenant_id
from .store import TenantSessionStore

__all__ = [
    "extract_tenant_id",
    "normalize_tenant_id",
    "TenantSessionStore",
]
