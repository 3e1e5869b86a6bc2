"""
storegate

Trust boundary for a multi-tenant e-commerce platform integration: decides
whether an inbound request really comes from the platform, and from the
tenant it claims to represent.

Packages:
- tenants: tenant id validation and the durable session store
- auth: OAuth install flow, signed-payload verification, admin sessions
- webhooks: Standard Webhooks signature verification and the receiver
- cors: per-tenant storefront origin allowlisting
"""

__version__ = "1.0.0"
