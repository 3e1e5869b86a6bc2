"""
Tenant ORM models.

TenantSession holds one row per installed tenant, keyed by
``tenant_{tenant_id}``. TenantUser tracks platform control-panel users per
tenant with a composite (tenant_id, platform_user_id) key.
"""

from typing import Optional

from sqlalchemy import BigInteger, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, TimestampMixin


class SessionState:
    INSTALLED = "installed"
    LOADED = "loaded"


def session_key(tenant_id: str) -> str:
    return f"tenant_{tenant_id}"


class TenantSession(Base, TimestampMixin):
    __tablename__ = "tenant_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str] = mapped_column(Text, nullable=False, default="")
    installing_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    installing_user_email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    store_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_uuid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=SessionState.INSTALLED)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        # never includes access_token
        return f"<TenantSession tenant_id={self.tenant_id} state={self.state}>"


class TenantUser(Base, TimestampMixin):
    __tablename__ = "tenant_users"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    platform_user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<TenantUser tenant_id={self.tenant_id} user={self.platform_user_id} owner={self.is_owner}>"
