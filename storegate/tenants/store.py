"""
Durable per-tenant session and user records.

All writes are single-statement upserts (INSERT ... ON CONFLICT DO UPDATE), so
concurrent install/load callbacks for different tenants never interfere and
concurrent writers for the same tenant resolve last-write-wins.
"""

import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import TenantValidationError
from .identifiers import normalize_tenant_id
from .models import SessionState, TenantSession, TenantUser, session_key

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


class TenantSessionStore:
    """
    Repository for TenantSession and TenantUser rows.

    Every public method validates the tenant id first. Write methods raise
    TenantValidationError on an invalid id; read and delete methods treat an
    invalid id as "no such tenant".
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _require_tenant_id(tenant_id: str) -> str:
        normalized = normalize_tenant_id(tenant_id)
        if not normalized:
            raise TenantValidationError("Invalid tenant id")
        return normalized

    # =========================================================================
    # Sessions
    # =========================================================================

    async def upsert_session(
        self,
        tenant_id: str,
        access_token: str,
        scope: str,
        user_id: int,
        email: str,
        account_uuid: Optional[str] = None,
    ) -> TenantSession:
        """
        Create or refresh the session row for a tenant.

        A reinstall reuses the same ``tenant_{id}`` key, so there is only
        ever one row per tenant, holding the latest access token.

        Args:
            tenant_id: Tenant identifier (validated here)
            access_token: Platform API token from the OAuth exchange
            scope: Granted scopes
            user_id: Platform id of the installing user
            email: Email of the installing user
            account_uuid: Platform account UUID, when known

        Returns:
            The stored TenantSession

        Raises:
            TenantValidationError: If tenant_id is not a valid identifier
        """
        tenant_id = self._require_tenant_id(tenant_id)
        values = {
            "id": session_key(tenant_id),
            "tenant_id": tenant_id,
            "access_token": access_token,
            "scope": scope or "",
            "installing_user_id": int(user_id or 0),
            "installing_user_email": email or "",
            "account_uuid": account_uuid,
            "state": SessionState.INSTALLED,
            "is_online": False,
        }
        update_values = {
            "access_token": access_token,
            "scope": scope or "",
            "installing_user_id": int(user_id or 0),
            "installing_user_email": email or "",
            "state": SessionState.INSTALLED,
            "updated_at": func.now(),
        }
        if account_uuid:
            update_values["account_uuid"] = account_uuid

        async with self._session_factory() as session:
            insert = _insert_for(session)
            stmt = insert(TenantSession).values(**values)
            stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=update_values)
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(TenantSession).where(TenantSession.id == session_key(tenant_id))
            )
            stored = result.scalar_one()

        logger.info("Tenant session stored", extra={"tenant_id": tenant_id})
        return stored

    async def get_session(self, tenant_id: str) -> Optional[TenantSession]:
        tenant_id = normalize_tenant_id(tenant_id)
        if not tenant_id:
            return None

        async with self._session_factory() as session:
            result = await session.execute(
                select(TenantSession).where(TenantSession.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()

    async def mark_loaded(self, tenant_id: str) -> None:
        tenant_id = self._require_tenant_id(tenant_id)
        async with self._session_factory() as session:
            await session.execute(
                update(TenantSession)
                .where(TenantSession.tenant_id == tenant_id)
                .values(state=SessionState.LOADED, updated_at=func.now())
            )
            await session.commit()

    async def update_store_metadata(
        self,
        tenant_id: str,
        store_domain: Optional[str] = None,
        account_uuid: Optional[str] = None,
    ) -> None:
        """Persist store metadata fetched after install. None values are left untouched."""
        tenant_id = self._require_tenant_id(tenant_id)
        values = {}
        if store_domain:
            values["store_domain"] = store_domain
        if account_uuid:
            values["account_uuid"] = account_uuid
        if not values:
            return

        values["updated_at"] = func.now()
        async with self._session_factory() as session:
            await session.execute(
                update(TenantSession).where(TenantSession.tenant_id == tenant_id).values(**values)
            )
            await session.commit()

    # =========================================================================
    # Users
    # =========================================================================

    async def upsert_user(self, tenant_id: str, user_id: int, email: str, is_owner: bool = False) -> None:
        tenant_id = self._require_tenant_id(tenant_id)
        async with self._session_factory() as session:
            insert = _insert_for(session)
            stmt = insert(TenantUser).values(
                tenant_id=tenant_id,
                platform_user_id=int(user_id),
                email=email or "",
                is_owner=bool(is_owner),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["tenant_id", "platform_user_id"],
                set_={"email": email or "", "is_owner": bool(is_owner), "updated_at": func.now()},
            )
            await session.execute(stmt)
            await session.commit()

    async def list_users(self, tenant_id: str) -> List[TenantUser]:
        tenant_id = normalize_tenant_id(tenant_id)
        if not tenant_id:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(TenantUser)
                .where(TenantUser.tenant_id == tenant_id)
                .order_by(TenantUser.platform_user_id)
            )
            return list(result.scalars().all())

    async def delete_user(self, tenant_id: str, user_id: int) -> int:
        tenant_id = normalize_tenant_id(tenant_id)
        if not tenant_id:
            logger.warning("Skipping tenant user delete for invalid tenant id", extra={"user_id": user_id})
            return 0

        async with self._session_factory() as session:
            result = await session.execute(
                delete(TenantUser).where(
                    TenantUser.tenant_id == tenant_id,
                    TenantUser.platform_user_id == int(user_id),
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def revoke(self, tenant_id: str) -> None:
        """
        Delete the tenant's session and all of its users in one transaction.

        Idempotent: revoking an unknown or already-revoked tenant is a no-op.
        """
        tenant_id = normalize_tenant_id(tenant_id)
        if not tenant_id:
            logger.warning("Skipping revoke for invalid tenant id")
            return

        async with self._session_factory() as session:
            await session.execute(delete(TenantUser).where(TenantUser.tenant_id == tenant_id))
            await session.execute(delete(TenantSession).where(TenantSession.tenant_id == tenant_id))
            await session.commit()

        logger.info("Tenant revoked", extra={"tenant_id": tenant_id})
