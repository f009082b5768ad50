"""Tenant store collaborator: lookups and updates of tenant records."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import text

from tenant_gateway.infra.database import get_db_session
from tenant_gateway.models.tenant import SubscriptionStatus, Tenant

logger = logging.getLogger(__name__)

# Tenant attributes that may be written through `update`
UPDATABLE_FIELDS = frozenset({
    "email",
    "subscription_status",
    "current_period_end",
    "primary_external_profile_id",
    "accessible_external_profile_ids",
    "api_key_hash",
    "api_key_created_at",
    "is_admin",
})


class TenantStore(ABC):
    """Persisted tenant records, consulted but not owned by this service."""

    @abstractmethod
    async def get_by_identity(self, identity_id: str) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def get_by_api_key_hash(self, key_hash: str) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def update(self, tenant_id: str, fields: Dict[str, Any]) -> Optional[Tenant]:
        """Apply `fields` and return the updated tenant, or None if missing."""

    @abstractmethod
    async def set_api_key_hash_if_absent(
        self, tenant_id: str, key_hash: str, created_at: datetime
    ) -> bool:
        """Store a key hash only when the tenant has none; False otherwise."""

    @abstractmethod
    async def delete(self, tenant_id: str) -> bool:
        ...


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown tenant fields: {', '.join(sorted(unknown))}")


def row_to_tenant(row) -> Tenant:
    """Convert a `profiles` row into a Tenant."""
    return Tenant(
        id=str(row.id),
        email=row.email,
        subscription_status=SubscriptionStatus(row.subscription_status),
        current_period_end=row.current_period_end,
        primary_external_profile_id=row.primary_external_profile_id,
        accessible_external_profile_ids=list(row.accessible_external_profile_ids or []),
        api_key_hash=row.api_key_hash,
        api_key_created_at=row.api_key_created_at,
        is_admin=bool(row.is_admin),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


_SELECT_PROFILE = """
    SELECT id, email, subscription_status, current_period_end,
           primary_external_profile_id, accessible_external_profile_ids,
           api_key_hash, api_key_created_at, is_admin, created_at, updated_at
    FROM profiles
"""


class SqlTenantStore(TenantStore):
    """Tenant store backed by the `profiles` table."""

    async def get_by_identity(self, identity_id: str) -> Optional[Tenant]:
        return self._fetch_one("WHERE id = :id", {"id": identity_id})

    async def get_by_api_key_hash(self, key_hash: str) -> Optional[Tenant]:
        return self._fetch_one("WHERE api_key_hash = :key_hash", {"key_hash": key_hash})

    async def get_by_email(self, email: str) -> Optional[Tenant]:
        return self._fetch_one("WHERE lower(email) = lower(:email)", {"email": email})

    async def update(self, tenant_id: str, fields: Dict[str, Any]) -> Optional[Tenant]:
        _check_fields(fields)
        if not fields:
            return await self.get_by_identity(tenant_id)

        params: Dict[str, Any] = dict(fields)
        if isinstance(params.get("subscription_status"), SubscriptionStatus):
            params["subscription_status"] = params["subscription_status"].value
        assignments = ", ".join(f"{name} = :{name}" for name in fields)
        params["id"] = tenant_id

        with get_db_session() as session:
            result = session.execute(
                text(f"""
                    UPDATE profiles
                    SET {assignments}, updated_at = now()
                    WHERE id = :id
                    RETURNING id, email, subscription_status, current_period_end,
                              primary_external_profile_id, accessible_external_profile_ids,
                              api_key_hash, api_key_created_at, is_admin, created_at, updated_at
                """),
                params,
            )
            row = result.fetchone()

        return row_to_tenant(row) if row else None

    async def set_api_key_hash_if_absent(
        self, tenant_id: str, key_hash: str, created_at: datetime
    ) -> bool:
        # The WHERE clause makes check-and-write a single statement; the unique
        # index on api_key_hash backs it up.
        with get_db_session() as session:
            result = session.execute(
                text("""
                    UPDATE profiles
                    SET api_key_hash = :key_hash,
                        api_key_created_at = :created_at,
                        updated_at = now()
                    WHERE id = :id
                      AND api_key_hash IS NULL
                    RETURNING id
                """),
                {"id": tenant_id, "key_hash": key_hash, "created_at": created_at},
            )
            row = result.fetchone()
        return row is not None

    async def delete(self, tenant_id: str) -> bool:
        with get_db_session() as session:
            result = session.execute(
                text("DELETE FROM profiles WHERE id = :id RETURNING id"),
                {"id": tenant_id},
            )
            row = result.fetchone()
        if row:
            logger.info("Deleted tenant profile", extra={"tenant_id": tenant_id})
        return row is not None

    def _fetch_one(self, where: str, params: Dict[str, Any]) -> Optional[Tenant]:
        with get_db_session() as session:
            row = session.execute(text(f"{_SELECT_PROFILE} {where}"), params).fetchone()
        return row_to_tenant(row) if row else None


_tenant_store: Optional[TenantStore] = None


def get_tenant_store() -> TenantStore:
    """Dependency returning the process-wide tenant store."""
    global _tenant_store
    if _tenant_store is None:
        _tenant_store = SqlTenantStore()
    return _tenant_store
