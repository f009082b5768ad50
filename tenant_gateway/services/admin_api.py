"""Admin API services for tenant management."""

import logging
from typing import Any, Dict

from tenant_gateway.infra.error_handler import Conflict, NotFound, ValidationFailed
from tenant_gateway.models.tenant import Tenant
from tenant_gateway.services.tenant_store import TenantStore

logger = logging.getLogger(__name__)


async def get_user(store: TenantStore, user_id: str) -> Tenant:
    tenant = await store.get_by_identity(user_id)
    if tenant is None:
        raise NotFound("User not found")
    return tenant


async def update_user(
    store: TenantStore,
    caller: Tenant,
    user_id: str,
    fields: Dict[str, Any],
) -> Tenant:
    """
    Apply an admin edit to a tenant.

    Args:
        store: Tenant store
        caller: The admin performing the edit
        user_id: Target tenant id
        fields: Validated fields to write

    Returns:
        The updated tenant

    Raises:
        ValidationFailed: If the caller tries to remove their own admin flag
        NotFound: If the target tenant does not exist
        Conflict: If the new email belongs to another tenant
    """
    # Checked before any store access
    if fields.get("is_admin") is False and user_id == caller.id:
        raise ValidationFailed("Cannot remove admin status from yourself")

    existing = await store.get_by_identity(user_id)
    if existing is None:
        raise NotFound("User not found")

    new_email = fields.get("email")
    if new_email and new_email != existing.email:
        other = await store.get_by_email(new_email)
        if other is not None and other.id != user_id:
            raise Conflict("Email already in use by another user")

    updated = await store.update(user_id, fields)
    if updated is None:
        raise NotFound("User not found")

    logger.info(
        "Admin updated user",
        extra={"admin_id": caller.id, "user_id": user_id, "fields": sorted(fields)},
    )
    return updated


async def delete_user(store: TenantStore, caller: Tenant, user_id: str) -> None:
    """Delete a tenant record. Admins cannot delete themselves."""
    if user_id == caller.id:
        raise ValidationFailed("Cannot delete your own account")

    deleted = await store.delete(user_id)
    if not deleted:
        raise NotFound("User not found")

    logger.info("Admin deleted user", extra={"admin_id": caller.id, "user_id": user_id})
