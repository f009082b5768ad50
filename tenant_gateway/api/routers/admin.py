"""Admin router: page gate and user management operations."""

from fastapi import APIRouter, Depends

from tenant_gateway.api.models import (
    AdminOverviewResponse,
    AdminUserResponse,
    AdminUserUpdateRequest,
    SuccessResponse,
)
from tenant_gateway.infra.auth import require_admin, require_admin_page
from tenant_gateway.models.tenant import Tenant
from tenant_gateway.services import admin_api
from tenant_gateway.services.tenant_store import TenantStore, get_tenant_store

router = APIRouter(prefix="/admin")


@router.get("", tags=["Admin"], response_model=AdminOverviewResponse)
async def admin_overview(admin: Tenant = Depends(require_admin_page)):
    """Entry point of the admin console; non-admins are redirected away."""
    return AdminOverviewResponse(admin_id=admin.id, email=admin.email)


@router.get("/users/{user_id}", tags=["Admin"], response_model=AdminUserResponse)
async def get_user(
    user_id: str,
    admin: Tenant = Depends(require_admin),
    store: TenantStore = Depends(get_tenant_store),
):
    tenant = await admin_api.get_user(store, user_id)
    return AdminUserResponse.from_tenant(tenant)


@router.patch("/users/{user_id}", tags=["Admin"], response_model=AdminUserResponse)
async def update_user(
    user_id: str,
    request: AdminUserUpdateRequest,
    admin: Tenant = Depends(require_admin),
    store: TenantStore = Depends(get_tenant_store),
):
    """
    Update a user's subscription, access list, email or admin flag.

    **Example Request:**
    ```json
    {
        "subscription_status": "active",
        "accessible_external_profile_ids": ["prof_123", "prof_456"]
    }
    ```
    """
    tenant = await admin_api.update_user(store, admin, user_id, request.to_fields())
    return AdminUserResponse.from_tenant(tenant)


@router.delete("/users/{user_id}", tags=["Admin"], response_model=SuccessResponse)
async def delete_user(
    user_id: str,
    admin: Tenant = Depends(require_admin),
    store: TenantStore = Depends(get_tenant_store),
):
    await admin_api.delete_user(store, admin, user_id)
    return SuccessResponse()
