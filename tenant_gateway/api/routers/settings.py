"""API key settings router (session authenticated)."""

from fastapi import APIRouter, Depends

from tenant_gateway.api.models import ApiKeyCreatedResponse, ApiKeyStatusResponse, SuccessResponse
from tenant_gateway.infra.auth import require_tenant
from tenant_gateway.models.tenant import AuthorizedContext
from tenant_gateway.services.api_key_service import (
    generate_api_key_for_tenant,
    revoke_api_key_for_tenant,
)
from tenant_gateway.services.tenant_store import TenantStore, get_tenant_store

router = APIRouter()


@router.get("/settings/api-key", tags=["Settings"], response_model=ApiKeyStatusResponse)
async def get_api_key_status(ctx: AuthorizedContext = Depends(require_tenant)):
    """Report whether an API key exists and when it was issued."""
    return ApiKeyStatusResponse(
        has_api_key=ctx.tenant.has_api_key,
        created_at=ctx.tenant.api_key_created_at,
    )


@router.post("/settings/api-key", tags=["Settings"], response_model=ApiKeyCreatedResponse)
async def create_api_key(
    ctx: AuthorizedContext = Depends(require_tenant),
    store: TenantStore = Depends(get_tenant_store),
):
    """
    Issue an API key.

    The plaintext key is returned in this response only. Returns 409 when a
    key already exists; revoke it first.
    """
    result = await generate_api_key_for_tenant(ctx.tenant, store)
    return ApiKeyCreatedResponse(key=result["key"], created_at=result["created_at"])


@router.delete("/settings/api-key", tags=["Settings"], response_model=SuccessResponse)
async def delete_api_key(
    ctx: AuthorizedContext = Depends(require_tenant),
    store: TenantStore = Depends(get_tenant_store),
):
    """Revoke the API key. Succeeds even when no key exists."""
    await revoke_api_key_for_tenant(ctx.tenant, store)
    return SuccessResponse()
