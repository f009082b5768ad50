"""Public API router, authenticated with bearer API keys and rate limited."""

import logging

from fastapi import APIRouter, Depends

from tenant_gateway.adapters.connector_client import ConnectorClient, UpstreamError, get_connector
from tenant_gateway.api.models import AccountsResponse, ProfileResponse
from tenant_gateway.infra.auth import require_api_tenant
from tenant_gateway.infra.error_handler import UpstreamFailure
from tenant_gateway.models.tenant import AuthorizedContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


@router.get("/profile", tags=["Public API"], response_model=ProfileResponse)
async def get_profile(ctx: AuthorizedContext = Depends(require_api_tenant)):
    """Describe the tenant and effective profile the API key resolves to."""
    return ProfileResponse(
        tenant_id=ctx.tenant.id,
        email=ctx.tenant.email,
        external_profile_id=ctx.effective_external_profile_id,
        subscription_status=ctx.tenant.subscription_status,
        current_period_end=ctx.tenant.current_period_end,
    )


@router.get("/accounts", tags=["Public API"], response_model=AccountsResponse)
async def list_accounts(
    ctx: AuthorizedContext = Depends(require_api_tenant),
    connector: ConnectorClient = Depends(get_connector),
):
    """List the social accounts linked to the effective profile."""
    try:
        data = await connector.list_accounts(ctx.effective_external_profile_id)
    except UpstreamError as e:
        logger.error(
            "Account listing failed",
            extra={"tenant_id": ctx.tenant.id, "error": str(e)},
        )
        raise UpstreamFailure("Failed to list accounts") from e
    return AccountsResponse(accounts=data.get("accounts") or [])
