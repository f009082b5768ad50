"""FastAPI dependencies for session, API-key and admin authorization."""

import logging
from typing import Optional, Union

from fastapi import Depends, Request, Response, Security
from fastapi.security import APIKeyHeader

from tenant_gateway.infra.config import config
from tenant_gateway.infra.error_handler import AdminRedirect, RateLimited
from tenant_gateway.infra.metrics import rate_limited_total
from tenant_gateway.infra.rate_limiter import get_rate_limit_headers, get_rate_limiter
from tenant_gateway.infra.session import SessionVerifier, get_session_verifier
from tenant_gateway.models.tenant import AuthorizedContext, Identity, Tenant
from tenant_gateway.services.tenant_context_service import (
    AuthFailure,
    AuthFailureKind,
    resolve_admin,
    resolve_api_key_tenant,
    resolve_session_tenant,
)
from tenant_gateway.services.tenant_store import TenantStore, get_tenant_store

logger = logging.getLogger(__name__)

# Headers (documented in OpenAPI as security schemes)
authorization_header = APIKeyHeader(name="Authorization", auto_error=False)
profile_id_header = APIKeyHeader(name="X-Profile-Id", auto_error=False)


def get_session_identity(
    request: Request,
    verifier: SessionVerifier = Depends(get_session_verifier),
) -> Optional[Identity]:
    return verifier.verify(request)


async def resolve_session_context(
    identity: Optional[Identity] = Depends(get_session_identity),
    profile_id: Optional[str] = Security(profile_id_header),
    store: TenantStore = Depends(get_tenant_store),
) -> Union[AuthorizedContext, AuthFailure]:
    """Session resolution result, without raising; for routes that redirect."""
    return await resolve_session_tenant(identity, store, profile_override=profile_id)


async def require_tenant(
    result: Union[AuthorizedContext, AuthFailure] = Depends(resolve_session_context),
) -> AuthorizedContext:
    """
    Require a browser session with an active subscription.

    Failures render the rich error body.
    """
    if isinstance(result, AuthFailure):
        raise result.to_error()
    return result


async def require_connect_tenant(
    result: Union[AuthorizedContext, AuthFailure] = Depends(resolve_session_context),
) -> AuthorizedContext:
    """Same gate as `require_tenant`, rendering `{"error": message}` bodies."""
    if isinstance(result, AuthFailure):
        raise result.to_error(simple=True)
    return result


async def require_api_tenant(
    response: Response,
    authorization: Optional[str] = Security(authorization_header),
    profile_id: Optional[str] = Security(profile_id_header),
    store: TenantStore = Depends(get_tenant_store),
    limiter=Depends(get_rate_limiter),
) -> AuthorizedContext:
    """
    Require a valid bearer API key, then count the request against the
    tenant's rate limit. Limit headers are attached to every response.
    """
    result = await resolve_api_key_tenant(authorization, store, profile_override=profile_id)
    if isinstance(result, AuthFailure):
        raise result.to_error()

    decision = limiter.check(result.tenant.id)
    headers = get_rate_limit_headers(decision)
    if not decision.allowed:
        rate_limited_total.inc()
        logger.warning(
            "Rate limit exceeded",
            extra={"tenant_id": result.tenant.id, "reset_at": decision.reset_at.isoformat()},
        )
        raise RateLimited(decision.reset_at, headers=headers)

    response.headers.update(headers)
    return result


async def require_admin(
    identity: Optional[Identity] = Depends(get_session_identity),
    store: TenantStore = Depends(get_tenant_store),
) -> Tenant:
    """Admin gate for JSON operations; failures render the rich error body."""
    result = await resolve_admin(identity, store)
    if isinstance(result, AuthFailure):
        raise result.to_error()
    return result


async def require_admin_page(
    identity: Optional[Identity] = Depends(get_session_identity),
    store: TenantStore = Depends(get_tenant_store),
) -> Tenant:
    """
    Admin gate for page routes.

    Unauthenticated callers are sent to the login screen, everyone else who
    fails the check to the default dashboard screen.
    """
    result = await resolve_admin(identity, store)
    if isinstance(result, AuthFailure):
        if result.kind == AuthFailureKind.UNAUTHENTICATED:
            raise AdminRedirect(f"{config.APP_URL}{config.LOGIN_PATH}")
        raise AdminRedirect(f"{config.APP_URL}{config.ADMIN_FALLBACK_PATH}")
    return result
