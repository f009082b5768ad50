"""Resolve an authorized tenant context from a session or an API key."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from tenant_gateway.infra.config import config
from tenant_gateway.infra.error_handler import (
    AccessDenied,
    ApiError,
    NotFound,
    Unauthenticated,
)
from tenant_gateway.infra.metrics import auth_failures_total
from tenant_gateway.models.tenant import (
    AuthorizedContext,
    Identity,
    SubscriptionStatus,
    Tenant,
)
from tenant_gateway.services.api_key_service import hash_api_key, is_valid_api_key_format
from tenant_gateway.services.tenant_store import TenantStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class AuthFailureKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INVALID_FORMAT = "invalid_format"
    INVALID_CREDENTIAL = "invalid_credential"
    PROFILE_NOT_FOUND = "profile_not_found"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    ACCESS_DENIED = "access_denied"
    PROFILE_NOT_CONFIGURED = "profile_not_configured"
    FORBIDDEN = "forbidden"


_ERROR_CLASSES = {
    AuthFailureKind.UNAUTHENTICATED: Unauthenticated,
    AuthFailureKind.INVALID_FORMAT: Unauthenticated,
    AuthFailureKind.INVALID_CREDENTIAL: Unauthenticated,
    AuthFailureKind.PROFILE_NOT_FOUND: NotFound,
    AuthFailureKind.SUBSCRIPTION_INACTIVE: AccessDenied,
    AuthFailureKind.SUBSCRIPTION_EXPIRED: AccessDenied,
    AuthFailureKind.ACCESS_DENIED: AccessDenied,
    AuthFailureKind.PROFILE_NOT_CONFIGURED: AccessDenied,
    AuthFailureKind.FORBIDDEN: AccessDenied,
}


@dataclass
class AuthFailure:
    """Typed resolver failure; the caller decides how to surface it."""
    kind: AuthFailureKind
    message: str

    @property
    def status_code(self) -> int:
        return _ERROR_CLASSES[self.kind].status_code

    def to_error(self, simple: bool = False) -> ApiError:
        return _ERROR_CLASSES[self.kind](self.message, simple=simple)


def _fail(method: str, kind: AuthFailureKind, message: str) -> AuthFailure:
    auth_failures_total.labels(method=method, code=kind.value).inc()
    return AuthFailure(kind=kind, message=message)


def is_admin_email(email: Optional[str]) -> bool:
    """Whether an email is on the configured admin allow-list (case-insensitive)."""
    return bool(email) and email.lower() in config.ADMIN_EMAILS


def is_admin(tenant: Tenant) -> bool:
    return tenant.is_admin or is_admin_email(tenant.email)


def resolve_effective_profile_id(
    tenant: Tenant,
    profile_override: Optional[str],
    strict: bool = True,
    method: str = "session",
) -> Union[str, AuthFailure]:
    """
    Pick the external profile a request acts as.

    An override is honoured only when it is the tenant's primary profile or in
    its access list. An unauthorized override is rejected when `strict`;
    otherwise it is ignored in favour of the primary profile with a warning.

    Returns:
        The effective external profile id, or an AuthFailure
    """
    if profile_override:
        if tenant.can_act_as(profile_override):
            return profile_override

        log_extra = {
            "tenant_id": tenant.id,
            "requested_profile_id": profile_override,
            "auth_method": method,
        }
        if strict:
            logger.warning("Rejected unauthorized profile override", extra=log_extra)
            return _fail(method, AuthFailureKind.ACCESS_DENIED, "Access denied to requested profile")
        logger.warning(
            "Unauthorized profile override; falling back to primary profile",
            extra=log_extra,
        )

    if not tenant.primary_external_profile_id:
        return _fail(method, AuthFailureKind.PROFILE_NOT_CONFIGURED, "External profile not configured")
    return tenant.primary_external_profile_id


async def resolve_session_tenant(
    identity: Optional[Identity],
    store: TenantStore,
    profile_override: Optional[str] = None,
    strict_override: Optional[bool] = None,
) -> Union[AuthorizedContext, AuthFailure]:
    """
    Resolve the browser-session caller into an AuthorizedContext.

    Args:
        identity: Verified session identity, or None
        store: Tenant store
        profile_override: Value of the X-Profile-Id header
        strict_override: Reject unauthorized overrides instead of falling
            back; defaults to STRICT_SESSION_PROFILE_OVERRIDE
    """
    if identity is None:
        return _fail("session", AuthFailureKind.UNAUTHENTICATED, "Unauthorized")

    tenant = await store.get_by_identity(identity.id)
    if tenant is None:
        return _fail("session", AuthFailureKind.PROFILE_NOT_FOUND, "Profile not found")

    if tenant.subscription_status != SubscriptionStatus.ACTIVE:
        return _fail("session", AuthFailureKind.SUBSCRIPTION_INACTIVE, "Subscription inactive")

    if strict_override is None:
        strict_override = config.STRICT_SESSION_PROFILE_OVERRIDE

    effective = resolve_effective_profile_id(
        tenant, profile_override, strict=strict_override, method="session"
    )
    if isinstance(effective, AuthFailure):
        return effective

    return AuthorizedContext(
        tenant=tenant,
        effective_external_profile_id=effective,
        auth_method="session",
    )


def _is_expired(period_end: Optional[datetime], now: datetime) -> bool:
    if period_end is None:
        return False
    if period_end.tzinfo is None:
        period_end = period_end.replace(tzinfo=timezone.utc)
    return period_end < now


def extract_bearer_key(authorization_header: Optional[str]) -> Optional[str]:
    if not authorization_header or not authorization_header.startswith(BEARER_PREFIX):
        return None
    return authorization_header[len(BEARER_PREFIX):].strip()


async def resolve_api_key_tenant(
    authorization_header: Optional[str],
    store: TenantStore,
    profile_override: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Union[AuthorizedContext, AuthFailure]:
    """
    Resolve a bearer API key into an AuthorizedContext.

    Malformed keys are rejected before the store is consulted. Unauthorized
    profile overrides are always rejected on this path.
    """
    if not authorization_header:
        return _fail("api_key", AuthFailureKind.INVALID_FORMAT, "Missing Authorization header")

    api_key = extract_bearer_key(authorization_header)
    if not api_key or not is_valid_api_key_format(api_key):
        return _fail("api_key", AuthFailureKind.INVALID_FORMAT, "Invalid API key format")

    tenant = await store.get_by_api_key_hash(hash_api_key(api_key))
    if tenant is None:
        return _fail("api_key", AuthFailureKind.INVALID_CREDENTIAL, "Invalid API key")

    if tenant.subscription_status != SubscriptionStatus.ACTIVE:
        return _fail("api_key", AuthFailureKind.SUBSCRIPTION_INACTIVE, "Subscription inactive")

    now = now or datetime.now(timezone.utc)
    if _is_expired(tenant.current_period_end, now):
        return _fail("api_key", AuthFailureKind.SUBSCRIPTION_EXPIRED, "Subscription expired")

    effective = resolve_effective_profile_id(tenant, profile_override, strict=True, method="api_key")
    if isinstance(effective, AuthFailure):
        return effective

    return AuthorizedContext(
        tenant=tenant,
        effective_external_profile_id=effective,
        auth_method="api_key",
    )


async def resolve_admin(
    identity: Optional[Identity],
    store: TenantStore,
) -> Union[Tenant, AuthFailure]:
    """
    Resolve the session caller and require admin rights.

    Admins are tenants flagged `is_admin` or whose email is on the allow-list.
    """
    if identity is None:
        return _fail("admin", AuthFailureKind.UNAUTHENTICATED, "Authentication required")

    tenant = await store.get_by_identity(identity.id)
    if tenant is None:
        return _fail("admin", AuthFailureKind.PROFILE_NOT_FOUND, "Profile not found")

    if tenant.subscription_status != SubscriptionStatus.ACTIVE:
        return _fail("admin", AuthFailureKind.SUBSCRIPTION_INACTIVE, "Subscription inactive")

    if not (is_admin(tenant) or is_admin_email(identity.email)):
        logger.warning("Admin access denied", extra={"tenant_id": tenant.id})
        return _fail("admin", AuthFailureKind.FORBIDDEN, "Admin access required")

    return tenant
