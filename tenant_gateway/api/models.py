"""API request/response models."""

from datetime import datetime
from typing import List, Optional, Dict, Any, Union

from pydantic import BaseModel, ConfigDict, Field

from tenant_gateway.models.connection import Entity
from tenant_gateway.models.tenant import SubscriptionStatus, Tenant


# ============================================================================
# Connect Models
# ============================================================================

class ConnectUrlResponse(BaseModel):
    """Upstream authorize URL for a platform."""
    url: str = Field(..., examples=["https://www.facebook.com/v19.0/dialog/oauth?..."])


class EntityListResponse(BaseModel):
    entities: List[Entity]


class SelectEntityRequest(BaseModel):
    """
    Entity choice that completes an OAuth link.

    Either `connectionId` (handle from the callback redirect) or the raw
    `platform` + `tempToken` pair identifies the attempt.
    """
    model_config = ConfigDict(populate_by_name=True)

    platform: Optional[str] = None
    entity_id: Optional[str] = Field(None, alias="entityId")
    # Ignored: the effective profile comes from the session
    profile_id: Optional[str] = Field(None, alias="profileId")
    temp_token: Optional[str] = Field(None, alias="tempToken")
    user_profile: Optional[Union[str, Dict[str, Any]]] = Field(None, alias="userProfile")
    connection_id: Optional[str] = Field(None, alias="connectionId")


class SuccessResponse(BaseModel):
    success: bool = True


# ============================================================================
# API Key Models
# ============================================================================

class ApiKeyStatusResponse(BaseModel):
    """Whether the tenant holds a key; the key itself is never returned again."""
    model_config = ConfigDict(populate_by_name=True)

    has_api_key: bool = Field(..., alias="hasApiKey")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class ApiKeyCreatedResponse(BaseModel):
    """Newly issued key. Shown once."""
    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(..., examples=["tg_sk_3q2-7wEvXk9F0aZ1cVb_Hn4mLpQrStUv"])
    created_at: datetime = Field(..., alias="createdAt")


# ============================================================================
# Public API (v1) Models
# ============================================================================

class ProfileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantId")
    email: str
    external_profile_id: str = Field(..., alias="externalProfileId")
    subscription_status: SubscriptionStatus = Field(..., alias="subscriptionStatus")
    current_period_end: Optional[datetime] = Field(None, alias="currentPeriodEnd")


class AccountsResponse(BaseModel):
    accounts: List[Dict[str, Any]]


# ============================================================================
# Admin Models
# ============================================================================

# Columns that cannot be cleared through a PATCH
_NON_NULLABLE_FIELDS = {"email", "subscription_status", "is_admin", "accessible_external_profile_ids"}


class AdminUserUpdateRequest(BaseModel):
    """Admin edit of a tenant record. Only the fields sent are written."""
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    subscription_status: Optional[SubscriptionStatus] = None
    current_period_end: Optional[datetime] = None
    primary_external_profile_id: Optional[str] = None
    accessible_external_profile_ids: Optional[List[str]] = None
    is_admin: Optional[bool] = None

    def to_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        return {
            name: value
            for name, value in fields.items()
            if value is not None or name not in _NON_NULLABLE_FIELDS
        }


class AdminUserResponse(BaseModel):
    id: str
    email: str
    subscription_status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    primary_external_profile_id: Optional[str] = None
    accessible_external_profile_ids: List[str] = Field(default_factory=list)
    has_api_key: bool = False
    api_key_created_at: Optional[datetime] = None
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "AdminUserResponse":
        return cls(
            id=tenant.id,
            email=tenant.email,
            subscription_status=tenant.subscription_status,
            current_period_end=tenant.current_period_end,
            primary_external_profile_id=tenant.primary_external_profile_id,
            accessible_external_profile_ids=tenant.accessible_external_profile_ids,
            has_api_key=tenant.has_api_key,
            api_key_created_at=tenant.api_key_created_at,
            is_admin=tenant.is_admin,
            created_at=tenant.created_at,
            updated_at=tenant.updated_at,
        )


class AdminOverviewResponse(BaseModel):
    admin_id: str
    email: str
