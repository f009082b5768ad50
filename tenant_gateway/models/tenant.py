"""Tenant records and the per-request authorization context."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


@dataclass
class Identity:
    """Authenticated browser user, as reported by session verification."""
    id: str
    email: Optional[str] = None


@dataclass
class Tenant:
    """A tenant (profile) record from the tenant store."""
    id: str
    email: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    current_period_end: Optional[datetime] = None
    primary_external_profile_id: Optional[str] = None  # default scheduling profile upstream
    accessible_external_profile_ids: List[str] = field(default_factory=list)
    api_key_hash: Optional[str] = None
    api_key_created_at: Optional[datetime] = None
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_api_key(self) -> bool:
        return self.api_key_hash is not None

    def can_act_as(self, external_profile_id: str) -> bool:
        """Whether this tenant may act as the given upstream profile."""
        return (
            external_profile_id == self.primary_external_profile_id
            or external_profile_id in self.accessible_external_profile_ids
        )


@dataclass
class AuthorizedContext:
    """Result of a successful authorization; built per request, never stored."""
    tenant: Tenant
    effective_external_profile_id: str
    auth_method: str  # "session" | "api_key"
