from .tenant import AuthorizedContext, Identity, SubscriptionStatus, Tenant
from .connection import (
    ConnectionAttempt,
    ConnectionState,
    ConnectionTokens,
    Entity,
    InvalidStateTransition,
    PERSONAL_ENTITY_ID,
)

__all__ = [
    "AuthorizedContext",
    "Identity",
    "SubscriptionStatus",
    "Tenant",
    "ConnectionAttempt",
    "ConnectionState",
    "ConnectionTokens",
    "Entity",
    "InvalidStateTransition",
    "PERSONAL_ENTITY_ID",
]
