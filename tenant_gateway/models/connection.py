"""Account-linking models: entities and connection attempts."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

PERSONAL_ENTITY_ID = "personal"


class Entity(BaseModel):
    """A linkable sub-account (page, organization, board, location, profile)."""
    id: str
    name: str
    picture: Optional[str] = None
    address: Optional[str] = None


class ConnectionState(str, Enum):
    PROCESSING = "processing"
    AWAITING_ENTITY_SELECTION = "awaiting_entity_selection"
    CONNECTING = "connecting"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATES = frozenset({ConnectionState.SUCCESS, ConnectionState.ERROR})

ALLOWED_TRANSITIONS = {
    ConnectionState.PROCESSING: frozenset({
        ConnectionState.SUCCESS,
        ConnectionState.ERROR,
        ConnectionState.AWAITING_ENTITY_SELECTION,
    }),
    ConnectionState.AWAITING_ENTITY_SELECTION: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.SUCCESS, ConnectionState.ERROR}),
    ConnectionState.SUCCESS: frozenset(),
    ConnectionState.ERROR: frozenset(),
}


class InvalidStateTransition(Exception):
    def __init__(self, current: ConnectionState, target: ConnectionState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move connection from {current.value} to {target.value}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionTokens(BaseModel):
    """Ephemeral upstream tokens carried between OAuth steps."""
    temp_token: Optional[str] = None
    connect_token: Optional[str] = None
    pending_data_token: Optional[str] = None
    user_profile: Optional[Union[str, Dict[str, Any]]] = None
    organization_ids: List[str] = Field(default_factory=list)


class ConnectionAttempt(BaseModel):
    """
    One in-flight account-linking handshake.

    Built from the upstream callback and kept in the connection store until
    the user picks an entity or the TTL runs out.
    """
    connection_id: str
    tenant_id: str
    external_profile_id: str
    platform: str
    step_type: str
    tokens: ConnectionTokens = Field(default_factory=ConnectionTokens)
    entities: Optional[List[Entity]] = None
    state: ConnectionState = ConnectionState.PROCESSING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: ConnectionState, error: Optional[str] = None) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state, target)
        self.state = target
        if target == ConnectionState.ERROR:
            self.error = error
