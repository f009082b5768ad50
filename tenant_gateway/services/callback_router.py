"""Classify inbound OAuth redirects and decide where the browser goes next."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Union
from urllib.parse import urlencode

from tenant_gateway.infra.config import config
from tenant_gateway.infra.connection_store import ConnectionStore, new_connection_id
from tenant_gateway.infra.metrics import connect_callbacks_total, connection_attempts_total
from tenant_gateway.models.connection import (
    ConnectionAttempt,
    ConnectionState,
    ConnectionTokens,
    Entity,
)
from tenant_gateway.models.tenant import AuthorizedContext
from tenant_gateway.services.entity_resolver import finalize_entities, parse_inline_entities
from tenant_gateway.services.platform_connectors import (
    ENTITY_SELECTION_PLATFORMS,
    get_platform_connector,
)
from tenant_gateway.services.tenant_context_service import AuthFailure, AuthFailureKind

logger = logging.getLogger(__name__)

# Only this platform passes its entities inline on the callback
INLINE_ENTITY_PLATFORM = "linkedin"


class CallbackOutcome(str, Enum):
    ERROR = "error"
    SUCCESS = "success"
    AWAITING_ENTITY_SELECTION = "awaiting_entity_selection"
    UNRECOGNIZED = "unrecognized"


@dataclass
class CallbackClassification:
    outcome: CallbackOutcome
    reason: Optional[str] = None
    connected: Optional[str] = None
    platform: Optional[str] = None
    step_type: Optional[str] = None
    tokens: ConnectionTokens = field(default_factory=ConnectionTokens)
    inline_entities: Optional[List[Entity]] = None


def classify_callback(params: Mapping[str, str]) -> CallbackClassification:
    """
    Classify the upstream redirect's query parameters.

    Precedence: `error`, then `connected`, then `step` with `platform`;
    anything else is unrecognized.
    """
    error = params.get("error")
    if error:
        return CallbackClassification(CallbackOutcome.ERROR, reason=error)

    connected = params.get("connected")
    if connected:
        return CallbackClassification(CallbackOutcome.SUCCESS, connected=connected)

    step = params.get("step")
    platform = params.get("platform")
    if step and platform:
        tokens = ConnectionTokens(
            temp_token=params.get("tempToken") or None,
            connect_token=params.get("connect_token") or None,
            pending_data_token=params.get("pendingDataToken") or None,
            user_profile=params.get("userProfile") or None,
        )
        inline_entities = None
        if platform == INLINE_ENTITY_PLATFORM:
            inline_entities = parse_inline_entities(params.get("organizations"))
        return CallbackClassification(
            CallbackOutcome.AWAITING_ENTITY_SELECTION,
            platform=platform,
            step_type=step,
            tokens=tokens,
            inline_entities=inline_entities,
        )

    return CallbackClassification(CallbackOutcome.UNRECOGNIZED)


def requires_session(classification: CallbackClassification) -> bool:
    """Only a supported entity-selection step needs the signed-in tenant."""
    return (
        classification.outcome == CallbackOutcome.AWAITING_ENTITY_SELECTION
        and classification.platform in ENTITY_SELECTION_PLATFORMS
    )


def app_url(path: str, **query: str) -> str:
    """Absolute dashboard URL with the given query parameters."""
    url = f"{config.APP_URL}{path}"
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def build_attempt(
    classification: CallbackClassification,
    context: AuthorizedContext,
) -> ConnectionAttempt:
    entities = None
    if classification.inline_entities:
        strategy = get_platform_connector(classification.platform)
        entities = finalize_entities(strategy, classification.inline_entities)

    attempt = ConnectionAttempt(
        connection_id=new_connection_id(),
        tenant_id=context.tenant.id,
        external_profile_id=context.effective_external_profile_id,
        platform=classification.platform,
        step_type=classification.step_type,
        tokens=classification.tokens,
        entities=entities,
    )
    attempt.transition(ConnectionState.AWAITING_ENTITY_SELECTION)
    return attempt


def route_callback(
    params: Mapping[str, str],
    session: Optional[Union[AuthorizedContext, AuthFailure]],
    store: ConnectionStore,
) -> str:
    """
    Decide the redirect target for an inbound OAuth callback.

    Terminal outcomes go straight to the accounts screen. Callbacks that need
    an entity choice are stored as a ConnectionAttempt bound to the session's
    tenant, and the browser is sent to the selection screen with its handle.
    `session` is only consulted for those; None counts as signed out.
    """
    classification = classify_callback(params)
    connect_callbacks_total.labels(outcome=classification.outcome.value).inc()

    if classification.outcome == CallbackOutcome.ERROR:
        logger.info("OAuth callback reported an error", extra={"reason": classification.reason})
        return app_url(config.ACCOUNTS_PATH, error=classification.reason)

    if classification.outcome == CallbackOutcome.SUCCESS:
        logger.info("OAuth callback connected", extra={"platform": classification.connected})
        return app_url(config.ACCOUNTS_PATH, connected=classification.connected)

    if classification.outcome == CallbackOutcome.UNRECOGNIZED:
        logger.info("Unrecognized OAuth callback", extra={"params": sorted(params.keys())})
        return app_url(config.ACCOUNTS_PATH)

    if classification.platform not in ENTITY_SELECTION_PLATFORMS:
        logger.warning("Entity selection requested for unsupported platform", extra={"platform": classification.platform})
        return app_url(
            config.ACCOUNTS_PATH,
            error=f"Entity selection not supported for platform: {classification.platform}",
        )

    if session is None:
        return app_url(config.LOGIN_PATH)
    if isinstance(session, AuthFailure):
        if session.kind == AuthFailureKind.UNAUTHENTICATED:
            return app_url(config.LOGIN_PATH)
        return app_url(config.ACCOUNTS_PATH, error=session.message)

    attempt = build_attempt(classification, session)
    handle = store.create(attempt)
    connection_attempts_total.labels(platform=attempt.platform, state=attempt.state.value).inc()
    return app_url(
        config.ENTITY_SELECTION_PATH,
        connection=handle,
        platform=attempt.platform,
    )
