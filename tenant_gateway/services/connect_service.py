"""Account-linking operations: connect URLs, entity listing and entity selection."""

import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

from tenant_gateway.adapters.connector_client import ConnectorClient, UpstreamError
from tenant_gateway.infra.config import config
from tenant_gateway.infra.connection_store import ConnectionStore
from tenant_gateway.infra.error_handler import Conflict, UpstreamFailure, ValidationFailed
from tenant_gateway.infra.metrics import connection_attempts_total
from tenant_gateway.models.connection import (
    ConnectionAttempt,
    ConnectionState,
    ConnectionTokens,
    Entity,
    InvalidStateTransition,
)
from tenant_gateway.services.entity_resolver import (
    parse_user_profile,
    resolve_entities,
    resolve_pending_tokens,
)
from tenant_gateway.services.platform_connectors import (
    SUPPORTED_PLATFORMS,
    MissingTempToken,
    get_platform_connector,
)

logger = logging.getLogger(__name__)


def _origin(url: str):
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def validate_redirect_url(redirect_url: Optional[str]) -> str:
    """
    Return the OAuth return address, defaulting to the callback route.

    Only URLs on the dashboard or API origin are accepted.
    """
    if not redirect_url:
        return config.CONNECT_CALLBACK_URL

    scheme, netloc = _origin(redirect_url)
    allowed = {_origin(config.APP_URL), _origin(config.PUBLIC_API_URL)}
    if scheme not in ("http", "https") or (scheme, netloc) not in allowed:
        logger.warning("Rejected redirect_url outside allowed origins", extra={"redirect_url": redirect_url})
        raise ValidationFailed("Invalid redirect_url", simple=True)
    return redirect_url


async def get_connect_url(
    connector: ConnectorClient,
    platform: str,
    effective_profile_id: str,
    redirect_url: Optional[str] = None,
) -> str:
    """
    Request the upstream authorize URL for a platform.

    Args:
        connector: Upstream connector client
        platform: Platform identifier, e.g. "facebook"
        effective_profile_id: External profile the account will be linked to
        redirect_url: Where upstream sends the browser afterwards

    Returns:
        The authorize URL to send the browser to
    """
    if platform not in SUPPORTED_PLATFORMS:
        raise ValidationFailed(f"Unsupported platform: {platform}", simple=True)

    target = validate_redirect_url(redirect_url)
    try:
        data = await connector.get_connect_url(platform, effective_profile_id, target)
    except UpstreamError as e:
        raise UpstreamFailure(f"Failed to get connect URL for {platform}", simple=True) from e

    url = data.get("authUrl") or data.get("url")
    if not url or not isinstance(url, str):
        logger.error("Connect URL missing from upstream response", extra={"platform": platform})
        raise UpstreamFailure(f"Failed to get connect URL for {platform}", simple=True)
    return url


async def list_entities(
    connector: ConnectorClient,
    platform: Optional[str],
    tokens: ConnectionTokens,
    profile_id: str,
) -> List[Entity]:
    """List entities from tokens passed directly as query parameters."""
    if not platform:
        raise ValidationFailed("Missing platform parameter", simple=True)
    return await resolve_entities(connector, platform, tokens, profile_id)


async def _resolve_attempt_tokens(
    connector: ConnectorClient,
    store: ConnectionStore,
    attempt: ConnectionAttempt,
) -> None:
    # Inline entities can arrive with only a pendingDataToken; selection still
    # needs the tempToken behind it.
    if not attempt.tokens.pending_data_token:
        return
    attempt.tokens = await resolve_pending_tokens(connector, attempt.platform, attempt.tokens)
    store.save(attempt)


async def list_entities_for_attempt(
    connector: ConnectorClient,
    store: ConnectionStore,
    attempt: ConnectionAttempt,
) -> List[Entity]:
    """
    List entities for a stored attempt.

    Pending data is resolved once and the resulting tokens and entities are
    written back so selection uses the same tokens.
    """
    strategy = get_platform_connector(attempt.platform)
    await _resolve_attempt_tokens(connector, store, attempt)
    if attempt.entities is not None:
        return attempt.entities

    attempt.entities = await resolve_entities(
        connector, strategy.platform, attempt.tokens, attempt.external_profile_id
    )
    store.save(attempt)
    return attempt.entities


async def complete_entity_selection(
    connector: ConnectorClient,
    platform: Optional[str],
    entity_id: Optional[str],
    profile_id: str,
    tokens: ConnectionTokens,
    user_profile: Optional[Union[str, Dict[str, Any]]] = None,
) -> None:
    """
    Finalize the link by selecting one entity upstream.

    Raises:
        ValidationFailed: Missing platform/entity or tempToken
        UnsupportedPlatform: Platform has no entity selection step
        UpstreamFailure: The upstream select call failed
    """
    if not platform or not entity_id:
        raise ValidationFailed("Missing required fields: platform, entityId", simple=True)

    strategy = get_platform_connector(platform)
    if not tokens.temp_token:
        raise MissingTempToken()

    await strategy.select_entity(
        connector,
        tokens,
        profile_id,
        entity_id,
        parse_user_profile(user_profile),
    )
    logger.info("Entity selected", extra={"platform": platform, "profile_id": profile_id})


async def complete_attempt_selection(
    connector: ConnectorClient,
    store: ConnectionStore,
    attempt: ConnectionAttempt,
    entity_id: Optional[str],
) -> None:
    """Run selection for a stored attempt, recording each state change."""
    if not entity_id:
        raise ValidationFailed("Missing required fields: platform, entityId", simple=True)
    get_platform_connector(attempt.platform)
    await _resolve_attempt_tokens(connector, store, attempt)
    if not attempt.tokens.temp_token:
        raise MissingTempToken()
    if attempt.entities is not None and entity_id not in {entity.id for entity in attempt.entities}:
        raise ValidationFailed(f"Unknown entityId: {entity_id}", simple=True)

    try:
        attempt.transition(ConnectionState.CONNECTING)
    except InvalidStateTransition as e:
        raise Conflict("Connection attempt is no longer awaiting selection", simple=True) from e
    store.save(attempt)

    try:
        await complete_entity_selection(
            connector,
            attempt.platform,
            entity_id,
            attempt.external_profile_id,
            attempt.tokens,
            attempt.tokens.user_profile,
        )
    except Exception as e:
        attempt.transition(ConnectionState.ERROR, error=str(e))
        store.save(attempt)
        connection_attempts_total.labels(platform=attempt.platform, state=attempt.state.value).inc()
        raise

    attempt.transition(ConnectionState.SUCCESS)
    store.save(attempt)
    connection_attempts_total.labels(platform=attempt.platform, state=attempt.state.value).inc()
