"""Fetch and normalize the linkable entities offered after an OAuth redirect."""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import unquote

from tenant_gateway.adapters.connector_client import ConnectorClient, UpstreamError
from tenant_gateway.infra.error_handler import UpstreamFailure
from tenant_gateway.models.connection import ConnectionTokens, Entity, PERSONAL_ENTITY_ID
from tenant_gateway.services.platform_connectors import PlatformConnector, get_platform_connector

logger = logging.getLogger(__name__)

PERSONAL_ENTITY_NAME = "Personal Account"


def _decode_json_list(raw: str) -> Optional[list]:
    # The redirect layer may or may not have decoded the value already, so
    # try decode-then-parse first and parse-raw second.
    for candidate in (lambda: unquote(raw), lambda: raw):
        try:
            value = json.loads(candidate())
        except ValueError:
            continue
        if isinstance(value, list):
            return value
    return None


def _to_entity(item: Any) -> Optional[Entity]:
    if not isinstance(item, dict) or item.get("id") in (None, ""):
        return None
    return Entity(
        id=str(item["id"]),
        name=item.get("name") or item.get("vanityName") or str(item["id"]),
        picture=item.get("picture") or item.get("logoUrl"),
        address=item.get("address"),
    )


def parse_inline_entities(raw: Optional[str]) -> Optional[List[Entity]]:
    """
    Parse an entity array carried in a callback query parameter.

    Returns:
        The parsed entities, or None when the value is absent, unparsable or
        empty so the caller falls back to fetching them upstream
    """
    if not raw:
        return None
    items = _decode_json_list(raw)
    if items is None:
        logger.info("Inline entities unparsable; falling back to upstream fetch")
        return None
    entities = [entity for entity in (_to_entity(item) for item in items) if entity is not None]
    return entities or None


def dedupe_entities(entities: Iterable[Entity]) -> List[Entity]:
    """Drop repeated ids, keeping the first occurrence and the original order."""
    seen = set()
    unique = []
    for entity in entities:
        if entity.id in seen:
            continue
        seen.add(entity.id)
        unique.append(entity)
    return unique


def finalize_entities(strategy: PlatformConnector, entities: Iterable[Entity]) -> List[Entity]:
    """Deduplicate and, where the platform offers one, put the personal account first."""
    unique = dedupe_entities(entities)
    if strategy.personal_account:
        unique = [entity for entity in unique if entity.id != PERSONAL_ENTITY_ID]
        unique.insert(0, Entity(id=PERSONAL_ENTITY_ID, name=PERSONAL_ENTITY_NAME))
    return unique


def parse_user_profile(raw: Optional[Union[str, Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    """JSON-decode a stringified user profile; unparsable values are dropped."""
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except ValueError:
        logger.info("Discarding unparsable userProfile")
        return None
    return value if isinstance(value, dict) else None


async def resolve_pending_tokens(
    client: ConnectorClient,
    platform: str,
    tokens: ConnectionTokens,
) -> ConnectionTokens:
    """
    Exchange a pendingDataToken for the tokens needed to list entities.

    Tokens without a pendingDataToken are returned unchanged.
    """
    if not tokens.pending_data_token:
        return tokens

    try:
        data = await client.get_pending_oauth_data(tokens.pending_data_token, platform=platform)
    except UpstreamError as e:
        logger.error("Pending OAuth data lookup failed", extra={"platform": platform, "error": str(e)})
        raise UpstreamFailure("Failed to fetch pending OAuth data", simple=True) from e

    organizations = data.get("organizations")
    organization_ids = [
        str(org["id"])
        for org in (organizations if isinstance(organizations, list) else [])
        if isinstance(org, dict) and org.get("id")
    ]
    return tokens.model_copy(update={
        "temp_token": data.get("tempToken") or tokens.temp_token,
        "organization_ids": organization_ids or tokens.organization_ids,
        "pending_data_token": None,
    })


async def resolve_entities(
    client: ConnectorClient,
    platform: str,
    tokens: ConnectionTokens,
    profile_id: str,
    inline_entities: Optional[List[Entity]] = None,
) -> List[Entity]:
    """
    Produce the normalized entity list for a platform.

    Inline entities from the callback are used as-is; otherwise pending data
    is resolved first and the platform's listing operation is called.

    Raises:
        UnsupportedPlatform: Platform has no entity selection step
        MissingTempToken: Listing needs a tempToken that was not supplied
        UpstreamFailure: An upstream call failed
    """
    strategy = get_platform_connector(platform)

    if inline_entities:
        return finalize_entities(strategy, inline_entities)

    tokens = await resolve_pending_tokens(client, platform, tokens)
    fetched = await strategy.fetch_entities(client, tokens, profile_id)
    return finalize_entities(strategy, fetched)
