"""Account-linking API router (OAuth connect, callback, entity selection)."""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request, Security
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from tenant_gateway.adapters.connector_client import ConnectorClient, get_connector
from tenant_gateway.api.models import (
    ConnectUrlResponse,
    EntityListResponse,
    SelectEntityRequest,
    SuccessResponse,
)
from tenant_gateway.infra.auth import get_session_identity, profile_id_header, require_connect_tenant
from tenant_gateway.infra.connection_store import ConnectionStore, get_connection_store
from tenant_gateway.infra.error_handler import ApiError, NotFound, ValidationFailed
from tenant_gateway.models.connection import ConnectionTokens
from tenant_gateway.models.tenant import AuthorizedContext, Identity
from tenant_gateway.services.callback_router import classify_callback, requires_session, route_callback
from tenant_gateway.services.connect_service import (
    complete_attempt_selection,
    complete_entity_selection,
    get_connect_url,
    list_entities,
    list_entities_for_attempt,
)
from tenant_gateway.services.tenant_context_service import AuthFailure, resolve_session_tenant
from tenant_gateway.services.tenant_store import TenantStore, get_tenant_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_attempt(store: ConnectionStore, handle: str, ctx: AuthorizedContext):
    attempt = store.get(handle, tenant_id=ctx.tenant.id)
    if attempt is None:
        raise NotFound("Connection not found or expired", simple=True)
    return attempt


# Fixed paths are registered before /connect/{platform}

@router.get(
    "/connect/entities",
    tags=["Connect"],
    response_model=EntityListResponse,
    response_model_exclude_none=True,
)
async def list_connect_entities(
    platform: Optional[str] = Query(None),
    step_type: Optional[str] = Query(None, alias="stepType"),
    temp_token: Optional[str] = Query(None, alias="tempToken"),
    connect_token: Optional[str] = Query(None, alias="connectToken"),
    pending_data_token: Optional[str] = Query(None, alias="pendingDataToken"),
    connection: Optional[str] = Query(None, description="Handle from the callback redirect"),
    ctx: AuthorizedContext = Depends(require_connect_tenant),
    connector: ConnectorClient = Depends(get_connector),
    store: ConnectionStore = Depends(get_connection_store),
):
    """
    List the entities (pages, organizations, boards, locations, profiles) a
    user can link after OAuth.

    Pass either the `connection` handle issued by the callback, or the
    `platform` and tokens from the callback URL.
    """
    try:
        if connection:
            attempt = _load_attempt(store, connection, ctx)
            entities = await list_entities_for_attempt(connector, store, attempt)
        else:
            tokens = ConnectionTokens(
                temp_token=temp_token,
                connect_token=connect_token,
                pending_data_token=pending_data_token,
            )
            entities = await list_entities(connector, platform, tokens, ctx.effective_external_profile_id)
    except ApiError:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error listing entities",
            exc_info=e,
            extra={"platform": platform, "step_type": step_type},
        )
        raise ApiError("Failed to fetch entities", simple=True) from e

    return EntityListResponse(entities=entities)


@router.get("/connect/callback", tags=["Connect"], include_in_schema=False)
async def connect_callback(
    request: Request,
    identity: Optional[Identity] = Depends(get_session_identity),
    profile_id: Optional[str] = Security(profile_id_header),
    tenant_store: TenantStore = Depends(get_tenant_store),
    store: ConnectionStore = Depends(get_connection_store),
):
    """
    Upstream OAuth return address; always answers with a redirect.

    The tenant is looked up only for entity-selection steps, so terminal
    outcomes redirect even when the tenant store is unavailable.
    """
    session: Optional[Union[AuthorizedContext, AuthFailure]] = None
    if requires_session(classify_callback(request.query_params)):
        session = await resolve_session_tenant(identity, tenant_store, profile_override=profile_id)
    location = route_callback(request.query_params, session, store)
    return RedirectResponse(location, status_code=303)


@router.post("/connect/select-entity", tags=["Connect"], response_model=SuccessResponse)
async def select_connect_entity(
    request: Request,
    ctx: AuthorizedContext = Depends(require_connect_tenant),
    connector: ConnectorClient = Depends(get_connector),
    store: ConnectionStore = Depends(get_connection_store),
):
    """
    Complete an OAuth link with the chosen entity.

    **Example Request:**
    ```json
    {
        "connectionId": "q1Zb...e3.5f2c...",
        "entityId": "123456789"
    }
    ```
    """
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationFailed("Invalid JSON body", simple=True)
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON body", simple=True)

    try:
        body = SelectEntityRequest.model_validate(payload)
    except ValidationError:
        raise ValidationFailed("Invalid request body", simple=True)

    try:
        if body.connection_id:
            attempt = _load_attempt(store, body.connection_id, ctx)
            await complete_attempt_selection(connector, store, attempt, body.entity_id)
        else:
            await complete_entity_selection(
                connector,
                body.platform,
                body.entity_id,
                ctx.effective_external_profile_id,
                ConnectionTokens(temp_token=body.temp_token),
                body.user_profile,
            )
    except ApiError:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error completing entity selection",
            exc_info=e,
            extra={"platform": body.platform},
        )
        raise ApiError("Failed to complete entity selection", simple=True) from e

    return SuccessResponse()


@router.get("/connect/{platform}", tags=["Connect"], response_model=ConnectUrlResponse)
async def get_platform_connect_url(
    platform: str,
    redirect_url: Optional[str] = Query(None),
    ctx: AuthorizedContext = Depends(require_connect_tenant),
    connector: ConnectorClient = Depends(get_connector),
):
    """Get the OAuth authorize URL for a platform."""
    url = await get_connect_url(connector, platform, ctx.effective_external_profile_id, redirect_url)
    return ConnectUrlResponse(url=url)
