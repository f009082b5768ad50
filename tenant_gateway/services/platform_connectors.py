"""Per-platform entity listing and selection against the upstream connector."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from tenant_gateway.adapters.connector_client import ConnectorClient, UpstreamError
from tenant_gateway.infra.error_handler import UpstreamFailure, ValidationFailed
from tenant_gateway.models.connection import ConnectionTokens, Entity, PERSONAL_ENTITY_ID

logger = logging.getLogger(__name__)

# Platforms the upstream can start an OAuth flow for
SUPPORTED_PLATFORMS = (
    "twitter",
    "instagram",
    "facebook",
    "linkedin",
    "tiktok",
    "youtube",
    "threads",
    "reddit",
    "pinterest",
    "bluesky",
    "googlebusiness",
    "telegram",
    "snapchat",
)


class UnsupportedPlatform(ValidationFailed):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Entity selection not supported for platform: {platform}", simple=True)


class MissingTempToken(ValidationFailed):
    def __init__(self):
        super().__init__("Missing tempToken", simple=True)


class PlatformConnector(ABC):
    """
    Entity listing and selection for one platform.

    Subclasses map the platform's response shape onto Entity and build the
    platform's selection payload. Upstream failures surface as 502 with the
    platform named in the message.
    """
    platform: str
    label: str
    list_description: str
    select_description: str
    # Offers a synthetic "Personal Account" entity ahead of the listed ones
    personal_account: bool = False

    async def fetch_entities(
        self,
        connector: ConnectorClient,
        tokens: ConnectionTokens,
        profile_id: str,
    ) -> List[Entity]:
        self._check_listing_tokens(tokens)
        try:
            return await self._list(connector, tokens, profile_id)
        except UpstreamError as e:
            logger.error(
                "Entity listing failed",
                extra={"platform": self.platform, "error": str(e), "status_code": e.status_code},
            )
            raise UpstreamFailure(f"Failed to list {self.label} {self.list_description}", simple=True) from e

    async def select_entity(
        self,
        connector: ConnectorClient,
        tokens: ConnectionTokens,
        profile_id: str,
        entity_id: str,
        user_profile: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not tokens.temp_token:
            raise MissingTempToken()
        payload = self.selection_payload(profile_id, entity_id, tokens.temp_token)
        if user_profile:
            payload["userProfile"] = user_profile
        try:
            await self._select(connector, payload)
        except UpstreamError as e:
            logger.error(
                "Entity selection failed",
                extra={"platform": self.platform, "error": str(e), "status_code": e.status_code},
            )
            raise UpstreamFailure(
                f"Failed to select {self.label} {self.select_description}", simple=True
            ) from e

    def _check_listing_tokens(self, tokens: ConnectionTokens) -> None:
        if not tokens.temp_token:
            raise MissingTempToken()

    def _listed_items(self, data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
        """
        Items under `key` in a listing response, skipping any without an id.

        Raises:
            UpstreamError: The value under `key` is not a list
        """
        items = data.get(key) or []
        if not isinstance(items, list):
            raise UpstreamError(f"list_{key}", "invalid response body")

        usable = [item for item in items if isinstance(item, dict) and item.get("id") not in (None, "")]
        if len(usable) != len(items):
            logger.warning(
                "Skipping malformed upstream entities",
                extra={"platform": self.platform, "skipped": len(items) - len(usable)},
            )
        return usable

    @abstractmethod
    async def _list(
        self, connector: ConnectorClient, tokens: ConnectionTokens, profile_id: str
    ) -> List[Entity]:
        ...

    @abstractmethod
    def selection_payload(self, profile_id: str, entity_id: str, temp_token: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def _select(self, connector: ConnectorClient, payload: Dict[str, Any]) -> None:
        ...


class FacebookConnector(PlatformConnector):
    platform = "facebook"
    label = "Facebook"
    list_description = "pages"
    select_description = "page"

    async def _list(self, connector, tokens, profile_id):
        data = await connector.list_facebook_pages(profile_id, tokens.temp_token)
        return [
            Entity(id=str(page["id"]), name=page.get("name") or "", picture=page.get("picture"))
            for page in self._listed_items(data, "pages")
        ]

    def selection_payload(self, profile_id, entity_id, temp_token):
        return {"profileId": profile_id, "pageId": entity_id, "tempToken": temp_token}

    async def _select(self, connector, payload):
        await connector.select_facebook_page(payload)


class LinkedInConnector(PlatformConnector):
    platform = "linkedin"
    label = "LinkedIn"
    list_description = "organizations"
    select_description = "account"
    personal_account = True

    def _check_listing_tokens(self, tokens: ConnectionTokens) -> None:
        # Without organizations only the personal account can be offered
        pass

    async def _list(self, connector, tokens, profile_id):
        if not tokens.organization_ids or not tokens.temp_token:
            return []
        data = await connector.list_linkedin_organizations(tokens.organization_ids, tokens.temp_token)
        return [
            Entity(id=str(org["id"]), name=org.get("vanityName") or org.get("name") or "", picture=org.get("logoUrl"))
            for org in self._listed_items(data, "organizations")
        ]

    def selection_payload(self, profile_id, entity_id, temp_token):
        if entity_id == PERSONAL_ENTITY_ID:
            return {"profileId": profile_id, "tempToken": temp_token, "accountType": "personal"}
        return {
            "profileId": profile_id,
            "tempToken": temp_token,
            "accountType": "organization",
            "selectedOrganization": {"id": entity_id},
        }

    async def _select(self, connector, payload):
        await connector.select_linkedin_organization(payload)


class PinterestConnector(PlatformConnector):
    platform = "pinterest"
    label = "Pinterest"
    list_description = "boards"
    select_description = "board"

    async def _list(self, connector, tokens, profile_id):
        data = await connector.list_pinterest_boards(profile_id, tokens.temp_token, tokens.connect_token)
        return [
            Entity(id=str(board["id"]), name=board.get("name") or "")
            for board in self._listed_items(data, "boards")
        ]

    def selection_payload(self, profile_id, entity_id, temp_token):
        return {"profileId": profile_id, "boardId": entity_id, "tempToken": temp_token}

    async def _select(self, connector, payload):
        await connector.select_pinterest_board(payload)


class GoogleBusinessConnector(PlatformConnector):
    platform = "googlebusiness"
    label = "Google Business"
    list_description = "locations"
    select_description = "location"

    async def _list(self, connector, tokens, profile_id):
        data = await connector.list_googlebusiness_locations(profile_id, tokens.temp_token)
        return [
            Entity(id=str(location["id"]), name=location.get("name") or "", address=location.get("address"))
            for location in self._listed_items(data, "locations")
        ]

    def selection_payload(self, profile_id, entity_id, temp_token):
        return {"profileId": profile_id, "locationId": entity_id, "tempToken": temp_token}

    async def _select(self, connector, payload):
        await connector.select_googlebusiness_location(payload)


class SnapchatConnector(PlatformConnector):
    platform = "snapchat"
    label = "Snapchat"
    list_description = "profiles"
    select_description = "profile"

    async def _list(self, connector, tokens, profile_id):
        data = await connector.list_snapchat_profiles(profile_id, tokens.temp_token, tokens.connect_token)
        return [
            Entity(id=str(profile["id"]), name=profile.get("name") or "", picture=profile.get("picture"))
            for profile in self._listed_items(data, "profiles")
        ]

    def selection_payload(self, profile_id, entity_id, temp_token):
        return {"profileId": profile_id, "publicProfileId": entity_id, "tempToken": temp_token}

    async def _select(self, connector, payload):
        await connector.select_snapchat_profile(payload)


_REGISTRY: Dict[str, PlatformConnector] = {
    connector.platform: connector
    for connector in (
        FacebookConnector(),
        LinkedInConnector(),
        PinterestConnector(),
        GoogleBusinessConnector(),
        SnapchatConnector(),
    )
}

ENTITY_SELECTION_PLATFORMS = tuple(_REGISTRY)


def get_platform_connector(platform: Optional[str]) -> PlatformConnector:
    """
    Look up the strategy for a platform.

    Raises:
        UnsupportedPlatform: If the platform has no entity selection step
    """
    connector = _REGISTRY.get(platform or "")
    if connector is None:
        raise UnsupportedPlatform(platform or "")
    return connector
