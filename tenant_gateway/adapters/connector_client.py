"""HTTP client for the upstream connector service (OAuth links and entity selection)."""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from tenant_gateway.infra.config import config
from tenant_gateway.infra.metrics import upstream_call_duration, upstream_calls_total

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """An upstream connector call failed (transport error, non-2xx status or unusable body)."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation}: {message}")


class ConnectorClient:
    """
    Thin async wrapper over the upstream connector REST API.

    Calls are one-shot: failures raise UpstreamError and are never retried,
    since every OAuth step is a user-driven action the user can restart.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        api_key = api_key or config.UPSTREAM_API_KEY
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=base_url or config.UPSTREAM_API_URL,
            headers=headers,
            timeout=timeout or config.UPSTREAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        platform: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        start_time = time.time()
        status = "error"
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
            status = str(response.status_code)
            response.raise_for_status()
            if not response.content:
                return {}
            data = response.json()
            if not isinstance(data, dict):
                logger.error(
                    "Upstream returned a non-object body",
                    extra={"platform": platform, "operation": operation, "body_type": type(data).__name__},
                )
                raise UpstreamError(operation, "invalid response body", response.status_code)
            return data
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Upstream call rejected",
                extra={
                    "platform": platform,
                    "operation": operation,
                    "status_code": e.response.status_code,
                },
            )
            raise UpstreamError(operation, "upstream returned an error", e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(
                "Upstream call failed",
                extra={"platform": platform, "operation": operation, "error": str(e)},
            )
            raise UpstreamError(operation, str(e)) from e
        except ValueError as e:
            # Undecodable JSON body
            raise UpstreamError(operation, "invalid response body") from e
        finally:
            upstream_calls_total.labels(platform=platform, operation=operation, status=status).inc()
            upstream_call_duration.labels(platform=platform, operation=operation).observe(
                time.time() - start_time
            )

    # Connect flow

    async def get_connect_url(self, platform: str, profile_id: str, redirect_url: str) -> Dict[str, Any]:
        """Ask upstream for the platform authorize URL. `headless` makes it return the URL."""
        return await self._request(
            "GET",
            f"/v1/connect/{platform}",
            platform,
            "get_connect_url",
            params={"profileId": profile_id, "redirect_url": redirect_url, "headless": "true"},
        )

    async def get_pending_oauth_data(self, token: str, platform: str = "unknown") -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/pending-data",
            platform,
            "get_pending_oauth_data",
            params={"token": token},
        )

    async def list_accounts(self, profile_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET", "/v1/accounts", "all", "list_accounts", params={"profileId": profile_id}
        )

    # Facebook

    async def list_facebook_pages(self, profile_id: str, temp_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/facebook/select-page",
            "facebook",
            "list_pages",
            params={"profileId": profile_id, "tempToken": temp_token},
        )

    async def select_facebook_page(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/v1/connect/facebook/select-page", "facebook", "select_page", json=body
        )

    # LinkedIn

    async def list_linkedin_organizations(self, org_ids: List[str], temp_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/linkedin/organizations",
            "linkedin",
            "list_organizations",
            params={"orgIds": ",".join(org_ids), "tempToken": temp_token},
        )

    async def select_linkedin_organization(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/v1/connect/linkedin/select-organization",
            "linkedin",
            "select_organization",
            json=body,
        )

    # Pinterest

    async def list_pinterest_boards(
        self, profile_id: str, temp_token: str, connect_token: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/pinterest/select-board",
            "pinterest",
            "list_boards",
            params={"profileId": profile_id, "tempToken": temp_token},
            headers=_connect_token_header(connect_token),
        )

    async def select_pinterest_board(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/v1/connect/pinterest/select-board", "pinterest", "select_board", json=body
        )

    # Google Business

    async def list_googlebusiness_locations(self, profile_id: str, temp_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/googlebusiness/locations",
            "googlebusiness",
            "list_locations",
            params={"profileId": profile_id, "tempToken": temp_token},
        )

    async def select_googlebusiness_location(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/v1/connect/googlebusiness/select-location",
            "googlebusiness",
            "select_location",
            json=body,
        )

    # Snapchat

    async def list_snapchat_profiles(
        self, profile_id: str, temp_token: str, connect_token: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/v1/connect/snapchat/select-profile",
            "snapchat",
            "list_profiles",
            params={"profileId": profile_id, "tempToken": temp_token},
            headers=_connect_token_header(connect_token),
        )

    async def select_snapchat_profile(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/v1/connect/snapchat/select-profile", "snapchat", "select_profile", json=body
        )


def _connect_token_header(connect_token: Optional[str]) -> Optional[Dict[str, str]]:
    return {"X-Connect-Token": connect_token} if connect_token else None


_connector: Optional[ConnectorClient] = None


def get_connector() -> ConnectorClient:
    """Dependency returning the shared connector client."""
    global _connector
    if _connector is None:
        _connector = ConnectorClient()
    return _connector


async def close_connector() -> None:
    global _connector
    if _connector is not None:
        await _connector.aclose()
        _connector = None
