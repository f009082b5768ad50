"""Integration tests for the account-linking routes."""

import json
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import FakeUpstream, make_tenant, session_headers
from tenant_gateway.models.connection import (
    ConnectionAttempt,
    ConnectionState,
    ConnectionTokens,
    Entity,
)


@pytest.fixture
def tenant(tenant_store):
    return tenant_store.add(make_tenant(accessible=["prof_team"]))


@pytest.fixture
def headers(tenant):
    return session_headers(tenant.id)


def store_attempt(connection_store, tenant_id="tenant-1", platform="facebook", **kwargs):
    attempt = ConnectionAttempt(
        connection_id=f"conn-{platform}",
        tenant_id=tenant_id,
        external_profile_id="prof_primary",
        platform=platform,
        step_type="select",
        tokens=kwargs.pop("tokens", ConnectionTokens(temp_token="tt")),
        **kwargs,
    )
    attempt.transition(ConnectionState.AWAITING_ENTITY_SELECTION)
    return connection_store.create(attempt)


class TestConnectUrl:
    """GET /connect/{platform}."""

    def test_returns_upstream_url(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/facebook", {"authUrl": "https://facebook.com/dialog/oauth?x=1"})

        response = client.get("/connect/facebook", headers=headers)

        assert response.status_code == 200
        assert response.json() == {"url": "https://facebook.com/dialog/oauth?x=1"}
        params = upstream.requests[0].url.params
        assert params["profileId"] == "prof_primary"
        assert params["headless"] == "true"
        assert params["redirect_url"] == "https://api.example.com/connect/callback"

    def test_profile_override(self, client, upstream, tenant):
        upstream.route("GET", "/v1/connect/twitter", {"url": "https://x.com/oauth"})

        response = client.get(
            "/connect/twitter",
            headers=session_headers(tenant.id, **{"X-Profile-Id": "prof_team"}),
        )

        assert response.json() == {"url": "https://x.com/oauth"}
        assert upstream.requests[0].url.params["profileId"] == "prof_team"

    def test_custom_redirect_on_dashboard_origin(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/facebook", {"authUrl": "https://facebook.com/oauth"})

        response = client.get(
            "/connect/facebook",
            params={"redirect_url": "https://app.example.com/done"},
            headers=headers,
        )

        assert response.status_code == 200
        assert upstream.requests[0].url.params["redirect_url"] == "https://app.example.com/done"

    def test_foreign_redirect_rejected(self, client, upstream, headers):
        response = client.get(
            "/connect/facebook",
            params={"redirect_url": "https://evil.example.net/steal"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid redirect_url"}
        assert upstream.requests == []

    def test_unsupported_platform(self, client, headers):
        response = client.get("/connect/myspace", headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported platform: myspace"}

    def test_upstream_failure(self, client, upstream, headers):
        upstream.fail("GET", "/v1/connect/facebook")

        response = client.get("/connect/facebook", headers=headers)

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to get connect URL for facebook"}

    def test_non_object_upstream_body(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/facebook", ["unexpected"])

        response = client.get("/connect/facebook", headers=headers)

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to get connect URL for facebook"}

    def test_requires_session(self, client):
        response = client.get("/connect/facebook")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}


class TestListEntities:
    """GET /connect/entities."""

    def test_missing_temp_token_makes_no_upstream_call(self, client, upstream, headers):
        response = client.get("/connect/entities", params={"platform": "facebook"}, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing tempToken"}
        assert upstream.requests == []

    def test_missing_platform(self, client, headers):
        response = client.get("/connect/entities", headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing platform parameter"}

    def test_unsupported_platform(self, client, headers):
        response = client.get(
            "/connect/entities", params={"platform": "tiktok", "tempToken": "tt"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Entity selection not supported for platform: tiktok"}

    def test_lists_pages(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/facebook/select-page", {
            "pages": [{"id": "p1", "name": "One", "picture": "https://img/1.png"}],
        })

        response = client.get(
            "/connect/entities",
            params={"platform": "facebook", "stepType": "select_page", "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "entities": [{"id": "p1", "name": "One", "picture": "https://img/1.png"}],
        }

    def test_unset_optional_fields_are_omitted(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/googlebusiness/locations", {
            "locations": [{"id": "l1", "name": "Shop", "address": "1 Main St"}],
        })

        response = client.get(
            "/connect/entities", params={"platform": "googlebusiness", "tempToken": "tt"}, headers=headers
        )

        assert response.json() == {"entities": [{"id": "l1", "name": "Shop", "address": "1 Main St"}]}

    def test_listed_items_without_id_are_skipped(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/facebook/select-page", {
            "pages": [{"name": "no id"}, "junk", {"id": "p2", "name": "Two"}],
        })

        response = client.get(
            "/connect/entities", params={"platform": "facebook", "tempToken": "tt"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json() == {"entities": [{"id": "p2", "name": "Two"}]}

    @pytest.mark.parametrize("body", [{"pages": "oops"}, ["unexpected"]])
    def test_malformed_listing_names_platform(self, client, upstream, headers, body):
        upstream.route("GET", "/v1/connect/facebook/select-page", body)

        response = client.get(
            "/connect/entities", params={"platform": "facebook", "tempToken": "tt"}, headers=headers
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to list Facebook pages"}

    def test_upstream_failure(self, client, upstream, headers):
        upstream.fail("GET", "/v1/connect/googlebusiness/locations")

        response = client.get(
            "/connect/entities",
            params={"platform": "googlebusiness", "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to list Google Business locations"}

    def test_unexpected_error_is_generic(self, client, connector, headers):
        connector.list_facebook_pages = AsyncMock(side_effect=RuntimeError("db password leaked"))

        response = client.get(
            "/connect/entities", params={"platform": "facebook", "tempToken": "tt"}, headers=headers
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch entities"}

    def test_by_connection_handle_resolves_and_caches(self, client, upstream, connection_store, headers):
        handle = store_attempt(
            connection_store,
            platform="linkedin",
            tokens=ConnectionTokens(pending_data_token="pdt"),
        )
        upstream.route("GET", "/v1/connect/pending-data", {
            "tempToken": "resolved-tt",
            "organizations": [{"id": "111"}],
        })
        upstream.route("GET", "/v1/connect/linkedin/organizations", {
            "organizations": [{"id": "111", "vanityName": "acme"}],
        })

        first = client.get("/connect/entities", params={"connection": handle}, headers=headers)
        second = client.get("/connect/entities", params={"connection": handle}, headers=headers)

        assert first.status_code == 200
        assert [entity["id"] for entity in first.json()["entities"]] == ["personal", "111"]
        assert second.json() == first.json()
        assert len(upstream.calls_to("/v1/connect/pending-data")) == 1
        assert connection_store.get(handle).tokens.temp_token == "resolved-tt"

    def test_connection_of_another_tenant(self, client, tenant_store, connection_store, headers):
        tenant_store.add(make_tenant("tenant-2", email="other@example.com"))
        handle = store_attempt(connection_store, tenant_id="tenant-2")

        response = client.get("/connect/entities", params={"connection": handle}, headers=headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Connection not found or expired"}

    def test_forged_handle(self, client, headers):
        response = client.get("/connect/entities", params={"connection": "conn-x.abc"}, headers=headers)

        assert response.status_code == 404


class TestSelectEntity:
    """POST /connect/select-entity."""

    def test_invalid_json(self, client, headers):
        response = client.post(
            "/connect/select-entity",
            content="{not json",
            headers={**headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    def test_missing_fields(self, client, headers):
        response = client.post("/connect/select-entity", json={"platform": "facebook"}, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields: platform, entityId"}

    def test_unsupported_platform(self, client, headers):
        response = client.post(
            "/connect/select-entity",
            json={"platform": "twitter", "entityId": "1", "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Entity selection not supported for platform: twitter"}

    def test_missing_temp_token(self, client, upstream, headers):
        response = client.post(
            "/connect/select-entity",
            json={"platform": "facebook", "entityId": "p1"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing tempToken"}
        assert upstream.requests == []

    def test_selects_page_for_session_profile(self, client, upstream, headers):
        upstream.route("POST", "/v1/connect/facebook/select-page", {"ok": True})

        response = client.post(
            "/connect/select-entity",
            json={
                "platform": "facebook",
                "entityId": "p1",
                "tempToken": "tt",
                "profileId": "prof_someone_else",
                "userProfile": '{"name": "Ada"}',
            },
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        body = FakeUpstream.json_body(upstream.requests[0])
        assert body == {
            "profileId": "prof_primary",
            "pageId": "p1",
            "tempToken": "tt",
            "userProfile": {"name": "Ada"},
        }

    def test_unparsable_user_profile_is_omitted(self, client, upstream, headers):
        upstream.route("POST", "/v1/connect/pinterest/select-board", {})

        client.post(
            "/connect/select-entity",
            json={"platform": "pinterest", "entityId": "b1", "tempToken": "tt", "userProfile": "{oops"},
            headers=headers,
        )

        body = FakeUpstream.json_body(upstream.requests[0])
        assert "userProfile" not in body
        assert body["boardId"] == "b1"

    @pytest.mark.parametrize("entity_id, expected", [
        ("personal", {"profileId": "prof_primary", "tempToken": "tt", "accountType": "personal"}),
        ("111", {
            "profileId": "prof_primary",
            "tempToken": "tt",
            "accountType": "organization",
            "selectedOrganization": {"id": "111"},
        }),
    ])
    def test_linkedin_payloads(self, client, upstream, headers, entity_id, expected):
        upstream.route("POST", "/v1/connect/linkedin/select-organization", {})

        response = client.post(
            "/connect/select-entity",
            json={"platform": "linkedin", "entityId": entity_id, "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 200
        assert FakeUpstream.json_body(upstream.requests[0]) == expected

    @pytest.mark.parametrize("platform, path, key", [
        ("googlebusiness", "/v1/connect/googlebusiness/select-location", "locationId"),
        ("snapchat", "/v1/connect/snapchat/select-profile", "publicProfileId"),
    ])
    def test_platform_payload_keys(self, client, upstream, headers, platform, path, key):
        upstream.route("POST", path, {})

        client.post(
            "/connect/select-entity",
            json={"platform": platform, "entityId": "e1", "tempToken": "tt"},
            headers=headers,
        )

        assert FakeUpstream.json_body(upstream.calls_to(path)[0])[key] == "e1"

    def test_upstream_failure(self, client, upstream, headers):
        upstream.fail("POST", "/v1/connect/facebook/select-page", status=400)

        response = client.post(
            "/connect/select-entity",
            json={"platform": "facebook", "entityId": "p1", "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to select Facebook page"}
        assert len(upstream.requests) == 1

    def test_unexpected_error_is_generic(self, client, connector, headers):
        connector.select_facebook_page = AsyncMock(side_effect=KeyError("secret"))

        response = client.post(
            "/connect/select-entity",
            json={"platform": "facebook", "entityId": "p1", "tempToken": "tt"},
            headers=headers,
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to complete entity selection"}


class TestSelectByConnection:
    """Selection through a stored connection attempt."""

    def test_success_then_conflict(self, client, upstream, connection_store, headers):
        upstream.route("POST", "/v1/connect/facebook/select-page", {})
        handle = store_attempt(connection_store, entities=[Entity(id="p1", name="Page")])

        first = client.post("/connect/select-entity", json={"connectionId": handle, "entityId": "p1"}, headers=headers)
        second = client.post("/connect/select-entity", json={"connectionId": handle, "entityId": "p1"}, headers=headers)

        assert first.status_code == 200
        assert connection_store.get(handle).state == ConnectionState.SUCCESS
        assert second.status_code == 409
        assert second.json() == {"error": "Connection attempt is no longer awaiting selection"}
        assert len(upstream.requests) == 1

    def test_unknown_entity(self, client, upstream, connection_store, headers):
        handle = store_attempt(connection_store, entities=[Entity(id="p1", name="Page")])

        response = client.post(
            "/connect/select-entity", json={"connectionId": handle, "entityId": "p9"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Unknown entityId: p9"}
        assert upstream.requests == []

    def test_upstream_failure_marks_attempt_errored(self, client, upstream, connection_store, headers):
        upstream.fail("POST", "/v1/connect/facebook/select-page")
        handle = store_attempt(connection_store)

        response = client.post(
            "/connect/select-entity", json={"connectionId": handle, "entityId": "p1"}, headers=headers
        )

        assert response.status_code == 502
        attempt = connection_store.get(handle)
        assert attempt.state == ConnectionState.ERROR
        assert attempt.error == "Failed to select Facebook page"

    def test_expired_or_unknown_connection(self, client, headers):
        response = client.post(
            "/connect/select-entity", json={"connectionId": "nope.nope", "entityId": "p1"}, headers=headers
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Connection not found or expired"}


class TestLinkedInInlineWithPendingData:
    """Callback carrying organizations inline plus a pendingDataToken."""

    @pytest.fixture
    def handle(self, client, upstream, headers):
        upstream.route("GET", "/v1/connect/pending-data", {"tempToken": "resolved-tt"})
        upstream.route("POST", "/v1/connect/linkedin/select-organization", {})

        response = client.get(
            "/connect/callback",
            params={
                "step": "select_organization",
                "platform": "linkedin",
                "pendingDataToken": "pdt",
                "organizations": json.dumps([{"id": "111", "name": "Acme"}]),
            },
            headers=headers,
            follow_redirects=False,
        )
        location = response.headers["location"]
        return parse_qs(urlsplit(location).query)["connection"][0]

    def test_list_then_select(self, client, upstream, connection_store, headers, handle):
        listed = client.get("/connect/entities", params={"connection": handle}, headers=headers)
        selected = client.post(
            "/connect/select-entity", json={"connectionId": handle, "entityId": "111"}, headers=headers
        )

        assert [entity["id"] for entity in listed.json()["entities"]] == ["personal", "111"]
        assert upstream.calls_to("/v1/connect/linkedin/organizations") == []
        assert selected.status_code == 200
        assert len(upstream.calls_to("/v1/connect/pending-data")) == 1
        body = FakeUpstream.json_body(upstream.calls_to("/v1/connect/linkedin/select-organization")[0])
        assert body["tempToken"] == "resolved-tt"
        assert body["selectedOrganization"] == {"id": "111"}
        assert connection_store.get(handle).state == ConnectionState.SUCCESS

    def test_select_without_listing(self, client, upstream, headers, handle):
        response = client.post(
            "/connect/select-entity", json={"connectionId": handle, "entityId": "personal"}, headers=headers
        )

        assert response.status_code == 200
        assert upstream.calls_to("/v1/connect/pending-data")[0].url.params["token"] == "pdt"
        body = FakeUpstream.json_body(upstream.calls_to("/v1/connect/linkedin/select-organization")[0])
        assert body == {"profileId": "prof_primary", "tempToken": "resolved-tt", "accountType": "personal"}

    def test_pending_data_failure_leaves_attempt_selectable(self, client, upstream, connection_store, headers, handle):
        upstream.fail("GET", "/v1/connect/pending-data")

        response = client.post(
            "/connect/select-entity", json={"connectionId": handle, "entityId": "111"}, headers=headers
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to fetch pending OAuth data"}
        assert connection_store.get(handle).state == ConnectionState.AWAITING_ENTITY_SELECTION
