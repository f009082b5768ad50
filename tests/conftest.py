"""Pytest configuration and fixtures."""

import dataclasses
import json
import os
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import jwt
import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment before anything under tenant_gateway reads config
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ["APP_URL"] = "https://app.example.com"
os.environ["PUBLIC_API_URL"] = "https://api.example.com"
os.environ["CONNECT_CALLBACK_URL"] = "https://api.example.com/connect/callback"
os.environ["SESSION_JWT_SECRET"] = "test-session-secret"
os.environ["SESSION_JWT_AUDIENCE"] = "authenticated"
os.environ["SESSION_COOKIE_NAME"] = "session"
os.environ["ADMIN_EMAILS"] = "root@example.com"
os.environ["CONNECTION_SIGNING_SECRET"] = "test-connection-secret"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["CONNECTION_STORE_BACKEND"] = "memory"
os.environ.pop("STRICT_SESSION_PROFILE_OVERRIDE", None)

from tenant_gateway.adapters.connector_client import ConnectorClient, get_connector  # noqa: E402
from tenant_gateway.infra.connection_store import (  # noqa: E402
    HandleSigner,
    MemoryConnectionStore,
    get_connection_store,
)
from tenant_gateway.infra.rate_limiter import FixedWindowRateLimiter, get_rate_limiter  # noqa: E402
from tenant_gateway.infra.session import JwtSessionVerifier, get_session_verifier  # noqa: E402
from tenant_gateway.models.tenant import SubscriptionStatus, Tenant  # noqa: E402
from tenant_gateway.services.tenant_store import TenantStore, get_tenant_store  # noqa: E402

SESSION_SECRET = "test-session-secret"
UPSTREAM_BASE_URL = "https://upstream.test"


class FakeTenantStore(TenantStore):
    """In-memory tenant store that records every call."""

    def __init__(self, *tenants: Tenant):
        self.tenants: Dict[str, Tenant] = {tenant.id: tenant for tenant in tenants}
        self.calls: List[Tuple[str, Any]] = []

    def add(self, tenant: Tenant) -> Tenant:
        self.tenants[tenant.id] = tenant
        return tenant

    async def get_by_identity(self, identity_id):
        self.calls.append(("get_by_identity", identity_id))
        return self.tenants.get(identity_id)

    async def get_by_api_key_hash(self, key_hash):
        self.calls.append(("get_by_api_key_hash", key_hash))
        for tenant in self.tenants.values():
            if tenant.api_key_hash == key_hash:
                return tenant
        return None

    async def get_by_email(self, email):
        self.calls.append(("get_by_email", email))
        for tenant in self.tenants.values():
            if tenant.email.lower() == email.lower():
                return tenant
        return None

    async def update(self, tenant_id, fields):
        self.calls.append(("update", (tenant_id, dict(fields))))
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            return None
        updated = dataclasses.replace(tenant, **fields)
        self.tenants[tenant_id] = updated
        return updated

    async def set_api_key_hash_if_absent(self, tenant_id, key_hash, created_at):
        self.calls.append(("set_api_key_hash_if_absent", tenant_id))
        tenant = self.tenants.get(tenant_id)
        if tenant is None or tenant.api_key_hash is not None:
            return False
        self.tenants[tenant_id] = dataclasses.replace(
            tenant, api_key_hash=key_hash, api_key_created_at=created_at
        )
        return True

    async def delete(self, tenant_id):
        self.calls.append(("delete", tenant_id))
        return self.tenants.pop(tenant_id, None) is not None

    @property
    def writes(self) -> List[Tuple[str, Any]]:
        return [
            call for call in self.calls
            if call[0] in ("update", "set_api_key_hash_if_absent", "delete")
        ]


class FakeUpstream:
    """
    Recording upstream connector service for httpx.MockTransport.

    Routes map (method, path) to (status, json body). Unrouted requests get 404.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.requests: List[httpx.Request] = []

    def route(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method, path)] = (status, body if body is not None else {})

    def fail(self, method: str, path: str, status: int = 500) -> None:
        self.routes[(method, path)] = (status, {"error": "upstream broke"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get(
            (request.method, request.url.path), (404, {"error": "not found"})
        )
        return httpx.Response(status, json=body)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content)


def make_tenant(
    tenant_id: str = "tenant-1",
    email: str = "owner@example.com",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    primary: Optional[str] = "prof_primary",
    accessible: Optional[List[str]] = None,
    **kwargs,
) -> Tenant:
    return Tenant(
        id=tenant_id,
        email=email,
        subscription_status=status,
        primary_external_profile_id=primary,
        accessible_external_profile_ids=list(accessible or []),
        **kwargs,
    )


def session_token(subject: str, email: Optional[str] = None, secret: str = SESSION_SECRET, **claims) -> str:
    payload = {"sub": subject, "aud": "authenticated", "exp": int(time.time()) + 3600}
    if email:
        payload["email"] = email
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def session_headers(subject: str, email: Optional[str] = None, **extra_headers) -> Dict[str, str]:
    headers = {"Cookie": f"session={session_token(subject, email)}"}
    headers.update(extra_headers)
    return headers


@pytest.fixture
def tenant_store():
    return FakeTenantStore()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def connector(upstream):
    return ConnectorClient(
        base_url=UPSTREAM_BASE_URL,
        api_key="upstream-key",
        transport=httpx.MockTransport(upstream),
    )


@pytest.fixture
def connection_store():
    return MemoryConnectionStore(ttl_seconds=900, signer=HandleSigner("test-connection-secret"))


@pytest.fixture
def rate_limiter():
    return FixedWindowRateLimiter(max_requests=3, window_seconds=60)


@pytest.fixture
def client(tenant_store, connector, connection_store, rate_limiter):
    """TestClient with every external collaborator replaced."""
    from fastapi.testclient import TestClient
    from tenant_gateway.main import app

    app.dependency_overrides[get_tenant_store] = lambda: tenant_store
    app.dependency_overrides[get_connector] = lambda: connector
    app.dependency_overrides[get_connection_store] = lambda: connection_store
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_session_verifier] = lambda: JwtSessionVerifier(secret=SESSION_SECRET)

    test_client = TestClient(app, raise_server_exceptions=False)
    yield test_client

    app.dependency_overrides.clear()
