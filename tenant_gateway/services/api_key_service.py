"""API key issuance, hashing and revocation."""

import hashlib
import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Dict, Any

from tenant_gateway.infra.error_handler import Conflict
from tenant_gateway.infra.metrics import api_keys_issued_total
from tenant_gateway.models.tenant import Tenant
from tenant_gateway.services.tenant_store import TenantStore

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "tg_sk_"
API_KEY_BODY_LENGTH = 32

_API_KEY_PATTERN = re.compile(
    rf"^{re.escape(API_KEY_PREFIX)}[A-Za-z0-9_-]{{{API_KEY_BODY_LENGTH}}}$"
)


def generate_api_key() -> str:
    """
    Generate a new API key.

    Returns:
        `tg_sk_` followed by 32 URL-safe characters (24 random bytes)
    """
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(24)}"


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key for storage and lookup.

    Keys carry 192 bits of randomness, so an unsalted sha256 is enough and
    lets the resolver find the tenant by hash in one indexed query.

    Returns:
        Hex-encoded sha256 digest
    """
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def is_valid_api_key_format(api_key: str) -> bool:
    """Cheap structural check, done before any storage access."""
    return bool(api_key) and _API_KEY_PATTERN.match(api_key) is not None


def get_key_prefix(api_key: str) -> str:
    """First characters of a key, safe to show in logs and UIs."""
    return api_key[: len(API_KEY_PREFIX) + 4]


async def generate_api_key_for_tenant(tenant: Tenant, store: TenantStore) -> Dict[str, Any]:
    """
    Issue the tenant's API key.

    Args:
        tenant: Tenant the key is issued for
        store: Tenant store holding the hash

    Returns:
        Dict with the plaintext `key` (returned only this once) and `created_at`

    Raises:
        Conflict: If the tenant already holds a key, including when a
            concurrent request stored one first
    """
    if tenant.has_api_key:
        raise Conflict("API key already exists. Revoke the existing key first.")

    api_key = generate_api_key()
    created_at = datetime.now(timezone.utc)

    stored = await store.set_api_key_hash_if_absent(tenant.id, hash_api_key(api_key), created_at)
    if not stored:
        raise Conflict("API key already exists. Revoke the existing key first.")

    api_keys_issued_total.inc()
    logger.info(
        "API key issued",
        extra={"tenant_id": tenant.id, "key_prefix": get_key_prefix(api_key)},
    )
    return {"key": api_key, "created_at": created_at}


async def revoke_api_key_for_tenant(tenant: Tenant, store: TenantStore) -> None:
    """Clear the tenant's key hash and issuance time. Safe to repeat."""
    await store.update(tenant.id, {"api_key_hash": None, "api_key_created_at": None})
    logger.info("API key revoked", extra={"tenant_id": tenant.id})
