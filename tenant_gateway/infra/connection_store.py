"""Short-lived storage for in-flight account-linking attempts."""

import hashlib
import hmac
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis

from tenant_gateway.infra.config import config
from tenant_gateway.models.connection import ConnectionAttempt

logger = logging.getLogger(__name__)


def new_connection_id() -> str:
    return secrets.token_urlsafe(16)


class HandleSigner:
    """
    Signs connection ids into opaque handles of the form `<id>.<signature>`.

    The browser only ever sees the handle; a handle whose signature does not
    verify is treated as unknown.
    """

    def __init__(self, secret: Optional[str] = None):
        self._secret = (secret or config.CONNECTION_SIGNING_SECRET).encode("utf-8")

    def _signature(self, connection_id: str) -> str:
        return hmac.new(self._secret, connection_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, connection_id: str) -> str:
        return f"{connection_id}.{self._signature(connection_id)}"

    def unsign(self, handle: Optional[str]) -> Optional[str]:
        """Return the connection id of a valid handle, else None."""
        if not handle or "." not in handle:
            return None
        connection_id, signature = handle.rsplit(".", 1)
        if not connection_id or not hmac.compare_digest(signature, self._signature(connection_id)):
            return None
        return connection_id


class ConnectionStore(ABC):
    """TTL-bounded map of connection id to ConnectionAttempt."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        signer: Optional[HandleSigner] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds or config.CONNECTION_TTL_SECONDS
        self.signer = signer or HandleSigner()
        self._clock = clock

    def create(self, attempt: ConnectionAttempt) -> str:
        """Store a new attempt and return its signed handle."""
        self._put(attempt, self.ttl_seconds)
        logger.info(
            "Connection attempt stored",
            extra={
                "connection_id": attempt.connection_id,
                "tenant_id": attempt.tenant_id,
                "platform": attempt.platform,
            },
        )
        return self.signer.sign(attempt.connection_id)

    def get(self, handle: Optional[str], tenant_id: Optional[str] = None) -> Optional[ConnectionAttempt]:
        """
        Load the attempt behind a handle.

        Returns None for forged, unknown or expired handles, and for attempts
        that belong to a different tenant than `tenant_id`.
        """
        connection_id = self.signer.unsign(handle)
        if connection_id is None:
            return None
        attempt = self._get(connection_id)
        if attempt is None:
            return None
        if tenant_id is not None and attempt.tenant_id != tenant_id:
            logger.warning(
                "Connection attempt requested by another tenant",
                extra={"connection_id": connection_id, "tenant_id": tenant_id},
            )
            return None
        return attempt

    def save(self, attempt: ConnectionAttempt) -> None:
        """Persist changes to an existing attempt without extending its lifetime."""
        remaining = self.ttl_seconds - (self._clock() - attempt.created_at.timestamp())
        if remaining <= 0:
            return
        self._put(attempt, remaining)

    @abstractmethod
    def delete(self, connection_id: str) -> None:
        ...

    @abstractmethod
    def _put(self, attempt: ConnectionAttempt, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    def _get(self, connection_id: str) -> Optional[ConnectionAttempt]:
        ...


class MemoryConnectionStore(ConnectionStore):
    """In-process store; attempts are only visible to the instance that stored them."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        signer: Optional[HandleSigner] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_seconds, signer, clock)
        self._items: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def _put(self, attempt, ttl_seconds):
        with self._lock:
            now = self._clock()
            self._purge(now)
            self._items[attempt.connection_id] = (now + ttl_seconds, attempt.model_dump_json())

    def _get(self, connection_id):
        with self._lock:
            item = self._items.get(connection_id)
            if item is None:
                return None
            expires_at, payload = item
            if self._clock() >= expires_at:
                del self._items[connection_id]
                return None
        return ConnectionAttempt.model_validate_json(payload)

    def delete(self, connection_id: str) -> None:
        with self._lock:
            self._items.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._items)

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]


class RedisConnectionStore(ConnectionStore):
    """Store shared across instances; Redis expiry enforces the TTL."""

    key_prefix = "connect:attempt:"

    def __init__(
        self,
        client: "redis.Redis",
        ttl_seconds: Optional[int] = None,
        signer: Optional[HandleSigner] = None,
    ):
        super().__init__(ttl_seconds, signer)
        self.client = client

    def _put(self, attempt, ttl_seconds):
        self.client.set(
            self.key_prefix + attempt.connection_id,
            attempt.model_dump_json(),
            px=max(1, int(ttl_seconds * 1000)),
        )

    def _get(self, connection_id):
        payload = self.client.get(self.key_prefix + connection_id)
        if payload is None:
            return None
        return ConnectionAttempt.model_validate_json(payload)

    def delete(self, connection_id: str) -> None:
        self.client.delete(self.key_prefix + connection_id)


_connection_store: Optional[ConnectionStore] = None
redis_client: Optional["redis.Redis"] = None


def get_connection_store() -> ConnectionStore:
    """Dependency returning the configured connection store."""
    global _connection_store, redis_client
    if _connection_store is None:
        if config.CONNECTION_STORE_BACKEND == "redis":
            redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
            _connection_store = RedisConnectionStore(redis_client)
        else:
            _connection_store = MemoryConnectionStore()
    return _connection_store


def close_connection_store() -> None:
    """Close the Redis client behind the store, if one was opened."""
    global _connection_store, redis_client
    if redis_client is not None:
        redis_client.close()
        redis_client = None
    _connection_store = None
