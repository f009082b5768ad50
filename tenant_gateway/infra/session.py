"""Browser session verification."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import jwt
from fastapi import Request

from tenant_gateway.infra.config import config
from tenant_gateway.models.tenant import Identity

logger = logging.getLogger(__name__)


class SessionVerifier(ABC):
    """Turns an incoming request into the authenticated identity, if any."""

    @abstractmethod
    def verify(self, request: Request) -> Optional[Identity]:
        ...


class JwtSessionVerifier(SessionVerifier):
    """
    Verify the HS256 session JWT carried in the session cookie.

    The token subject is the identity id, which is also the tenant id in the
    tenant store. Missing, expired or tampered tokens verify to None.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        audience: Optional[str] = None,
        cookie_name: Optional[str] = None,
    ):
        self.secret = secret or config.SESSION_JWT_SECRET
        self.audience = audience or config.SESSION_JWT_AUDIENCE
        self.cookie_name = cookie_name or config.SESSION_COOKIE_NAME

    def verify(self, request: Request) -> Optional[Identity]:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        if not self.secret:
            logger.warning("SESSION_JWT_SECRET not configured; rejecting session cookie")
            return None

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
            )
        except jwt.InvalidTokenError as e:
            logger.info("Session token rejected", extra={"reason": str(e)})
            return None

        subject = payload.get("sub")
        if not subject:
            return None
        return Identity(id=str(subject), email=payload.get("email"))


_session_verifier: Optional[SessionVerifier] = None


def get_session_verifier() -> SessionVerifier:
    """Dependency returning the process-wide session verifier."""
    global _session_verifier
    if _session_verifier is None:
        _session_verifier = JwtSessionVerifier()
    return _session_verifier
