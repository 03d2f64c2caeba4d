"""
Identity gate.

Resolves a bearer token to an active local user. Tokens are issued by Keycloak
and verified against the realm public key; role and active flag come from the
``users`` table, not from token claims.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

from jose import ExpiredSignatureError, JWTError, jwt
from keycloak import KeycloakOpenID
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import AuthenticationError, AuthorizationError, ErrorCode
from app.models.user import User
from app.repositories.user import UserRepository

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Dict[str, Any]:
        """Return the verified claims or raise AuthenticationError."""


class KeycloakTokenVerifier:
    def __init__(self, config: Settings = settings):
        self.config = config
        self._keycloak = KeycloakOpenID(
            server_url=config.KEYCLOAK_URL,
            client_id=config.KEYCLOAK_CLIENT_ID,
            realm_name=config.KEYCLOAK_REALM,
            client_secret_key=config.KEYCLOAK_CLIENT_SECRET or None,
        )
        self._public_key: Optional[str] = None

    def public_key(self) -> str:
        if self._public_key is None:
            key = self._keycloak.public_key()
            if not key.startswith("-----BEGIN"):
                key = f"-----BEGIN PUBLIC KEY-----\n{key}\n-----END PUBLIC KEY-----"
            self._public_key = key
        return self._public_key

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(
                token, self.public_key(), algorithms=["RS256"], options={"verify_aud": False}
            )
        except ExpiredSignatureError:
            raise AuthenticationError(
                "Session has expired. Please sign in again", code=ErrorCode.SESSION_EXPIRED
            ) from None
        except JWTError as exc:
            logger.warning(f"[AUTH] Token validation failed: {exc}")
            raise AuthenticationError("Invalid authentication token") from None

        issuer = payload.get("iss", "")
        if not issuer.endswith(f"/realms/{self.config.KEYCLOAK_REALM}"):
            logger.error(f"[AUTH] Invalid issuer: {issuer}, expected realm: {self.config.KEYCLOAK_REALM}")
            raise AuthenticationError("Token from invalid realm")
        return payload


class IdentityGate:
    """Turns a session token into ``User`` (id, role, active flag)."""

    def __init__(self, config: Settings, verifier: TokenVerifier):
        self.config = config
        self.verifier = verifier
        self.allowed_emails = {email.lower() for email in config.ALLOWED_USER_EMAILS}

    async def resolve(self, db: AsyncSession, token: Optional[str]) -> User:
        if not token:
            raise AuthenticationError("Authentication required")

        claims = self.verifier.verify(token)
        subject = claims.get("sub")
        email = (claims.get("email") or "").lower()
        if not subject and not email:
            raise AuthenticationError("Token carries no user identity")

        if self.allowed_emails and email not in self.allowed_emails:
            logger.warning(f"[AUTH] {email} is not on the allowed user list")
            raise AuthorizationError("Access is restricted to invited users")

        users = UserRepository(db)
        user = await users.get_by_external_id(subject) if subject else None
        if user is None and email:
            user = await users.get_by_email(email)
            if user is not None and subject and user.external_id is None:
                # First login links the Keycloak subject to the invited user
                user.external_id = subject
                await db.commit()
        if user is None:
            raise AuthenticationError("User is not registered", code=ErrorCode.USER_NOT_FOUND)
        if not user.is_active:
            raise AuthorizationError("User account is inactive", code=ErrorCode.USER_INACTIVE)

        logger.debug(f"[AUTH] Resolved {user.email} as {user.role}")
        return user


@lru_cache()
def get_identity_gate() -> IdentityGate:
    return IdentityGate(settings, KeycloakTokenVerifier(settings))
