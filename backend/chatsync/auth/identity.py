"""Bearer-credential resolution.

Tokens are issued by the external authentication service; this module only
verifies the signature and turns the claims into an ``Identity``. The rest of
the core trusts that identity without re-validating it.
"""
import logging
from typing import Optional

import jwt
from pydantic import BaseModel

from ..config import AuthSecrets
from ..database import Database
from ..errors import AuthenticationError

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """Decoded identity of an authenticated user."""
    user_id: str
    username: str
    profile_image: Optional[str] = None


class IdentityResolver:
    """Verifies JWT bearer tokens and extracts the caller's identity."""

    def __init__(self, settings: AuthSecrets) -> None:
        self._settings = settings

    def resolve(self, token: Optional[str]) -> Identity:
        """Decode ``token`` into an Identity.

        Raises:
            AuthenticationError: Missing, expired, tampered or incomplete token.
        """
        if not token:
            raise AuthenticationError("Authentication token is required")
        try:
            claims = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=[self._settings.algorithm],
            )
        except jwt.PyJWTError as e:
            logger.info("[Auth] Token rejected: %s", e)
            raise AuthenticationError("Invalid or expired token") from e

        user_id = claims.get(self._settings.user_id_claim)
        username = claims.get(self._settings.username_claim)
        if user_id is None or not username:
            raise AuthenticationError("Token is missing identity claims")
        return Identity(
            user_id=str(user_id),
            username=str(username),
            profile_image=claims.get("profile_image"),
        )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class UserDirectory:
    """Display metadata for senders, recorded from identities as they are seen."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def remember(self, identity: Identity) -> None:
        self._db.execute(
            """
            INSERT INTO users (user_id, username, profile_image)
            VALUES (?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                username = excluded.username,
                profile_image = COALESCE(excluded.profile_image, users.profile_image)
            """,
            [identity.user_id, identity.username, identity.profile_image],
        )
