"""Bearer access-token verification for API callers.

Access tokens are HS256 JWTs issued by the application's auth provider;
the ``sub`` claim is the user id that must own the lecture.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

DEFAULT_AUDIENCE = "authenticated"
DEFAULT_ALGORITHM = "HS256"


class TokenAuthenticator:
    """Resolves a bearer token to a user id.

    Reads configuration from environment variables:
        AUTH_JWT_SECRET, AUTH_JWT_AUDIENCE
    """

    def __init__(
        self,
        secret: str | None = None,
        audience: str | None = None,
        algorithm: str = DEFAULT_ALGORITHM,
    ) -> None:
        self.secret = secret or os.environ.get("AUTH_JWT_SECRET", "")
        self.audience = audience or os.environ.get(
            "AUTH_JWT_AUDIENCE", DEFAULT_AUDIENCE
        )
        self.algorithm = algorithm
        if not self.secret:
            raise ValueError("AUTH_JWT_SECRET is required")

    def authenticate(self, token: str | None) -> str | None:
        """Return the token's subject, or None if it is missing or invalid."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
            )
        except JWTError as exc:
            logger.info("Rejected access token: %s", exc)
            return None
        subject = str(claims.get("sub") or "").strip()
        return subject or None

    def issue(self, user_id: str, expires_in_seconds: int = 3600) -> str:
        """Sign a token for ``user_id``; used by tooling and tests."""
        now = datetime.now(UTC)
        claims = {
            "sub": user_id,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in_seconds)).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)
