"""
Authentication for the Gallery API.

Sign-in itself happens at an external OAuth provider. That provider hands the
browser a signed JSON Web Token; this module only verifies such tokens and
turns them into a `User`.

Key Components:
- `User`: The authenticated caller (`id` is the token subject).
- `JWTManager`: Verifies bearer tokens with the provider's shared secret
  (`JWT_SECRET_KEY`, `JWT_ALGORITHM`, optional `JWT_AUDIENCE`). It can also
  mint tokens, which development tooling and the test suite use in place of
  the real provider.
- `get_auth_service` / `init_auth_service`: Process-wide manager instance.
"""

import os
import jwt
import secrets
from datetime import datetime, timedelta
from typing import Dict, Optional, Any
from dataclasses import dataclass

from core.logging_config import get_logger
from core.exceptions import AuthenticationError

logger = get_logger(__name__)


@dataclass
class User:
    """Authenticated caller"""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class JWTManager:
    """Bearer token verification"""

    def __init__(
        self,
        secret_key: str = None,
        algorithm: str = None,
        audience: Optional[str] = None,
    ):
        self.secret_key = secret_key or os.getenv("JWT_SECRET_KEY") or self._generate_secret_key()
        self.algorithm = algorithm or os.getenv("JWT_ALGORITHM", "HS256")
        self.audience = audience if audience is not None else os.getenv("JWT_AUDIENCE")
        self.access_token_expire = timedelta(hours=1)

    def _generate_secret_key(self) -> str:
        """Generate a throwaway secret key"""
        key = secrets.token_urlsafe(32)
        logger.warning(
            "Generated new JWT secret key. Tokens from the OAuth provider will not "
            "verify until JWT_SECRET_KEY is set."
        )
        return key

    def create_access_token(self, user: User, expires_delta: timedelta = None) -> str:
        """Mint a token shaped like the provider's (dev and tests only)"""
        if expires_delta is None:
            expires_delta = self.access_token_expire

        now = datetime.utcnow()
        payload = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "exp": now + expires_delta,
            "iat": now,
        }
        if self.audience:
            payload["aud"] = self.audience

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify and decode a bearer token"""
        options = {"require": ["sub", "exp"]}
        try:
            if self.audience:
                return jwt.decode(
                    token,
                    self.secret_key,
                    algorithms=[self.algorithm],
                    audience=self.audience,
                    options=options,
                )
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={**options, "verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {str(e)}")

    def authenticate(self, token: Optional[str]) -> User:
        """Return the user a token belongs to"""
        if not token:
            raise AuthenticationError("Sign in required")

        payload = self.verify_token(token)
        user_metadata = payload.get("user_metadata") or {}
        return User(
            id=str(payload["sub"]),
            email=payload.get("email"),
            name=payload.get("name") or user_metadata.get("full_name"),
        )


# Global authentication service
_auth_service: Optional[JWTManager] = None


def get_auth_service() -> JWTManager:
    """Get global authentication service"""
    global _auth_service
    if _auth_service is None:
        _auth_service = JWTManager()
    return _auth_service


def init_auth_service(secret_key: str = None) -> JWTManager:
    """Initialize global authentication service"""
    global _auth_service
    _auth_service = JWTManager(secret_key=secret_key)
    logger.info("Initialized authentication service")
    return _auth_service
