# app/core/jwt_auth.py
import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
import logging

from app.core.config import (
    JWT_SECRET_KEY,
    JWT_ALGORITHM,
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
)
from app.core.exceptions import AuthenticationError, ConfigurationError
from app.core.principal import Principal, RoleType

logger = logging.getLogger(__name__)


class JWTManager:
    """Issues and verifies the identity service's access tokens"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        expire_minutes: Optional[int] = None,
    ):
        self.secret_key = secret_key or JWT_SECRET_KEY
        self.algorithm = algorithm or JWT_ALGORITHM
        self.access_token_expire_minutes = (
            expire_minutes or JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        )

    def _require_secret(self):
        if not self.secret_key:
            raise ConfigurationError("JWT_SECRET_KEY", "JWT secret key is not configured")

    def create_access_token(
        self,
        user_id: str,
        role: str,
        name: str = "",
        email: Optional[str] = None,
        extra_data: Dict[str, Any] = None,
    ) -> str:
        """
        Create a signed access token

        Args:
            user_id: Identity user id, stored as `sub`
            role: admin, trainer or member
            name: Display name snapshot
            email: Email snapshot
            extra_data: Additional claims

        Returns:
            JWT token string
        """
        self._require_secret()
        now = datetime.now(timezone.utc)

        payload = {
            "sub": user_id,
            "role": role,
            "name": name,
            "email": email,
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "iat": now,
            "type": "access_token",
        }
        if extra_data:
            payload.update(extra_data)

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"JWT token created for user: {user_id}, role: {role}")
        return token

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and verify a token

        Raises:
            AuthenticationError: If the token is invalid, expired or of the wrong type
        """
        self._require_secret()
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError:
            logger.warning("Invalid JWT token provided")
            raise AuthenticationError("Invalid token")

        if payload.get("type") != "access_token":
            raise AuthenticationError("Invalid token type")

        return payload

    def principal_from_token(self, token: str) -> Principal:
        payload = self.decode_token(token)

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no subject")

        try:
            role = RoleType(payload.get("role"))
        except ValueError:
            raise AuthenticationError(
                "Token carries an unknown role", {"role": payload.get("role")}
            )

        return Principal(
            user_id=str(user_id),
            role=role,
            display_name=payload.get("name") or "",
            email=payload.get("email"),
        )


jwt_manager = JWTManager()
