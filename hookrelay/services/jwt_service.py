"""
JWT token service for the management API.

Tokens are issued by the platform's auth service; `sub` is the producer id.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from hookrelay.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, producer_id: str, role: str = "producer", expires_minutes: int = 60) -> str:
        """
        Create a JWT token for a producer.

        Args:
            producer_id: Producer's unique ID
            role: "producer" or "admin"
            expires_minutes: Token lifetime

        Returns:
            Encoded JWT token string
        """
        expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)

        payload = {
            "sub": producer_id,
            "role": role,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
            return payload
        except JWTError:
            return None
