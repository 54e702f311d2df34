"""JWT token utilities"""
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


def generate_access_token(user_id) -> str:
    """Issue an access token whose ``user_id`` claim names the record owner."""
    now = datetime.now(timezone.utc)
    payload = {
        'user_id': str(user_id),
        'exp': now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        'iat': now,
        'type': 'access'
    }

    return jwt.encode(
        payload,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate access token"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )

        if payload.get('type') != 'access':
            return None

        return payload

    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        return None
