"""Bearer-token authentication: the token's ``user_id`` claim is the record owner."""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import logging

from utils.jwt_utils import decode_access_token

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_owner(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """
    Validate the JWT and return the owner id it carries.

    Raises HTTPException if token is invalid or expired.
    """
    payload = decode_access_token(credentials.credentials)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    owner_id = payload.get('user_id')
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    return str(owner_id)
