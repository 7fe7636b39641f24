"""Request gate for upload session operations.

A request is let through with either a valid ``X-API-Key`` header or a
short-lived bearer token issued by ``POST /auth/token``.
"""

import hmac
import logging
import time
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from chunkup.core.config import settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

TOKEN_TYPE = "upload"


def api_key_matches(api_key: Optional[str]) -> bool:
    if not api_key or not settings.API_KEY:
        return False
    return hmac.compare_digest(api_key.encode(), settings.API_KEY.encode())


def create_upload_token(ttl_seconds: Optional[int] = None) -> tuple[str, int]:
    """Issue a signed upload token.

    Returns:
        Tuple of (token, lifetime in seconds)
    """
    ttl = ttl_seconds if ttl_seconds is not None else settings.TOKEN_TTL_SECONDS
    now = int(time.time())
    payload = {"type": TOKEN_TYPE, "iat": now, "exp": now + ttl}
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, ttl


def decode_upload_token(token: str) -> Dict[str, Any]:
    """Verify an upload token and return its payload.

    Raises:
        InvalidTokenError: If the signature, expiry or token type is wrong
    """
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != TOKEN_TYPE:
        raise InvalidTokenError("Not an upload token")
    return payload


async def require_upload_access(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """FastAPI dependency gating every upload session operation."""
    if not settings.AUTH_ENABLED:
        return

    if api_key_matches(request.headers.get("X-API-Key")):
        return

    if credentials is not None:
        try:
            decode_upload_token(credentials.credentials)
            return
        except InvalidTokenError as e:
            logger.warning(
                "Rejected upload token",
                extra={"path": request.url.path, "error": str(e)},
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing API key or bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )
