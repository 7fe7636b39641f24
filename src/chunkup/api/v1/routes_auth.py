"""Upload token issuing route."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status

from chunkup.core.security import api_key_matches, create_upload_token
from chunkup.models.upload import TokenResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/token", response_model=TokenResponse)
async def issue_token(x_api_key: Optional[str] = Header(None)) -> TokenResponse:
    """Exchange an API key for a short-lived upload token."""
    if not api_key_matches(x_api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    token, expires_in = create_upload_token()
    logger.info("Upload token issued", extra={"expires_in": expires_in})
    return TokenResponse(token=token, expires_in=expires_in)
