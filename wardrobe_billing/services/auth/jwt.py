"""
Caller identity from the auth provider's bearer token.
Only the subject claim is used: it is the user id that references are checked against.
"""
import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wardrobe_billing.core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict:
    """Raises jwt.InvalidTokenError on a bad signature, expiry, audience or a missing sub."""
    options = {"require": ["sub", "exp"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience or None,
        options=options,
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        logger.info("access_token_rejected", extra={"error": type(e).__name__})
        raise credentials_exception
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise credentials_exception
    return user_id
