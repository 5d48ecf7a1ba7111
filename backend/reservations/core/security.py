"""
Bearer token verification.

Tokens are issued by the external identity provider; this service only
verifies the signature and reads the opaque user id from the `sub` claim.
Maintenance endpoints additionally require the operator role in the `role`
claim.
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reservations.core.config import get_settings
from reservations.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_claims(token: str) -> dict:
    """Return the claims of a valid token carrying a subject, or raise 401."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.PyJWTError as e:
        logger.warning("token_rejected", error=str(e))
        raise _unauthorized("Invalid authentication token")

    if not payload.get("sub"):
        raise _unauthorized("Token has no subject")
    return payload


def decode_user_id(token: str) -> str:
    return str(decode_claims(token)["sub"])


def _credentials_or_401(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return credentials.credentials


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    return decode_user_id(_credentials_or_401(credentials))


async def get_current_operator_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    claims = decode_claims(_credentials_or_401(credentials))
    if claims.get("role") != get_settings().OPERATOR_ROLE:
        logger.warning("operator_access_denied", user_id=str(claims["sub"]))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator role required")
    return str(claims["sub"])
