import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from utils.constants import (
    INVALID_AUTH_CREDENTIALS,
    RELAY_NOT_CONFIGURED,
    WWW_AUTHENTICATE_HEADER,
)

security = HTTPBearer()


def require_relay_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> None:
    """Only the Discord gateway relay may push messages and commands"""
    if not settings.relay_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=RELAY_NOT_CONFIGURED,
        )
    if not hmac.compare_digest(
        credentials.credentials.encode(), settings.relay_token.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=INVALID_AUTH_CREDENTIALS,
            headers={"WWW-Authenticate": WWW_AUTHENTICATE_HEADER},
        )
