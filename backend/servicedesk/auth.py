"""Bearer token verification.

Tokens are issued by the bank's identity provider; this service only
verifies them and resolves the acting principal.
"""
import logging
import time
from uuid import UUID

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .directory import SqlIdentityContext
from .domain import Principal

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    exp = payload.get("exp")
    if exp is None:
        raise _credentials_error()
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the acting principal from the bearer token."""
    payload = decode_token(credentials.credentials)
    if payload.get("type", "access") != "access":
        raise _credentials_error("Invalid token type")

    principal = SqlIdentityContext(db).get_principal(_parse_token_subject(payload))
    if principal is None or not principal.is_active:
        raise _credentials_error("User not found or inactive")

    # Read by the DomainError handler to decide on internal details.
    request.state.principal = principal
    return principal
