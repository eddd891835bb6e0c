"""
Bearer token handling

Tokens are issued by the platform's identity service; this service only
verifies them and reads the employee id from "sub". create_access_token is
kept for tooling and tests.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from jose import JWTError, jwt
from app.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: Dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a token for data; "sub" must be the employee id as a string."""
    claims = dict(data)
    minutes = settings.JWT_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    claims["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict:
    """
    Raises:
        ValueError: If the signature, algorithm or expiry does not verify
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        logger.debug("Rejected token that failed verification")
        raise ValueError("Invalid token")


def employee_id_from_token(token: str) -> int:
    """
    Raises:
        ValueError: If the token is invalid or carries no numeric subject
    """
    sub = decode_token(token).get("sub")
    if sub is None:
        raise ValueError("Token has no subject")
    return int(sub)
