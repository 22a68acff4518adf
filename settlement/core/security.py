from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from settlement.config import settings


class ActorRole(str, Enum):
    """Roles that can call the settlement API."""
    ADMIN = "ADMIN"
    FINANCE_ANALYST = "FINANCE_ANALYST"
    VENDOR = "VENDOR"
    SERVICE = "SERVICE"  # Order/payment collaborator calling record()


# Roles allowed to see raw gateway failure detail and operate payouts
STAFF_ROLES = {ActorRole.ADMIN, ActorRole.FINANCE_ANALYST}


def create_access_token(
    subject: str | uuid.UUID,
    role: ActorRole,
    vendor_id: Optional[uuid.UUID] = None,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Tokens are normally issued by the platform's auth service; this is used
    for service-to-service tokens and in tests.
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access",
        "role": role.value,
    }
    if vendor_id:
        to_encode["vendor_id"] = str(vendor_id)

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
        return payload
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify an access token and return its claims.

    Returns None unless the token is a valid access token carrying a
    known role.
    """
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != "access":
        return None

    if payload.get("role") not in {r.value for r in ActorRole}:
        return None

    return payload
