"""Staff access tokens.

Tokens are issued by the clinic's login service and carry the staff member's
id in ``sub`` and their role in ``role``. This backend only verifies them;
``create_staff_token`` exists for tooling and tests.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from jose import JWTError, jwt

from estetica.config import settings
from estetica.scheduling.permissions import Role

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class StaffClaims:
    """Verified identity of a staff member."""

    user_id: UUID
    role: Role


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Sign an access token with the given claims.

    Args:
        data: Claims to encode
        expires_delta: Lifetime, defaults to the configured access token lifetime

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {**data, "iat": issued_at, "exp": issued_at + lifetime, "type": ACCESS_TOKEN_TYPE}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_staff_token(user_id: UUID, role: Role | str, expires_delta: timedelta | None = None) -> str:
    """Sign an access token for a staff member."""
    role_value = role.value if isinstance(role, Role) else role
    return create_access_token({"sub": str(user_id), "role": role_value}, expires_delta)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Verify an access token's signature, expiry and type.

    Returns:
        The claims, or None if the token is not a valid access token
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    return payload if payload.get("type") == ACCESS_TOKEN_TYPE else None


def read_staff_claims(payload: dict[str, Any]) -> StaffClaims | None:
    """Extract the staff identity from verified claims; None if it is malformed."""
    sub, role = payload.get("sub"), payload.get("role")
    if not isinstance(sub, str) or not isinstance(role, str):
        return None
    try:
        return StaffClaims(user_id=UUID(sub), role=Role(role))
    except ValueError:
        logger.warning("invalid_token_claims", sub=sub, role=role)
        return None


def decode_staff_token(token: str) -> StaffClaims | None:
    """Verify a staff access token and return its identity."""
    payload = decode_access_token(token)
    return read_staff_claims(payload) if payload is not None else None
