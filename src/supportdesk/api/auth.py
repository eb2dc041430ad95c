"""JWT validation and resolution of the caller's organization."""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.deps import get_db
from supportdesk.api.errors import Forbidden, Unauthenticated
from supportdesk.common.config import settings
from supportdesk.common.logging import bind_org
from supportdesk.common.models import Profile

logger = structlog.get_logger()

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class OrgContext:
    """The authenticated caller and the organization every query is scoped to."""

    user_id: uuid.UUID
    org_id: uuid.UUID


def create_access_token(user_id: uuid.UUID, email: str) -> str:
    """Create a signed JWT for the given user."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expiry_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Decode and validate a JWT. Raises ``Unauthenticated`` on failure."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired.")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Sign in required.")


async def require_org(
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> OrgContext:
    """FastAPI dependency: authenticated user plus their current organization."""
    if credentials is None:
        raise Unauthenticated("Sign in required.")

    payload = decode_access_token(credentials.credentials)
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthenticated("Invalid token payload.")

    result = await db.execute(select(Profile.current_org_id).where(Profile.user_id == user_id))
    org_id = result.scalar_one_or_none()
    if org_id is None:
        logger.info("no_current_org", user_id=str(user_id))
        raise Forbidden("No current org selected.")

    bind_org(org_id)
    return OrgContext(user_id=user_id, org_id=org_id)
