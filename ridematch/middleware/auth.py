from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from ridematch.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles


def create_access_token(data: dict) -> str:
    """Sign a JWT with the configured secret (HS256)."""
    return jwt.encode(data, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """Decode the JWT Bearer token into a user id and role set."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    roles = payload.get("roles", [])
    if not user_id or not isinstance(roles, list):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return Identity(user_id=str(user_id), roles=frozenset(str(r) for r in roles))


async def get_current_rider(identity: Identity = Depends(get_current_user)) -> str:
    """Extract rider_id; the caller must hold the rider role."""
    if not identity.has_role("rider"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rider role required")
    return identity.user_id


async def get_current_driver(identity: Identity = Depends(get_current_user)) -> str:
    """Extract driver_id; the caller must hold the driver role."""
    if not identity.has_role("driver"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver role required")
    return identity.user_id
