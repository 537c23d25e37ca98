import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from app.config import settings
from app.services.token_cache import ManagementApiClient, TokenFetchError

log = logging.getLogger("auth")


class AdminUser(BaseModel):
    sub: str
    roles: List[str] = []


@lru_cache()
def get_management_client() -> Optional[ManagementApiClient]:
    if not (settings.AUTH0_DOMAIN and settings.AUTH0_MANAGEMENT_CLIENT_ID and settings.AUTH0_MANAGEMENT_CLIENT_SECRET):
        return None
    return ManagementApiClient(
        settings.AUTH0_DOMAIN,
        settings.AUTH0_MANAGEMENT_CLIENT_ID,
        settings.AUTH0_MANAGEMENT_CLIENT_SECRET,
        leeway_seconds=settings.MANAGEMENT_TOKEN_LEEWAY_SECONDS,
    )


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth_header.split(" ", 1)[1].strip()


def decode_token(token: str) -> dict:
    options = {"verify_aud": settings.AUTH_AUDIENCE is not None}
    try:
        return jwt.decode(
            token,
            settings.AUTH_SECRET_KEY,
            algorithms=[settings.AUTH_ALGORITHM],
            audience=settings.AUTH_AUDIENCE,
            issuer=settings.AUTH_ISSUER,
            options=options,
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin(
    request: Request,
    management: Optional[ManagementApiClient] = Depends(get_management_client),
) -> AdminUser:
    """
    Accept only bearer tokens whose roles include ADMIN_ROLE. Roles come from
    the configured claim; when a token carries none, they are looked up
    through the management API if it is configured.
    """
    payload = decode_token(_bearer_token(request))
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    roles = payload.get(settings.AUTH_ROLES_CLAIM)
    if roles is None and management is not None:
        try:
            roles = management.get_user_roles(sub)
        except TokenFetchError:
            log.exception("role lookup failed for %s", sub)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Role lookup unavailable")
    roles = list(roles or [])

    if settings.ADMIN_ROLE not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return AdminUser(sub=sub, roles=roles)
