from dataclasses import dataclass

from fastapi import Depends, Header, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campusnet.config import settings
from campusnet.exceptions import AuthenticationFailed, PermissionDenied
from campusnet.security import TokenError, decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


class PaginationParams:
    """
    Reusable FastAPI dependency that parses page-based pagination.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(pagination: PaginationParams = Depends()):
            ...

    ``page_size`` is clamped to ``settings.MAX_PAGE_SIZE`` so a settings
    change is enough to tighten the ceiling.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        """SQL OFFSET value computed from the current page and page size."""
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    role: str
    token: str


def user_from_token(token: str) -> CurrentUser:
    """Decode an access token into a CurrentUser, raising AuthenticationFailed."""
    try:
        claims = decode_access_token(token)
        user_id = int(claims["sub"])
    except (TokenError, KeyError, ValueError):
        raise AuthenticationFailed("Token is not valid", code="INVALID_TOKEN")
    return CurrentUser(
        id=user_id,
        email=claims.get("email", ""),
        role=claims.get("role", "student"),
        token=token,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("No token, authorization denied", code="NO_TOKEN")
    return user_from_token(credentials.credentials)


async def require_internal(x_api_key: str | None = Header(None)) -> None:
    """Guard for service-to-service endpoints."""
    if not x_api_key or x_api_key != settings.INTERNAL_API_KEY:
        raise PermissionDenied("Unauthorized", code="INVALID_API_KEY")
