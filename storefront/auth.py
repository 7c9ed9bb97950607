"""Access-token verification and role gates for the storefront services."""
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .errors import AuthenticationError, BlockedUserError, PermissionDeniedError
from .models import Profile, UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: UUID
    email: str
    role: str
    is_blocked: bool

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


@dataclass
class AuthDependencies:
    optional_user: Callable
    require_user: Callable
    require_admin: Callable


def decode_access_token(token: str, settings: Settings) -> UUID:
    """Verify a provider-issued token and return the user id in its subject."""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
        subject = payload.get("sub")
        if subject is None:
            raise AuthenticationError()
        return UUID(subject)
    except (JWTError, ValueError):
        raise AuthenticationError()


def build_auth_dependencies(settings: Settings, get_session) -> AuthDependencies:
    """
    Build the FastAPI dependencies for one service.

    Args:
        settings: Service settings holding the token secret and audience
        get_session: The service's session dependency

    Returns:
        optional_user, require_user and require_admin dependencies
    """

    async def optional_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        session: AsyncSession = Depends(get_session),
    ) -> Optional[CurrentUser]:
        if credentials is None:
            return None

        user_id = decode_access_token(credentials.credentials, settings)
        profile = await session.get(Profile, user_id)
        if profile is None:
            logger.warning(f"Valid token for unknown profile {user_id}")
            raise AuthenticationError()

        return CurrentUser(
            id=profile.id,
            email=profile.email,
            role=profile.role,
            is_blocked=profile.is_blocked,
        )

    async def require_user(
        user: Optional[CurrentUser] = Depends(optional_user),
    ) -> CurrentUser:
        if user is None:
            raise AuthenticationError("Not authenticated")
        if user.is_blocked:
            raise BlockedUserError()
        return user

    async def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
        if not user.is_admin:
            logger.warning(f"User {user.id} denied admin access")
            raise PermissionDeniedError()
        return user

    return AuthDependencies(
        optional_user=optional_user,
        require_user=require_user,
        require_admin=require_admin,
    )
