from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import ensure_utc
from models.config import settings
from models.exceptions import (
    AuthenticationException,
    InactiveUserException,
    InsufficientPermissionsException,
)
from repositories.database import get_db
from repositories.user_repository import UserRepository
from services.role_service import MODERATION_ROLES, REVIEW_ROLES, RoleService

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )
    return encoded_jwt


def _email_from_token(token: str) -> str:
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except jwt.exceptions.ExpiredSignatureError:
        raise AuthenticationException("Session expired. Please log in again.")
    except jwt.exceptions.InvalidTokenError:
        raise AuthenticationException("Could not validate credentials")

    email_value = payload.get("sub")
    if email_value is None:
        raise AuthenticationException("Could not validate credentials")
    return str(email_value)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> db_models.User:
    """
    Get the current authenticated user from the JWT token.

    Raises:
        AuthenticationException: If credentials are missing, invalid or the user is unknown.
    """
    if credentials is None:
        raise AuthenticationException("Not authenticated")

    user = UserRepository(db).get_by_email(_email_from_token(credentials.credentials))
    if user is None:
        raise AuthenticationException("Could not validate credentials")
    return user


async def get_current_active_user(
    current_user: db_models.User = Depends(get_current_user),
) -> db_models.User:
    """
    Get the current user and verify the account may act.

    Raises:
        InactiveUserException: If the account is deactivated or suspended.
    """
    if not bool(current_user.is_active):
        raise InactiveUserException("Account has been deactivated")

    if current_user.is_suspended:
        until = ensure_utc(current_user.suspended_until)
        if until is None or until > datetime.now(timezone.utc):
            raise InactiveUserException("Account is suspended")

    return current_user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[db_models.User]:
    """
    Get current user if authenticated, otherwise return None.

    An expired token still raises so the client knows to re-login; a
    malformed one is treated as anonymous.
    """
    if credentials is None:
        return None

    try:
        email = _email_from_token(credentials.credentials)
    except AuthenticationException as e:
        if "expired" in e.message:
            raise
        return None
    return UserRepository(db).get_by_email(email)


def get_user_roles(user: Optional[db_models.User]) -> set[db_models.Role]:
    """Role set of a user as resolved by the role authority."""
    return RoleService.get_user_roles(user)


def has_role(
    actor: Optional[db_models.User] | Iterable[db_models.Role],
    roles: Iterable[db_models.Role],
) -> bool:
    """True if the actor (a user or an already resolved role set) holds any of roles."""
    if actor is None or isinstance(actor, db_models.User):
        actor = get_user_roles(actor)
    return RoleService.has_any_role(actor, roles)


def require_roles(
    *roles: db_models.Role, detail: str = "Not enough permissions"
) -> Callable[..., Awaitable[db_models.User]]:
    """
    Build a dependency that admits active users holding any of roles.

    Raises:
        InsufficientPermissionsException: If the user holds none of them.
    """

    async def dependency(
        current_user: db_models.User = Depends(get_current_active_user),
    ) -> db_models.User:
        if not has_role(current_user, roles):
            raise InsufficientPermissionsException(detail)
        return current_user

    return dependency


get_admin_user = require_roles(db_models.Role.ADMIN)
get_moderator_user = require_roles(
    *MODERATION_ROLES, detail="Moderator permissions required"
)
get_reviewer_user = require_roles(*REVIEW_ROLES, detail="Reviewer permissions required")
