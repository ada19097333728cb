"""
Role authority: resolves a user's role set from their account flags.
"""

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from repositories.db_models import Role, User
from repositories.user_repository import UserRepository

# Roles allowed to decide on queue items
MODERATION_ROLES = frozenset({Role.ADMIN, Role.MODERATOR})

# Roles allowed to review flagged revisions
REVIEW_ROLES = frozenset({Role.ADMIN, Role.MODERATOR, Role.EXPERT})


class RoleService:
    """Service for role resolution and checks."""

    @staticmethod
    def get_user_roles(user: Optional[User]) -> set[Role]:
        """
        Resolve the role set of a user.

        Inactive or missing users have no roles at all.
        """
        if user is None or not user.is_active:
            return set()

        roles = {Role.USER}
        if user.is_global_admin:
            roles.add(Role.ADMIN)
        if user.is_moderator:
            roles.add(Role.MODERATOR)
        if user.is_expert:
            roles.add(Role.EXPERT)
        return roles

    @staticmethod
    def has_any_role(roles: Iterable[Role], allowed: Iterable[Role]) -> bool:
        return bool(set(roles) & set(allowed))

    @staticmethod
    def resolve_roles(db: Session, user_ids: Iterable[int]) -> dict[int, set[Role]]:
        """
        Resolve roles for several users in one query.

        Returns:
            Mapping of user ID to role set; unknown IDs are omitted
        """
        users = UserRepository(db).get_by_ids(list(set(user_ids)))
        return {user.id: RoleService.get_user_roles(user) for user in users}
