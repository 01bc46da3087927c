"""Role hierarchy rules.

Which roles an account may create is a fixed table; everything here is a
pure function of the roles involved.
"""

from typing import Dict, FrozenSet, List

from lending.errors import AuthorizationError
from lending.models import Role, User

# Rol sırası: en yüksekten en düşüğe
ROLE_ORDER = (Role.SYSTEM_ADMIN, Role.ADMIN, Role.LIBRARIAN, Role.END_USER)

CREATABLE_ROLES: Dict[Role, FrozenSet[Role]] = {
    Role.SYSTEM_ADMIN: frozenset({Role.ADMIN, Role.LIBRARIAN, Role.END_USER}),
    Role.ADMIN: frozenset({Role.ADMIN, Role.LIBRARIAN}),
    Role.LIBRARIAN: frozenset({Role.END_USER}),
    Role.END_USER: frozenset(),
}

STAFF_ROLES: FrozenSet[Role] = frozenset({Role.SYSTEM_ADMIN, Role.ADMIN, Role.LIBRARIAN})
RATING_ROLES: FrozenSet[Role] = frozenset({Role.END_USER})


def can_create(creator_role: Role, target_role: Role) -> bool:
    return Role(target_role) in CREATABLE_ROLES.get(Role(creator_role), frozenset())


def creatable_roles(creator_role: Role) -> List[Role]:
    """Roles the creator may assign, highest first."""
    allowed = CREATABLE_ROLES.get(Role(creator_role), frozenset())
    return [role for role in ROLE_ORDER if role in allowed]


def ensure_can_create(creator_role: Role, target_role: Role) -> None:
    if not can_create(creator_role, target_role):
        raise AuthorizationError("You are not authorized to create this type of user.")


def is_staff(role: Role) -> bool:
    return Role(role) in STAFF_ROLES


def ensure_staff(user: User) -> None:
    if not is_staff(user.role):
        raise AuthorizationError("This operation is restricted to library staff.")


def can_rate(role: Role) -> bool:
    return Role(role) in RATING_ROLES
