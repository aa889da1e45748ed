"""Security layer — Role tiers and permission scope resolution.

Three tiers, from least to most privileged:

    standard      May delete own/accessible entities if granted ``delete_student``.
    admin         May delete any entity; bulk deletion with ``bulk_operations``.
    super_admin   Adds cascade deletion and orphan cleanup.

For the same permission set each tier's scope is a superset of the one below.
Only the standard tier carries entity restrictions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from deletion_guard.security.identity import CallerIdentity
from deletion_guard.security.models import PermissionScope

PERMISSION_DELETE = "delete_student"
PERMISSION_BULK = "bulk_operations"


class RoleTier(str, Enum):
    STANDARD = "standard"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Role labels used by the administration app, Hebrew included.
_ROLE_ALIASES: dict[str, RoleTier] = {
    "admin": RoleTier.ADMIN,
    "מנהל": RoleTier.ADMIN,
    "super_admin": RoleTier.SUPER_ADMIN,
    "מנהל עליון": RoleTier.SUPER_ADMIN,
}


@dataclass(frozen=True)
class TierPolicy:
    can_delete_any: bool
    can_bulk_delete: bool
    can_cascade_delete: bool
    can_cleanup_orphans: bool
    restricted: bool
    max_deletions_per_minute: int


BUILTIN_TIERS: dict[RoleTier, TierPolicy] = {
    RoleTier.STANDARD: TierPolicy(
        can_delete_any=False,
        can_bulk_delete=False,
        can_cascade_delete=False,
        can_cleanup_orphans=False,
        restricted=True,
        max_deletions_per_minute=2,
    ),
    RoleTier.ADMIN: TierPolicy(
        can_delete_any=True,
        can_bulk_delete=True,
        can_cascade_delete=False,
        can_cleanup_orphans=False,
        restricted=False,
        max_deletions_per_minute=5,
    ),
    RoleTier.SUPER_ADMIN: TierPolicy(
        can_delete_any=True,
        can_bulk_delete=True,
        can_cascade_delete=True,
        can_cleanup_orphans=True,
        restricted=False,
        max_deletions_per_minute=10,
    ),
}


def tier_for_role(role: str) -> RoleTier:
    return _ROLE_ALIASES.get(role.strip().lower(), RoleTier.STANDARD)


class PermissionScopeResolver:
    """Derives a :class:`PermissionScope` from the caller identity.  Pure."""

    def __init__(self, tiers: dict[RoleTier, TierPolicy] | None = None) -> None:
        self._tiers = tiers or BUILTIN_TIERS

    def resolve(self, identity: CallerIdentity | None) -> PermissionScope | None:
        if identity is None or not identity.is_authenticated:
            return None

        tier = tier_for_role(identity.role)
        policy = self._tiers[tier]
        elevated = tier is not RoleTier.STANDARD

        restrictions: frozenset[str] = frozenset()
        if policy.restricted:
            restrictions = frozenset({identity.user_id}) | identity.accessible_entity_ids

        return PermissionScope(
            can_delete_own=elevated or PERMISSION_DELETE in identity.permissions,
            can_delete_any=policy.can_delete_any,
            can_bulk_delete=policy.can_bulk_delete and PERMISSION_BULK in identity.permissions,
            can_cascade_delete=policy.can_cascade_delete,
            can_cleanup_orphans=policy.can_cleanup_orphans,
            entity_restrictions=restrictions,
            max_deletions_per_minute=policy.max_deletions_per_minute,
        )
