"""Unit tests — PermissionScopeResolver and role tiers."""

from __future__ import annotations

import pytest

from deletion_guard.security.identity import CallerIdentity
from deletion_guard.security.models import DeletionScope
from deletion_guard.security.profiles import PermissionScopeResolver, RoleTier, tier_for_role

pytestmark = pytest.mark.unit

_FIELDS = (
    "can_delete_own",
    "can_delete_any",
    "can_bulk_delete",
    "can_cascade_delete",
    "can_cleanup_orphans",
)


@pytest.fixture
def resolver() -> PermissionScopeResolver:
    return PermissionScopeResolver()


class TestTierForRole:
    @pytest.mark.parametrize(
        "role,tier",
        [
            ("admin", RoleTier.ADMIN),
            (" Admin ", RoleTier.ADMIN),
            ("מנהל", RoleTier.ADMIN),
            ("super_admin", RoleTier.SUPER_ADMIN),
            ("מנהל עליון", RoleTier.SUPER_ADMIN),
            ("teacher", RoleTier.STANDARD),
            ("", RoleTier.STANDARD),
        ],
    )
    def test_aliases(self, role: str, tier: RoleTier) -> None:
        assert tier_for_role(role) is tier


class TestResolve:
    def test_unauthenticated_has_no_scope(self, resolver) -> None:
        assert resolver.resolve(None) is None
        anon = CallerIdentity(user_id="x", is_authenticated=False)
        assert resolver.resolve(anon) is None

    def test_standard_is_restricted_to_own_entities(self, resolver, standard_identity) -> None:
        scope = resolver.resolve(standard_identity)
        assert scope is not None
        assert scope.can_delete_own
        assert not scope.can_delete_any
        assert not scope.can_bulk_delete
        assert scope.entity_restrictions == frozenset({"teacher-1", "stu-1", "stu-2"})
        assert scope.max_deletions_per_minute == 2
        assert scope.can_target("stu-1")
        assert not scope.can_target("stu-3")

    def test_standard_without_permission_cannot_delete(self, resolver) -> None:
        scope = resolver.resolve(CallerIdentity(user_id="t", role="teacher"))
        assert scope is not None
        assert not scope.allows(DeletionScope.SINGLE)

    def test_admin(self, resolver, admin_identity) -> None:
        scope = resolver.resolve(admin_identity)
        assert scope.can_delete_any and scope.can_bulk_delete
        assert not scope.can_cascade_delete
        assert scope.entity_restrictions == frozenset()
        assert scope.can_target("anything")
        assert scope.max_deletions_per_minute == 5

    def test_admin_bulk_requires_permission(self, resolver) -> None:
        scope = resolver.resolve(CallerIdentity(user_id="a", role="admin"))
        assert scope.can_delete_own
        assert not scope.can_bulk_delete

    def test_super_admin(self, resolver, super_admin_identity) -> None:
        scope = resolver.resolve(super_admin_identity)
        assert all(getattr(scope, f) for f in _FIELDS)
        assert scope.max_deletions_per_minute == 10

    @pytest.mark.parametrize(
        "permissions",
        [frozenset(), frozenset({"delete_student"}), frozenset({"delete_student", "bulk_operations"})],
    )
    def test_tiers_are_monotonic(self, resolver, permissions) -> None:
        scopes = [
            resolver.resolve(CallerIdentity(user_id="u", role=role, permissions=permissions))
            for role in ("teacher", "admin", "super_admin")
        ]
        for lower, higher in zip(scopes, scopes[1:]):
            for f in _FIELDS:
                assert getattr(higher, f) >= getattr(lower, f)
