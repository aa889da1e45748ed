"""Security layer — Identity collaborator contract.

Authentication lives outside the engine.  The engine only needs to know who
the caller is, obtain a bearer credential for the operation engine, and ask
the identity service to confirm step-up proofs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: str = ""
    permissions: frozenset[str] = field(default_factory=frozenset)
    accessible_entity_ids: frozenset[str] = field(default_factory=frozenset)
    is_authenticated: bool = True


@runtime_checkable
class IdentityProvider(Protocol):
    def current_identity(self) -> CallerIdentity | None: ...

    def get_bearer_token(self) -> str | None: ...

    async def validate_session(self) -> bool: ...

    async def verify_password(self, password: str) -> bool: ...

    async def verify_biometric(self, payload: Any) -> bool: ...


class StaticIdentityProvider:
    """Fixed identity and token.  Used by the CLI and in tests."""

    def __init__(
        self,
        identity: CallerIdentity | None = None,
        token: str | None = None,
        *,
        password: str | None = None,
        session_valid: bool = True,
    ) -> None:
        self._identity = identity
        self._token = token
        self._password = password
        self._session_valid = session_valid

    def current_identity(self) -> CallerIdentity | None:
        return self._identity

    def get_bearer_token(self) -> str | None:
        return self._token

    async def validate_session(self) -> bool:
        return self._session_valid and self._identity is not None

    async def verify_password(self, password: str) -> bool:
        return self._password is not None and password == self._password

    async def verify_biometric(self, payload: Any) -> bool:
        return False
