"""Deletion Guard — Destructive-operation safety engine.

Decides whether a request to delete an entity (and everything cascading
from it) may proceed, throttles and audits such requests, escalates
verification for risky operations and orchestrates batch deletions.

Architecture layers (bottom to top):
    1. Security      — Permission scopes, rate limits, abuse heuristics, tokens, verification
    2. Cascade       — Client for the remote operation engine (preview / execute / poll)
    3. Orchestration — Sequential batch runs and rollback
    4. Service / CLI — DeletionSecurityService facade, operator CLI
"""

__version__ = "0.1.0"

from deletion_guard.config import Settings
from deletion_guard.security.manager import DeletionSecurityService

__all__ = [
    "__version__",
    "DeletionSecurityService",
    "Settings",
]
