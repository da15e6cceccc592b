"""Caller resolution -- FastAPI dependencies for identity, role and engine.

Identity is asserted by the upstream gateway that terminates authentication:

1. ``X-User-Id`` and ``X-User-Role`` for signed-in users
2. ``X-Session-Token`` for anonymous visitors

The headers are trusted as-is; this service never issues or checks sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from civicguard.config import load_config
from civicguard.engine import CivicGuardEngine
from civicguard.identity import Anonymous, Identity, Registered, Role, has_role

# Shared engine instance
_engine: Optional[CivicGuardEngine] = None


def get_engine() -> CivicGuardEngine:
    """Return the singleton engine, configured from ``CIVICGUARD_CONFIG``."""
    global _engine
    if _engine is None:
        _engine = CivicGuardEngine(load_config())
    return _engine


@dataclass(frozen=True)
class Caller:
    """Who is making the request."""

    identity: Optional[Identity] = None
    role: Role = Role.citizen

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if isinstance(self.identity, Registered) else None


async def get_caller(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    x_session_token: Optional[str] = Header(None, alias="X-Session-Token"),
) -> Caller:
    """Resolve the caller; anonymous callers without a token get no identity."""
    if x_user_id:
        try:
            role = Role(x_user_role) if x_user_role else Role.citizen
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role '{x_user_role}'",
            ) from None
        return Caller(identity=Registered(x_user_id), role=role)
    if x_session_token:
        return Caller(identity=Anonymous(x_session_token))
    return Caller()


def require_identity(caller: Caller) -> Identity:
    """Return the caller's identity or raise ``401``."""
    if caller.identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="A signed-in user or session token is required",
        )
    return caller.identity


def require_role(caller: Caller, role: Role) -> str:
    """Validate that a signed-in caller holds at least *role*; returns the user id.

    Raises ``401`` for anonymous callers and ``403`` for insufficient roles.
    """
    if caller.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    if not has_role(caller.role, role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires role '{role.value}' or higher",
        )
    return caller.user_id
