"""Caller identities and roles."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Role(str, Enum):
    """Role hierarchy: admin > authority > citizen."""

    admin = "admin"
    authority = "authority"
    citizen = "citizen"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 30,
            Role.authority: 20,
            Role.citizen: 10,
        }[self]


def has_role(role: Role, required: Role) -> bool:
    """Check if *role* meets or exceeds *required*."""
    role = role if isinstance(role, Role) else Role(role)
    return role.level >= required.level


@dataclass(frozen=True)
class Registered:
    """A signed-in user."""

    user_id: str

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class Anonymous:
    """An anonymous caller known only by an opaque session token."""

    session_token: str

    @property
    def key(self) -> str:
        return f"session:{self.session_token}"


Identity = Union[Registered, Anonymous]


def identity_from_key(key: str) -> Identity:
    """Inverse of ``Identity.key``."""
    kind, _, value = key.partition(":")
    if not value:
        raise ValueError(f"Malformed identity key: {key!r}")
    if kind == "user":
        return Registered(value)
    if kind == "session":
        return Anonymous(value)
    raise ValueError(f"Unknown identity kind in key: {key!r}")
