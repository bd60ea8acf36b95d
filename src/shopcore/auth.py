"""
Principals and role checks.

Authentication itself is an external collaborator: an ``Authenticator``
turns a bearer token into a ``Principal``. Every mutating core operation
receives the principal explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable
from uuid import UUID

from shopcore.exceptions import ForbiddenError

logger = logging.getLogger(__name__)


class Role(StrEnum):
    """Roles a principal can act in."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """
    The authenticated actor of a request.

    Attributes:
        id: User ID
        role: Role the user acts in
    """

    id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_role(principal: Principal, *roles: Role) -> None:
    """
    Raise ForbiddenError unless the principal holds one of ``roles``.

    Example:
        >>> require_role(principal, Role.SELLER, Role.ADMIN)
    """
    if principal.role not in roles:
        logger.warning(
            "Principal %s with role %s denied, requires one of %s",
            principal.id,
            principal.role,
            [str(r) for r in roles],
            extra={"actor_id": str(principal.id), "role": str(principal.role)},
        )
        raise ForbiddenError(
            f"Role '{principal.role}' may not perform this operation",
            required=[str(r) for r in roles],
        )


def require_owner_or_admin(principal: Principal, *owner_ids: UUID | None) -> None:
    """Raise ForbiddenError unless the principal is an admin or one of the owners."""
    if principal.is_admin or principal.id in owner_ids:
        return
    logger.warning(
        "Principal %s is not an owner",
        principal.id,
        extra={"actor_id": str(principal.id), "role": str(principal.role)},
    )
    raise ForbiddenError("Not permitted to access this resource")


@runtime_checkable
class Authenticator(Protocol):
    """Resolves a bearer token into a principal."""

    async def authenticate(self, token: str) -> Principal | None:
        """
        Resolve a token.

        Returns:
            The principal, or None if the token is unknown or invalid
        """
        ...


class StaticTokenAuthenticator:
    """
    Authenticator backed by a fixed token table, for development and tests.

    Example:
        >>> auth = StaticTokenAuthenticator({"admin-token": Principal(admin_id, Role.ADMIN)})
    """

    def __init__(self, tokens: dict[str, Principal] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def register(self, token: str, principal: Principal) -> None:
        self._tokens[token] = principal

    async def authenticate(self, token: str) -> Principal | None:
        return self._tokens.get(token)


__all__ = [
    "Role",
    "Principal",
    "require_role",
    "require_owner_or_admin",
    "Authenticator",
    "StaticTokenAuthenticator",
]
