"""
Admin authentication seam.

Session/JWT mechanics belong to the admin-auth subsystem; this module only
defines the contract the API layer depends on:

    authenticator.authenticate(request) -> AuthResult
    has_role(user, minimum_role) -> bool

The bundled ``TokenAuthenticator`` resolves static bearer tokens from
``settings.ADMIN_API_TOKENS`` and is swapped out through FastAPI dependency
overrides wherever a real identity provider is wired in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Protocol

from starlette.requests import Request

logger = logging.getLogger(__name__)


class AdminRole(str, Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {AdminRole.USER: 1, AdminRole.MODERATOR: 2, AdminRole.ADMIN: 3}


@dataclass(frozen=True)
class AdminUser:
    id: str
    email: str
    role: AdminRole
    is_active: bool = True


@dataclass(frozen=True)
class AuthResult:
    success: bool
    user: Optional[AdminUser] = None
    error: Optional[str] = None

    @classmethod
    def denied(cls, error: str) -> "AuthResult":
        return cls(success=False, error=error)


class AdminAuthenticator(Protocol):
    async def authenticate(self, request: Request) -> AuthResult: ...


def has_role(user: Optional[AdminUser], minimum_role: AdminRole) -> bool:
    """True when ``user`` is active and ranks at or above ``minimum_role``."""
    if user is None or not user.is_active:
        return False
    return user.role.rank >= minimum_role.rank


class TokenAuthenticator:
    """Resolve ``Authorization: Bearer <token>`` against a static token table."""

    def __init__(self, tokens: Mapping[str, Mapping[str, str]]):
        self._users: Dict[str, AdminUser] = {}
        for token, info in tokens.items():
            try:
                role = AdminRole(info.get("role", "USER").upper())
            except ValueError:
                logger.warning("Ignoring admin token with unknown role %r", info.get("role"))
                continue
            self._users[token] = AdminUser(
                id=info.get("id", ""),
                email=info.get("email", ""),
                role=role,
            )

    async def authenticate(self, request: Request) -> AuthResult:
        header = request.headers.get("Authorization")
        if not header:
            return AuthResult.denied("Authorization header is required")

        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return AuthResult.denied("Invalid authorization header")

        user = self._users.get(token.strip())
        if user is None:
            return AuthResult.denied("Invalid or expired token")
        if not user.is_active:
            return AuthResult.denied("Admin user not found or inactive")
        return AuthResult(success=True, user=user)
