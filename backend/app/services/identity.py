"""Bearer-token identity resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

ADMIN_ROLE = "admin"
DEV_IDENTITY_ID = "dev-admin"


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class TokenIdentityService:
    """Maps opaque bearer tokens to identities configured as ``"user_id:role"``.

    With no tokens configured and ``allow_anonymous`` set, every request is
    treated as a local administrator.
    """

    def __init__(self, tokens: Mapping[str, str], *, allow_anonymous: bool = False) -> None:
        self._tokens = dict(tokens)
        self._allow_anonymous = allow_anonymous and not self._tokens

    def authenticate(self, token: str | None) -> Identity | None:
        if self._allow_anonymous:
            return Identity(user_id=DEV_IDENTITY_ID, role=ADMIN_ROLE)
        if not token:
            return None
        entry = self._tokens.get(token)
        if entry is None:
            return None
        user_id, _, role = entry.partition(":")
        return Identity(user_id=user_id, role=role or "viewer")
