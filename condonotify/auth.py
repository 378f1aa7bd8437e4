"""
File: condonotify/auth.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Bearer token -> principal, and the owner-or-administrator check.
Some targets also admit specific users (the resident who filed an
occurrence defense may trigger the síndico notification).

Tokens are issued by the platform auth service; this module only reads
access_tokens and user_roles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Iterable, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from condonotify.db import get_db
from condonotify.models import AccessToken, UserRole

ROLE_SUPER_ADMIN = "super_admin"


@dataclass(frozen=True)
class Principal:
    user_id: UUID
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_super_admin(self) -> bool:
        return ROLE_SUPER_ADMIN in self.roles

    def can_manage(self, owner_id: Optional[UUID], allowed_user_ids: Iterable[UUID] = ()) -> bool:
        if self.is_super_admin:
            return True
        if owner_id is not None and owner_id == self.user_id:
            return True
        return self.user_id in allowed_user_ids


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(db: Session, authorization: Optional[str]) -> Optional[Principal]:
    token = bearer_token(authorization)
    if not token:
        return None

    row = db.get(AccessToken, token)
    if row is None:
        return None

    if row.expires_at is not None:
        expires_at = row.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            return None

    roles = db.query(UserRole.role).filter(UserRole.user_id == row.user_id).all()
    return Principal(user_id=row.user_id, roles=frozenset(r.role for r in roles))


def require_super_admin(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Principal:
    """FastAPI dependency guarding the admin router."""
    principal = authenticate(db, authorization)
    if principal is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not principal.is_super_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return principal
