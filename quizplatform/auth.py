"""Trusted identity for the calling principal.

An upstream identity provider has already verified credentials and forwards
the caller as ``X-User-Id`` / ``X-User-Role`` headers. Nothing here re-checks
them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from quizplatform.database import get_db
from quizplatform.errors import Forbidden, Unauthorized
from quizplatform.models import User

logger = logging.getLogger(__name__)

ROLES = ("admin", "learner")


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _ensure_user(db: Session, principal: Principal, display_name: str):
    user = db.query(User).filter(User.id == principal.user_id).first()
    if user:
        if user.role != principal.role:
            user.role = principal.role
            db.commit()
        return
    db.add(User(id=principal.user_id, role=principal.role, display_name=display_name or f"user-{principal.user_id}"))
    db.commit()
    logger.info("Provisioned user %s with role %s", principal.user_id, principal.role)


def get_principal(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Principal:
    if not x_user_id:
        raise Unauthorized("Missing caller identity")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise Unauthorized("Malformed caller identity") from exc
    role = (x_user_role or "learner").strip().lower()
    if role not in ROLES:
        raise Unauthorized(f"Unknown role {role!r}")

    principal = Principal(user_id=user_id, role=role)
    _ensure_user(db, principal, x_user_name or "")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal
