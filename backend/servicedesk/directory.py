"""Branch directory and identity context backed by the database."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .domain import Branch, Principal


def principal_from_user(user: models.User) -> Principal:
    return Principal(
        id=user.id,
        role=user.role,
        branch_id=user.branch_id,
        department_id=user.department_id,
        is_authorized_reviewer=bool(user.is_authorized_reviewer),
        is_active=bool(user.is_active),
        name=user.name or "",
    )


class SqlBranchDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_branch(self, branch_id: UUID) -> Branch | None:
        row = self.db.query(models.Branch).filter(models.Branch.id == branch_id).first()
        if row is None:
            return None
        return Branch(
            id=row.id,
            code=row.code,
            kind=row.kind,
            is_active=bool(row.is_active),
            name=row.name,
            parent_id=row.parent_id,
        )

    def is_active(self, branch_id: UUID) -> bool:
        branch = self.get_branch(branch_id)
        return branch is not None and branch.is_active


class SqlIdentityContext:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_principal(self, user_id: UUID) -> Principal | None:
        user = self.db.query(models.User).filter(models.User.id == user_id).first()
        return principal_from_user(user) if user else None
