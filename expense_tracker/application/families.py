"""Family use cases - shared groups of users"""
from sqlalchemy.orm import Session

from expense_tracker.domain.errors import ValidationError, NotFoundError, PermissionDenied
from expense_tracker.infrastructure.auditlog.repository import AuditLogRepository
from expense_tracker.infrastructure.db.models import FamilyModel, FamilyMemberModel, User

ROLES = ("admin", "parent", "child")
APPROVER_ROLES = ("admin", "parent")


def get_active_membership(db: Session, family_id: int, user_id: int) -> FamilyMemberModel | None:
    return db.query(FamilyMemberModel).filter(
        FamilyMemberModel.family_id == family_id,
        FamilyMemberModel.user_id == user_id,
        FamilyMemberModel.is_active == True,  # noqa: E712
    ).first()


def require_member(db: Session, family_id: int, user_id: int) -> FamilyMemberModel:
    member = get_active_membership(db, family_id, user_id)
    if not member:
        raise PermissionDenied(f"user {user_id} is not a member of family {family_id}")
    return member


def can_approve(db: Session, family_id: int, user_id: int) -> bool:
    member = get_active_membership(db, family_id, user_id)
    return member is not None and member.role in APPROVER_ROLES


class CreateFamilyUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, admin_user_id: int, name: str) -> int:
        name = name.strip()
        if not name:
            raise ValidationError("family name cannot be empty")
        if not self.db.get(User, admin_user_id):
            raise NotFoundError(f"user {admin_user_id} not found")
        existing = self.db.query(FamilyMemberModel).filter(
            FamilyMemberModel.user_id == admin_user_id,
            FamilyMemberModel.is_active == True,  # noqa: E712
        ).first()
        if existing:
            raise ValidationError("user already belongs to a family")

        family = FamilyModel(name=name, admin_user_id=admin_user_id)
        self.db.add(family)
        self.db.flush()
        self.db.add(FamilyMemberModel(family_id=family.id, user_id=admin_user_id, role="admin"))
        self.audit.append(
            "Family", family.id, "CREATE", {"name": name},
            user_id=admin_user_id, family_id=family.id,
        )
        self.db.commit()
        return family.id


class AddFamilyMemberUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, user_id: int, role: str, actor_user_id: int) -> int:
        if role not in ROLES:
            raise ValidationError(f"unknown role: {role}")
        family = self.db.get(FamilyModel, family_id)
        if not family or not family.is_active:
            raise NotFoundError(f"family {family_id} not found")
        if not can_approve(self.db, family_id, actor_user_id):
            raise PermissionDenied("only admins and parents can add members")
        if not self.db.get(User, user_id):
            raise NotFoundError(f"user {user_id} not found")

        other = self.db.query(FamilyMemberModel).filter(
            FamilyMemberModel.user_id == user_id,
            FamilyMemberModel.family_id != family_id,
            FamilyMemberModel.is_active == True,  # noqa: E712
        ).first()
        if other:
            raise ValidationError("user already belongs to another family")

        member = self.db.query(FamilyMemberModel).filter(
            FamilyMemberModel.family_id == family_id,
            FamilyMemberModel.user_id == user_id,
        ).first()
        if member and member.is_active:
            raise ValidationError("user is already a member")
        if member:
            member.is_active = True
            member.role = role
            action = "RESTORE"
        else:
            member = FamilyMemberModel(family_id=family_id, user_id=user_id, role=role)
            self.db.add(member)
            action = "UPDATE"
        self.db.flush()
        self.audit.append(
            "Family", family_id, action, {"member_user_id": user_id, "role": role},
            user_id=actor_user_id, family_id=family_id,
        )
        self.db.commit()
        return member.id


class RemoveFamilyMemberUseCase:
    """Deactivates a membership; the row is kept for history."""
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, user_id: int, actor_user_id: int) -> None:
        family = self.db.get(FamilyModel, family_id)
        if not family:
            raise NotFoundError(f"family {family_id} not found")
        if actor_user_id != user_id and not can_approve(self.db, family_id, actor_user_id):
            raise PermissionDenied("only admins and parents can remove members")
        if user_id == family.admin_user_id:
            raise ValidationError("the family admin cannot be removed")

        member = get_active_membership(self.db, family_id, user_id)
        if not member:
            raise NotFoundError(f"user {user_id} is not an active member")
        member.is_active = False
        self.audit.append(
            "Family", family_id, "UPDATE", {"removed_user_id": user_id},
            user_id=actor_user_id, family_id=family_id,
        )
        self.db.commit()
