"""
Expense use cases - ad-hoc entries, approval workflow, soft delete, reports.

Budgets are updated by explicit calls to BudgetService when an expense is
created approved or becomes approved; nothing happens on flush.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from expense_tracker.application.budgets import BudgetService
from expense_tracker.application.families import require_member, can_approve
from expense_tracker.application.notifications import NotificationService
from expense_tracker.domain.errors import ValidationError, NotFoundError, PermissionDenied
from expense_tracker.domain.split import normalize_shares
from expense_tracker.infrastructure.auditlog.repository import AuditLogRepository
from expense_tracker.config import get_settings
from expense_tracker.infrastructure.db.models import ExpenseModel
from expense_tracker.infrastructure.db.session import versioned_write
from expense_tracker.utils.dates import utcnow
from expense_tracker.utils.money import CurrencyTable, currency_table_from_settings

logger = logging.getLogger(__name__)

EXPENSE_TYPES = ("personal", "family")


def expense_snapshot(expense: ExpenseModel) -> dict:
    """JSON-safe view of an expense for the audit log."""
    return {
        "amount": str(expense.amount),
        "category": expense.category,
        "expense_date": expense.expense_date.isoformat(),
        "description": expense.description,
        "expense_type": expense.expense_type,
        "split_type": expense.split_type,
        "shared_with": expense.shared_with,
        "approval_status": expense.approval_status,
        "recurring_expense_id": expense.recurring_expense_id,
    }


@dataclass
class CategoryTotal:
    category: str
    total: Decimal
    count: int
    avg_amount: Decimal


class CreateExpenseUseCase:
    def __init__(
        self,
        db: Session,
        notifier: NotificationService | None = None,
        currencies: CurrencyTable | None = None,
    ):
        self.db = db
        self.audit = AuditLogRepository(db)
        self.budgets = BudgetService(db)
        self.notifier = notifier or NotificationService(db)
        self.currencies = currencies or currency_table_from_settings(get_settings())

    def execute(
        self,
        user_id: int,
        amount: Decimal,
        category: str,
        expense_date: datetime | None = None,
        description: str = "",
        expense_type: str = "personal",
        family_id: int | None = None,
        paid_by: int | None = None,
        split_type: str = "full",
        shared_with: list | None = None,
        currency: str | None = None,
    ) -> int:
        category = category.strip()
        if not category:
            raise ValidationError("category cannot be empty")
        if expense_type not in EXPENSE_TYPES:
            raise ValidationError(f"unknown expense type: {expense_type}")

        amount = Decimal(amount)
        if currency and currency != self.currencies.base:
            amount = self.currencies.to_base(amount, currency)
        if amount <= 0:
            raise ValidationError("amount must be greater than zero")

        approval_status = "approved"
        if expense_type == "family":
            if family_id is None:
                raise ValidationError("family_id required for family expenses")
            member = require_member(self.db, family_id, user_id)
            if member.role == "child":
                approval_status = "pending"
        else:
            family_id = None

        shares = normalize_shares(split_type, amount, shared_with)

        expense = ExpenseModel(
            user_id=user_id,
            paid_by=paid_by or user_id,
            family_id=family_id,
            expense_type=expense_type,
            amount=amount,
            category=category,
            expense_date=expense_date or utcnow(),
            description=description.strip(),
            split_type=split_type,
            shared_with=shares,
            approval_status=approval_status,
            is_deleted=False,
        )
        self.db.add(expense)
        self.db.flush()

        triggered = self.budgets.apply_expense(expense)
        self.audit.append(
            "Expense", expense.id, "CREATE", expense_snapshot(expense),
            user_id=user_id, family_id=family_id,
        )
        self.db.commit()

        for budget in triggered:
            self.notifier.send_budget_alert(budget)
        if approval_status == "pending":
            self.notifier.send_approval_request(expense)
        return expense.id


def _load_expense(db: Session, expense_id: int) -> ExpenseModel:
    expense = db.get(ExpenseModel, expense_id)
    if not expense or expense.is_deleted:
        raise NotFoundError(f"expense {expense_id} not found")
    return expense


def _check_approver(db: Session, expense: ExpenseModel, approver_user_id: int) -> None:
    if expense.family_id is not None:
        if not can_approve(db, expense.family_id, approver_user_id):
            raise PermissionDenied("only admins and parents can approve family expenses")
    elif expense.user_id != approver_user_id:
        raise PermissionDenied("personal expenses are approved by their owner")


def get_visible_expense(db: Session, expense_id: int, viewer_user_id: int) -> ExpenseModel:
    """Expense as seen by its owner, payer, a share holder or a family member."""
    expense = _load_expense(db, expense_id)
    if viewer_user_id in (expense.user_id, expense.paid_by):
        return expense
    if any(s["user_id"] == viewer_user_id for s in expense.shared_with or []):
        return expense
    if expense.family_id is not None:
        require_member(db, expense.family_id, viewer_user_id)
        return expense
    raise PermissionDenied("not your expense")


class ApproveExpenseUseCase:
    def __init__(self, db: Session, notifier: NotificationService | None = None):
        self.db = db
        self.audit = AuditLogRepository(db)
        self.budgets = BudgetService(db)
        self.notifier = notifier or NotificationService(db)

    def execute(self, expense_id: int, approver_user_id: int) -> None:
        expense = _load_expense(self.db, expense_id)
        if expense.approval_status != "pending":
            raise ValidationError("only pending expenses can be approved")
        _check_approver(self.db, expense, approver_user_id)

        with versioned_write(self.db, f"expense {expense_id}"):
            expense.approval_status = "approved"
            expense.approved_by = approver_user_id
            expense.approved_at = utcnow()
            self.db.flush()

            triggered = self.budgets.apply_expense(expense)
            self.audit.append(
                "Expense", expense.id, "APPROVE", {"approved_by": approver_user_id},
                user_id=approver_user_id, family_id=expense.family_id,
            )
            self.db.commit()

        for budget in triggered:
            self.notifier.send_budget_alert(budget)


class RejectExpenseUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, expense_id: int, approver_user_id: int, reason: str | None = None) -> None:
        expense = _load_expense(self.db, expense_id)
        if expense.approval_status != "pending":
            raise ValidationError("only pending expenses can be rejected")
        _check_approver(self.db, expense, approver_user_id)

        with versioned_write(self.db, f"expense {expense_id}"):
            expense.approval_status = "rejected"
            expense.approved_by = approver_user_id
            expense.approved_at = utcnow()
            expense.rejection_reason = reason
            self.audit.append(
                "Expense", expense.id, "REJECT", {"reason": reason},
                user_id=approver_user_id, family_id=expense.family_id,
            )
            self.db.commit()


class SoftDeleteExpenseUseCase:
    """Marks an expense deleted. Budget counters are not rolled back."""
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, expense_id: int, actor_user_id: int) -> None:
        expense = _load_expense(self.db, expense_id)
        if expense.user_id != actor_user_id:
            if expense.family_id is None or not can_approve(self.db, expense.family_id, actor_user_id):
                raise PermissionDenied("cannot delete someone else's expense")

        with versioned_write(self.db, f"expense {expense_id}"):
            expense.is_deleted = True
            expense.deleted_at = utcnow()
            expense.deleted_by = actor_user_id
            self.audit.append(
                "Expense", expense.id, "SOFT_DELETE", {},
                user_id=actor_user_id, family_id=expense.family_id,
            )
            self.db.commit()


class MarkSplitPaidUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, expense_id: int, share_user_id: int, actor_user_id: int) -> None:
        expense = _load_expense(self.db, expense_id)
        if actor_user_id not in (expense.paid_by, share_user_id):
            raise PermissionDenied("only the payer or the share owner can settle a share")

        shares = [dict(s) for s in expense.shared_with or []]
        for share in shares:
            if share["user_id"] == share_user_id:
                share["is_paid"] = True
                break
        else:
            raise NotFoundError(f"no share for user {share_user_id}")

        with versioned_write(self.db, f"expense {expense_id}"):
            # JSON column: assign a new list so the change is detected
            expense.shared_with = shares
            self.audit.append(
                "Expense", expense.id, "UPDATE", {"share_paid": share_user_id},
                user_id=actor_user_id, family_id=expense.family_id,
            )
            self.db.commit()


def aggregate_by_category(
    db: Session,
    start: datetime,
    end: datetime,
    user_id: int | None = None,
    family_id: int | None = None,
) -> list[CategoryTotal]:
    """Approved, non-deleted totals per category in [start, end], largest first."""
    total = func.sum(ExpenseModel.amount)
    q = db.query(
        ExpenseModel.category,
        total.label("total"),
        func.count(ExpenseModel.id).label("count"),
    ).filter(
        ExpenseModel.expense_date >= start,
        ExpenseModel.expense_date <= end,
        ExpenseModel.approval_status == "approved",
        ExpenseModel.is_deleted == False,  # noqa: E712
    )
    if family_id is not None:
        q = q.filter(ExpenseModel.family_id == family_id)
    else:
        q = q.filter(ExpenseModel.user_id == user_id)

    rows = q.group_by(ExpenseModel.category).order_by(total.desc()).all()
    result = []
    for category, cat_total, count in rows:
        cat_total = Decimal(str(cat_total or 0)).quantize(Decimal("0.01"))
        result.append(CategoryTotal(
            category=category,
            total=cat_total,
            count=count,
            avg_amount=(cat_total / count).quantize(Decimal("0.01")) if count else Decimal("0"),
        ))
    return result
