"""
Recurring expenses - templates and the due-processing engine.

The engine turns each due template into exactly one expense per pass:
materialize + advance run in one transaction, and the template UPDATE is
guarded by its version column (SQLAlchemy version_id_col). If another worker
advanced the template first, the UPDATE matches no row, the transaction is
rolled back and the template is reported as a conflict.

A template that is several periods behind gets one occurrence per pass and
stays due, so consecutive passes catch it up oldest-first.
"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError, ObjectDeletedError

from expense_tracker.application.budgets import BudgetService
from expense_tracker.application.expenses import expense_snapshot
from expense_tracker.application.families import require_member
from expense_tracker.application.notifications import NotificationService
from expense_tracker.domain.errors import ValidationError, NotFoundError, PermissionDenied
from expense_tracker.domain.recurrence import (
    compute_next_occurrence, validate_pattern, monthly_equivalent,
)
from expense_tracker.domain.split import normalize_shares
from expense_tracker.infrastructure.auditlog.repository import AuditLogRepository
from expense_tracker.infrastructure.db.models import RecurringExpenseModel, ExpenseModel
from expense_tracker.infrastructure.db.session import versioned_write
from expense_tracker.utils.dates import utcnow

logger = logging.getLogger(__name__)

OUTCOME_MATERIALIZED = "materialized"
OUTCOME_CONFLICT = "conflict"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_FAILED = "failed"


@dataclass
class ProcessOutcome:
    template_id: int
    outcome: str
    expense_id: int | None = None
    error: str | None = None


@dataclass
class UpcomingRecurring:
    template_id: int
    amount: Decimal
    category: str
    description: str
    pattern: str
    next_occurrence: datetime
    days_until: int


@dataclass
class RecurringStatistics:
    total_recurring: int = 0
    total_monthly_amount: Decimal = Decimal("0")
    by_category: list[dict] = field(default_factory=list)


def template_snapshot(template: RecurringExpenseModel) -> dict:
    return {
        "amount": str(template.amount),
        "category": template.category,
        "description": template.description,
        "pattern": template.pattern,
        "split_type": template.split_type,
        "shared_with": template.shared_with,
        "auto_approve": template.auto_approve,
        "end_date": template.end_date.isoformat() if template.end_date else None,
        "max_occurrences": template.max_occurrences,
        "next_occurrence": template.next_occurrence.isoformat(),
        "is_active": template.is_active,
    }


def _deactivate_if_finished(template: RecurringExpenseModel) -> None:
    if template.max_occurrences is not None and template.occurrence_count >= template.max_occurrences:
        template.is_active = False
    if template.end_date is not None and template.next_occurrence > template.end_date:
        template.is_active = False


class RecurringExpenseEngine:
    def __init__(
        self,
        db: Session,
        notifier: NotificationService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.audit = AuditLogRepository(db)
        self.budgets = BudgetService(db)
        self.notifier = notifier or NotificationService(db)
        self.clock = clock

    def compute_next_occurrence(self, template: RecurringExpenseModel) -> datetime:
        return compute_next_occurrence(template)

    def find_due(self, as_of: datetime | None = None) -> list[RecurringExpenseModel]:
        """Active templates due at as_of, earliest first."""
        as_of = as_of or self.clock()
        return self.db.query(RecurringExpenseModel).filter(
            RecurringExpenseModel.is_active == True,  # noqa: E712
            RecurringExpenseModel.next_occurrence <= as_of,
        ).order_by(
            RecurringExpenseModel.next_occurrence.asc(),
            RecurringExpenseModel.id.asc(),
        ).all()

    def materialize(self, template: RecurringExpenseModel, now: datetime | None = None) -> ExpenseModel:
        """
        Create the expense for the template's current occurrence (flush, no commit)

        Amount, category, description and split are copied from the template
        as they are now. The expense is dated at processing time.

        Raises:
            ValidationError: the template's split data is malformed
        """
        now = now or self.clock()
        shares = normalize_shares(template.split_type, Decimal(template.amount), template.shared_with)
        for share in shares:
            share["is_paid"] = False

        expense = ExpenseModel(
            user_id=template.user_id,
            paid_by=template.paid_by,
            family_id=template.family_id,
            expense_type=template.expense_type,
            amount=template.amount,
            category=template.category,
            expense_date=now,
            description=template.description,
            split_type=template.split_type,
            shared_with=shares,
            recurring_expense_id=template.id,
            approval_status="approved" if template.auto_approve else "pending",
            is_deleted=False,
        )
        self.db.add(expense)
        self.db.flush()
        return expense

    def advance(self, template: RecurringExpenseModel, now: datetime | None = None) -> None:
        """Move the template past the occurrence just materialized (in memory)."""
        template.last_processed = now or self.clock()
        template.occurrence_count += 1
        template.next_occurrence = compute_next_occurrence(template)
        _deactivate_if_finished(template)

    def process_due(self, as_of: datetime | None = None) -> list[ProcessOutcome]:
        """
        Materialize one occurrence of every due template.

        Each template is its own transaction; failures are recorded per item
        and never abort the pass. Always returns one outcome per due template.
        """
        as_of = as_of or self.clock()
        due = self.find_due(as_of)
        outcomes = []

        for template in due:
            # identity only, no attribute load: the row may already be gone
            template_id = inspect(template).identity[0]
            outcome = self._process_one(template, template_id, as_of)
            outcomes.append(outcome)

        if outcomes:
            logger.info(
                "Processed %d/%d recurring expenses",
                sum(1 for o in outcomes if o.outcome == OUTCOME_MATERIALIZED), len(outcomes),
            )
        return outcomes

    def _process_one(self, template: RecurringExpenseModel, template_id: int, as_of: datetime) -> ProcessOutcome:
        try:
            # Attributes may have been reloaded after an earlier commit/rollback
            if not template.is_active or template.next_occurrence > as_of:
                return ProcessOutcome(template_id, OUTCOME_CONFLICT)

            now = self.clock()
            expense = self.materialize(template, now)
            self.advance(template, now)
            self.db.flush()  # versioned UPDATE of the template

            triggered = self.budgets.apply_expense(expense)
            self.audit.append(
                "RecurringExpense", template_id, "MATERIALIZE",
                {"expense_id": expense.id, "next_occurrence": template.next_occurrence.isoformat()},
                family_id=template.family_id, occurred_at=now,
            )
            self.audit.append(
                "Expense", expense.id, "CREATE", expense_snapshot(expense),
                family_id=expense.family_id, occurred_at=now,
            )
            if not template.is_active:
                self.audit.append(
                    "RecurringExpense", template_id, "DEACTIVATE",
                    {"occurrence_count": template.occurrence_count},
                    family_id=template.family_id, occurred_at=now,
                )
            self.db.commit()
        except ObjectDeletedError:
            self.db.rollback()
            logger.warning("Recurring expense %d vanished during processing", template_id)
            return ProcessOutcome(template_id, OUTCOME_NOT_FOUND)
        except StaleDataError:
            self.db.rollback()
            if self.db.get(RecurringExpenseModel, template_id) is None:
                logger.warning("Recurring expense %d vanished during processing", template_id)
                return ProcessOutcome(template_id, OUTCOME_NOT_FOUND)
            logger.info("Recurring expense %d already advanced by another worker", template_id)
            return ProcessOutcome(template_id, OUTCOME_CONFLICT)
        except Exception as e:
            self.db.rollback()
            logger.exception("Recurring expense processing failed for template_id=%d", template_id)
            return ProcessOutcome(template_id, OUTCOME_FAILED, error=str(e))

        self._notify(expense, triggered)
        return ProcessOutcome(template_id, OUTCOME_MATERIALIZED, expense_id=expense.id)

    def _notify(self, expense: ExpenseModel, triggered: list) -> None:
        try:
            for budget in triggered:
                self.notifier.send_budget_alert(budget)
            if expense.approval_status == "pending":
                self.notifier.send_approval_request(expense)
        except Exception:
            logger.exception("Notification failed for expense_id=%d", expense.id)


class CreateRecurringExpenseUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        user_id: int,
        amount: Decimal,
        category: str,
        pattern: str,
        start_date: datetime,
        description: str = "",
        end_date: datetime | None = None,
        expense_type: str = "personal",
        family_id: int | None = None,
        paid_by: int | None = None,
        split_type: str = "full",
        shared_with: list | None = None,
        auto_approve: bool = True,
        max_occurrences: int | None = None,
    ) -> int:
        category = category.strip()
        if not category:
            raise ValidationError("category cannot be empty")
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("amount must be greater than zero")
        validate_pattern(pattern)
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        if max_occurrences is not None and max_occurrences < 1:
            raise ValidationError("max_occurrences must be >= 1 when set")
        if expense_type == "family":
            if family_id is None:
                raise ValidationError("family_id required for family expenses")
            require_member(self.db, family_id, user_id)
        elif expense_type == "personal":
            family_id = None
        else:
            raise ValidationError(f"unknown expense type: {expense_type}")

        shares = normalize_shares(split_type, amount, shared_with)

        template = RecurringExpenseModel(
            user_id=user_id,
            paid_by=paid_by or user_id,
            family_id=family_id,
            expense_type=expense_type,
            amount=amount,
            category=category,
            description=description.strip(),
            pattern=pattern,
            start_date=start_date,
            end_date=end_date,
            next_occurrence=start_date,
            split_type=split_type,
            shared_with=shares,
            auto_approve=auto_approve,
            is_active=True,
            occurrence_count=0,
            max_occurrences=max_occurrences,
        )
        self.db.add(template)
        self.db.flush()
        self.audit.append(
            "RecurringExpense", template.id, "CREATE", template_snapshot(template),
            user_id=user_id, family_id=family_id,
        )
        self.db.commit()
        return template.id


def _load_owned_template(db: Session, template_id: int, actor_user_id: int) -> RecurringExpenseModel:
    template = db.get(RecurringExpenseModel, template_id)
    if not template:
        raise NotFoundError(f"recurring expense {template_id} not found")
    if template.user_id != actor_user_id:
        raise PermissionDenied("not your recurring expense")
    return template


class UpdateRecurringExpenseUseCase:
    """Edits affect future occurrences only; materialized expenses keep their copy."""

    ALLOWED = ("amount", "category", "description", "split_type", "shared_with",
               "auto_approve", "end_date", "max_occurrences")

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, template_id: int, actor_user_id: int, **changes) -> None:
        template = _load_owned_template(self.db, template_id, actor_user_id)
        if not template.is_active:
            raise ValidationError("a deactivated recurring expense cannot be edited")
        unknown = set(changes) - set(self.ALLOWED)
        if unknown:
            raise ValidationError(f"cannot change: {', '.join(sorted(unknown))}")

        amount = Decimal(changes.get("amount", template.amount))
        if amount <= 0:
            raise ValidationError("amount must be greater than zero")
        if "category" in changes and not changes["category"].strip():
            raise ValidationError("category cannot be empty")
        end_date = changes.get("end_date", template.end_date)
        if end_date is not None and end_date < template.start_date:
            raise ValidationError("end_date must not be before start_date")
        max_occurrences = changes.get("max_occurrences", template.max_occurrences)
        if max_occurrences is not None and max_occurrences < 1:
            raise ValidationError("max_occurrences must be >= 1 when set")
        split_type = changes.get("split_type", template.split_type)
        shares = normalize_shares(split_type, amount, changes.get("shared_with", template.shared_with))

        template.amount = amount
        template.category = changes.get("category", template.category).strip()
        template.description = changes.get("description", template.description).strip()
        template.split_type = split_type
        template.shared_with = shares
        template.auto_approve = changes.get("auto_approve", template.auto_approve)
        template.end_date = end_date
        template.max_occurrences = max_occurrences
        _deactivate_if_finished(template)

        with versioned_write(self.db, f"recurring expense {template_id}"):
            self.audit.append(
                "RecurringExpense", template.id, "UPDATE", template_snapshot(template),
                user_id=actor_user_id, family_id=template.family_id,
            )
            self.db.commit()


class DeactivateRecurringExpenseUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, template_id: int, actor_user_id: int) -> None:
        template = _load_owned_template(self.db, template_id, actor_user_id)
        if not template.is_active:
            return
        with versioned_write(self.db, f"recurring expense {template_id}"):
            template.is_active = False
            self.audit.append(
                "RecurringExpense", template.id, "DEACTIVATE", {},
                user_id=actor_user_id, family_id=template.family_id,
            )
            self.db.commit()


def preview_upcoming(
    db: Session, user_id: int, days: int = 30, as_of: datetime | None = None,
) -> list[UpcomingRecurring]:
    """Active templates of a user coming due within `days`, soonest first."""
    as_of = as_of or utcnow()
    horizon = as_of + timedelta(days=days)
    templates = db.query(RecurringExpenseModel).filter(
        RecurringExpenseModel.user_id == user_id,
        RecurringExpenseModel.is_active == True,  # noqa: E712
        RecurringExpenseModel.next_occurrence <= horizon,
    ).order_by(RecurringExpenseModel.next_occurrence.asc()).all()

    return [
        UpcomingRecurring(
            template_id=t.id,
            amount=t.amount,
            category=t.category,
            description=t.description,
            pattern=t.pattern,
            next_occurrence=t.next_occurrence,
            days_until=math.ceil((t.next_occurrence - as_of).total_seconds() / 86400),
        )
        for t in templates
    ]


def get_recurring_statistics(db: Session, user_id: int) -> RecurringStatistics:
    """Count and monthly-equivalent cost of a user's active templates."""
    templates = db.query(RecurringExpenseModel).filter(
        RecurringExpenseModel.user_id == user_id,
        RecurringExpenseModel.is_active == True,  # noqa: E712
    ).order_by(RecurringExpenseModel.id).all()

    stats = RecurringStatistics()
    per_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for t in templates:
        monthly = Decimal(monthly_equivalent(Decimal(t.amount), t.pattern))
        stats.total_recurring += 1
        stats.total_monthly_amount += monthly
        per_category[t.category] += monthly

    stats.total_monthly_amount = stats.total_monthly_amount.quantize(Decimal("0.01"))
    stats.by_category = [
        {"category": cat, "monthly_amount": amt.quantize(Decimal("0.01"))}
        for cat, amt in sorted(per_category.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    return stats
