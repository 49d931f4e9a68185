"""
Budget use cases - persistence side of the budget aggregator.

Counters are never updated read-modify-write in Python: `spent` is incremented
with a single SQL UPDATE, the alert flag is claimed with a conditional UPDATE
on alert_sent = false, and period resets are guarded by the version column.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from expense_tracker.application.families import can_approve
from expense_tracker.domain.budget import (
    BudgetAggregator, BudgetState, period_window, validate_budget_params,
)
from expense_tracker.domain.errors import ValidationError, NotFoundError, PermissionDenied, ConcurrencyConflict
from expense_tracker.infrastructure.auditlog.repository import AuditLogRepository
from expense_tracker.infrastructure.db.models import BudgetModel, ExpenseModel
from expense_tracker.infrastructure.db.session import versioned_write
from expense_tracker.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class BudgetUtilization:
    budget_id: int
    category: str
    period: str
    limit_amount: Decimal
    spent: Decimal
    remaining: Decimal
    percent_used: Decimal
    is_exceeded: bool
    window_start: datetime
    window_end: datetime


@dataclass
class BudgetResetOutcome:
    budget_id: int
    outcome: str  # reset / conflict / failed
    limit_amount: Decimal | None = None
    error: str | None = None


class CreateBudgetUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        category: str,
        limit_amount: Decimal,
        period: str = "monthly",
        user_id: int | None = None,
        family_id: int | None = None,
        alert_threshold: int = 80,
        rollover: bool = False,
        window_start: datetime | None = None,
        actor_user_id: int | None = None,
    ) -> int:
        category = category.strip()
        if not category:
            raise ValidationError("category cannot be empty")
        if (user_id is None) == (family_id is None):
            raise ValidationError("a budget belongs to exactly one user or one family")
        limit_amount = Decimal(limit_amount)
        validate_budget_params(limit_amount, period, alert_threshold)

        if family_id is not None:
            actor = actor_user_id if actor_user_id is not None else user_id
            if actor is None or not can_approve(self.db, family_id, actor):
                raise PermissionDenied("only admins and parents can manage family budgets")

        start, end = period_window(period, window_start or utcnow())

        superseded = self._find_active(category, period, user_id, family_id)
        with versioned_write(self.db, f"{category} budget"):
            for old in superseded:
                old.is_active = False
                self.audit.append(
                    "Budget", old.id, "DEACTIVATE", {"reason": "superseded"},
                    user_id=actor_user_id, family_id=family_id,
                )

        budget = BudgetModel(
            user_id=user_id,
            family_id=family_id,
            category=category,
            limit_amount=limit_amount,
            spent=Decimal("0"),
            period=period,
            window_start=start,
            window_end=end,
            last_reset=start,
            alert_threshold=alert_threshold,
            alert_sent=False,
            rollover=rollover,
            is_active=True,
        )
        self.db.add(budget)
        self.db.flush()
        self.audit.append(
            "Budget", budget.id, "CREATE",
            {"category": category, "limit": str(limit_amount), "period": period},
            user_id=actor_user_id or user_id, family_id=family_id,
        )
        self.db.commit()
        return budget.id

    def _find_active(self, category, period, user_id, family_id) -> list[BudgetModel]:
        q = self.db.query(BudgetModel).filter(
            BudgetModel.category == category,
            BudgetModel.period == period,
            BudgetModel.is_active == True,  # noqa: E712
        )
        if family_id is not None:
            q = q.filter(BudgetModel.family_id == family_id)
        else:
            q = q.filter(BudgetModel.user_id == user_id, BudgetModel.family_id.is_(None))
        return q.all()


class DeactivateBudgetUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, budget_id: int, actor_user_id: int) -> None:
        budget = self.db.get(BudgetModel, budget_id)
        if not budget:
            raise NotFoundError(f"budget {budget_id} not found")
        if budget.family_id is not None:
            if not can_approve(self.db, budget.family_id, actor_user_id):
                raise PermissionDenied("only admins and parents can manage family budgets")
        elif budget.user_id != actor_user_id:
            raise PermissionDenied("not your budget")
        if not budget.is_active:
            return
        with versioned_write(self.db, f"budget {budget_id}"):
            budget.is_active = False
            self.audit.append(
                "Budget", budget.id, "DEACTIVATE", {},
                user_id=actor_user_id, family_id=budget.family_id,
            )
            self.db.commit()


class BudgetService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def matching_budgets(self, expense: ExpenseModel) -> list[BudgetModel]:
        """Active budgets whose category, owner and window cover the expense."""
        q = self.db.query(BudgetModel).filter(
            BudgetModel.category == expense.category,
            BudgetModel.is_active == True,  # noqa: E712
            BudgetModel.window_start <= expense.expense_date,
            BudgetModel.window_end > expense.expense_date,
        )
        if expense.family_id is not None:
            q = q.filter(BudgetModel.family_id == expense.family_id)
        else:
            q = q.filter(BudgetModel.user_id == expense.user_id, BudgetModel.family_id.is_(None))
        return q.order_by(BudgetModel.id).all()

    def apply_expense(self, expense: ExpenseModel) -> list[BudgetModel]:
        """
        Add an approved expense to every matching budget.

        Runs inside the caller's transaction (no commit). Returns the budgets
        whose alert was newly triggered by this expense; the caller notifies
        after committing.
        """
        if expense.approval_status != "approved" or expense.is_deleted:
            return []
        amount = Decimal(expense.amount)
        if amount <= 0:
            raise ValidationError("expense amount must be positive")

        triggered = []
        for budget in self.matching_budgets(expense):
            result = self.db.execute(
                update(BudgetModel)
                .where(BudgetModel.id == budget.id, BudgetModel.is_active == True)  # noqa: E712
                .values(spent=BudgetModel.spent + amount, version=BudgetModel.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # deactivated since matching_budgets() read it
                continue
            self.db.refresh(budget)
            if BudgetAggregator.should_alert(budget) and self._claim_alert(budget):
                triggered.append(budget)
        return triggered

    def _claim_alert(self, budget: BudgetModel) -> bool:
        """Set alert_sent only if nobody else did. True if this call won."""
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget.id, BudgetModel.alert_sent == False)  # noqa: E712
            .values(alert_sent=True, version=BudgetModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(budget)
        return result.rowcount == 1

    def reset_budget(self, budget: BudgetModel, as_of: datetime) -> bool:
        """
        Reset one budget if its window has ended. Commits.

        Raises:
            ConcurrencyConflict: the row changed since it was read
        """
        state = BudgetState(
            limit_amount=budget.limit_amount,
            spent=budget.spent,
            period=budget.period,
            window_start=budget.window_start,
            window_end=budget.window_end,
            alert_threshold=budget.alert_threshold,
            alert_sent=budget.alert_sent,
            rollover=budget.rollover,
            last_reset=budget.last_reset,
        )
        if not BudgetAggregator.reset_if_due(state, as_of):
            return False

        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget.id, BudgetModel.version == budget.version)
            .values(
                limit_amount=state.limit_amount,
                spent=state.spent,
                alert_sent=state.alert_sent,
                last_reset=state.last_reset,
                window_start=state.window_start,
                window_end=state.window_end,
                version=BudgetModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConcurrencyConflict(f"budget {budget.id} changed during reset")

        self.audit.append(
            "Budget", budget.id, "RESET",
            {"limit": str(state.limit_amount), "window_end": state.window_end.isoformat()},
            family_id=budget.family_id, occurred_at=as_of,
        )
        self.db.commit()
        self.db.refresh(budget)
        return True

    def reset_due_budgets(self, as_of: datetime | None = None) -> list[BudgetResetOutcome]:
        """Reset every active budget whose window has ended. Never raises."""
        as_of = as_of or utcnow()
        due = self.db.query(BudgetModel).filter(
            BudgetModel.is_active == True,  # noqa: E712
            BudgetModel.window_end <= as_of,
        ).order_by(BudgetModel.window_end, BudgetModel.id).all()

        outcomes = []
        for budget in due:
            budget_id = budget.id
            try:
                self.reset_budget(budget, as_of)
                outcomes.append(BudgetResetOutcome(budget_id, "reset", limit_amount=budget.limit_amount))
            except ConcurrencyConflict:
                logger.info("Budget %d was changed concurrently, skipping reset", budget_id)
                outcomes.append(BudgetResetOutcome(budget_id, "conflict"))
            except Exception as e:
                self.db.rollback()
                logger.exception("Budget reset failed for budget_id=%d", budget_id)
                outcomes.append(BudgetResetOutcome(budget_id, "failed", error=str(e)))

        if outcomes:
            logger.info(
                "Budget reset: %d/%d reset",
                sum(1 for o in outcomes if o.outcome == "reset"), len(outcomes),
            )
        return outcomes


def budget_utilization(
    db: Session, user_id: int | None = None, family_id: int | None = None,
) -> list[BudgetUtilization]:
    """Active budgets of a user (personal) or a family, most used first."""
    q = db.query(BudgetModel).filter(BudgetModel.is_active == True)  # noqa: E712
    if family_id is not None:
        q = q.filter(BudgetModel.family_id == family_id)
    else:
        q = q.filter(BudgetModel.user_id == user_id, BudgetModel.family_id.is_(None))

    rows = [
        BudgetUtilization(
            budget_id=b.id,
            category=b.category,
            period=b.period,
            limit_amount=b.limit_amount,
            spent=b.spent,
            remaining=BudgetAggregator.remaining(b),
            percent_used=BudgetAggregator.percent_used(b),
            is_exceeded=BudgetAggregator.is_exceeded(b),
            window_start=b.window_start,
            window_end=b.window_end,
        )
        for b in q.all()
    ]
    rows.sort(key=lambda r: (-r.percent_used, r.budget_id))
    return rows
