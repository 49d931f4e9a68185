"""Tests for budget use cases and BudgetService (atomic counters, resets)."""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from expense_tracker.application.budgets import (
    BudgetService, CreateBudgetUseCase, DeactivateBudgetUseCase, budget_utilization,
)
from expense_tracker.application.expenses import CreateExpenseUseCase
from expense_tracker.application.families import CreateFamilyUseCase, AddFamilyMemberUseCase
from expense_tracker.application.notifications import NotificationService
from expense_tracker.domain.errors import ValidationError, PermissionDenied, ConcurrencyConflict
from expense_tracker.infrastructure.db.models import BudgetModel

MARCH = datetime(2026, 3, 1)


@pytest.fixture
def create_budget(db_session, user):
    def _create(**kwargs) -> BudgetModel:
        params = dict(
            category="Food", limit_amount=Decimal("100"), user_id=user.id, window_start=MARCH,
        )
        params.update(kwargs)
        budget_id = CreateBudgetUseCase(db_session).execute(**params)
        return db_session.get(BudgetModel, budget_id)
    return _create


@pytest.fixture
def add_expense(db_session, user, sender):
    def _add(amount, category="Food", when=datetime(2026, 3, 10), **kwargs) -> int:
        notifier = NotificationService(db_session, sender=sender, currency="USD")
        return CreateExpenseUseCase(db_session, notifier=notifier).execute(
            user_id=kwargs.pop("user_id", user.id),
            amount=Decimal(amount), category=category, expense_date=when, **kwargs,
        )
    return _add


class TestCreateBudget:
    def test_window_from_start(self, create_budget):
        b = create_budget(period="monthly")
        assert b.window_start == MARCH
        assert b.window_end == datetime(2026, 4, 1)
        assert b.spent == Decimal("0")

    def test_supersedes_previous_active(self, db_session, create_budget):
        old = create_budget(limit_amount=Decimal("100"))
        new = create_budget(limit_amount=Decimal("200"))
        db_session.refresh(old)
        assert old.is_active is False
        assert new.is_active is True

    def test_owner_must_be_exactly_one(self, db_session, user):
        with pytest.raises(ValidationError):
            CreateBudgetUseCase(db_session).execute(
                category="Food", limit_amount=Decimal("100"), user_id=user.id, family_id=1,
            )

    def test_negative_limit_persists_nothing(self, db_session, user):
        with pytest.raises(ValidationError):
            CreateBudgetUseCase(db_session).execute(
                category="Food", limit_amount=Decimal("-1"), user_id=user.id,
            )
        assert db_session.query(BudgetModel).count() == 0

    def test_family_budget_requires_approver(self, db_session, user, make_user):
        child = make_user("kid@example.com")
        family_id = CreateFamilyUseCase(db_session).execute(user.id, "Home")
        AddFamilyMemberUseCase(db_session).execute(family_id, child.id, "child", actor_user_id=user.id)

        with pytest.raises(PermissionDenied):
            CreateBudgetUseCase(db_session).execute(
                category="Food", limit_amount=Decimal("100"), family_id=family_id,
                actor_user_id=child.id,
            )
        budget_id = CreateBudgetUseCase(db_session).execute(
            category="Food", limit_amount=Decimal("100"), family_id=family_id,
            actor_user_id=user.id,
        )
        assert db_session.get(BudgetModel, budget_id).user_id is None


class TestApplyExpense:
    def test_increments_spent(self, db_session, create_budget, add_expense):
        b = create_budget()
        add_expense("30")
        add_expense("12.50")
        db_session.refresh(b)
        assert b.spent == Decimal("42.50")

    def test_alert_fires_once(self, db_session, create_budget, add_expense, sender):
        b = create_budget(alert_threshold=75)
        add_expense("70")
        assert sender.sent == []
        add_expense("10")
        assert len(sender.sent) == 1
        add_expense("5")
        assert len(sender.sent) == 1
        db_session.refresh(b)
        assert b.alert_sent is True

    def test_other_category_and_window_ignored(self, db_session, create_budget, add_expense):
        b = create_budget()
        add_expense("30", category="Travel")
        add_expense("30", when=datetime(2026, 4, 2))
        db_session.refresh(b)
        assert b.spent == Decimal("0")

    def test_counter_is_incremented_in_sql(self, db_session, create_budget, user):
        b = create_budget()
        # a concurrent writer bumps the counter behind the session's back
        db_session.execute(text("UPDATE budgets SET spent = spent + 25 WHERE id = :id"), {"id": b.id})
        service = BudgetService(db_session)
        expense = type("E", (), dict(
            approval_status="approved", is_deleted=False, amount=Decimal("10"),
            category="Food", expense_date=datetime(2026, 3, 5), family_id=None, user_id=user.id,
        ))()
        service.apply_expense(expense)
        db_session.commit()
        db_session.refresh(b)
        assert b.spent == Decimal("35")

    def test_budget_deactivated_after_match_is_skipped(self, db_session, create_budget, user):
        b = create_budget(alert_threshold=80)
        service = BudgetService(db_session)
        expense = type("E", (), dict(
            approval_status="approved", is_deleted=False, amount=Decimal("10"),
            category="Food", expense_date=datetime(2026, 3, 5), family_id=None, user_id=user.id,
        ))()
        matched = service.matching_budgets(expense)
        # deactivated by another request after the match, already past the threshold
        db_session.execute(
            text("UPDATE budgets SET is_active = 0, spent = 85 WHERE id = :id"), {"id": b.id},
        )
        service.matching_budgets = lambda e: matched

        assert service.apply_expense(expense) == []

        db_session.commit()
        db_session.refresh(b)
        assert b.spent == Decimal("85")
        assert b.alert_sent is False


class TestResetBudgets:
    def test_rollover_reset(self, db_session, create_budget, add_expense):
        b = create_budget(rollover=True, alert_threshold=30)
        add_expense("40")
        db_session.refresh(b)
        assert b.alert_sent is True

        outcomes = BudgetService(db_session).reset_due_budgets(as_of=datetime(2026, 4, 1))

        assert [(o.budget_id, o.outcome) for o in outcomes] == [(b.id, "reset")]
        db_session.refresh(b)
        assert b.limit_amount == Decimal("160")
        assert b.spent == Decimal("0")
        assert b.alert_sent is False
        assert b.window_start == datetime(2026, 4, 1)
        assert b.window_end == datetime(2026, 5, 1)

    def test_not_due_yet(self, db_session, create_budget):
        create_budget()
        assert BudgetService(db_session).reset_due_budgets(as_of=datetime(2026, 3, 31)) == []

    def test_stale_version_conflicts(self, db_session, create_budget):
        b = create_budget()
        db_session.execute(text("UPDATE budgets SET version = version + 1 WHERE id = :id"), {"id": b.id})
        with pytest.raises(ConcurrencyConflict):
            BudgetService(db_session).reset_budget(b, datetime(2026, 4, 1))


class TestDeactivateAndReport:
    def test_deactivate(self, db_session, create_budget, user):
        b = create_budget()
        DeactivateBudgetUseCase(db_session).execute(b.id, user.id)
        db_session.refresh(b)
        assert b.is_active is False

    def test_deactivate_someone_elses(self, db_session, create_budget, make_user):
        b = create_budget()
        stranger = make_user("stranger@example.com")
        with pytest.raises(PermissionDenied):
            DeactivateBudgetUseCase(db_session).execute(b.id, stranger.id)

    def test_utilization_sorted(self, db_session, create_budget, add_expense, user):
        create_budget(category="Food", limit_amount=Decimal("100"))
        create_budget(category="Fuel", limit_amount=Decimal("50"))
        add_expense("20", category="Food")
        add_expense("45", category="Fuel")

        rows = budget_utilization(db_session, user_id=user.id)

        assert [r.category for r in rows] == ["Fuel", "Food"]
        assert rows[0].percent_used == Decimal("90")
        assert rows[0].remaining == Decimal("5")
        assert rows[0].is_exceeded is False


def test_deactivate_from_stale_session_conflicts(db_session, db_engine, create_budget, user):
    b = create_budget()
    other = sessionmaker(bind=db_engine)()
    try:
        other.get(BudgetModel, b.id)
        DeactivateBudgetUseCase(db_session).execute(b.id, user.id)

        with pytest.raises(ConcurrencyConflict):
            DeactivateBudgetUseCase(other).execute(b.id, user.id)
    finally:
        other.close()
