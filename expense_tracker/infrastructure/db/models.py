"""
SQLAlchemy ORM models
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, DateTime, Integer, Text, func, Boolean, Numeric, UniqueConstraint, Index, false, true,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from expense_tracker.infrastructure.db.session import Base


class User(Base):
    """
    User profile. Credentials are owned by the external auth layer.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    notify_budget_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    notify_approval_requests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)


# ============================================================================
# Families
# ============================================================================


class FamilyModel(Base):
    __tablename__ = "families"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    admin_user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)


class FamilyMemberModel(Base):
    __tablename__ = "family_members"

    id: Mapped[int] = mapped_column(primary_key=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)  # admin / parent / child
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    joined_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("family_id", "user_id", name="uq_family_member"),
    )


# ============================================================================
# Expenses, recurring templates, budgets
# ============================================================================


class RecurringExpenseModel(Base):
    """
    Recurring expense template. Mutated by the due-processing pass under a
    version compare-and-swap.
    """
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    paid_by: Mapped[int] = mapped_column(Integer, nullable=False)
    family_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    expense_type: Mapped[str] = mapped_column(String(16), nullable=False, default="personal")  # personal / family

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")

    pattern: Mapped[str] = mapped_column(String(16), nullable=False)  # daily / weekly / monthly / yearly
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_occurrence: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_processed: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    split_type: Mapped[str] = mapped_column(String(16), nullable=False, default="full")  # equal / custom / full
    shared_with: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_recurring_due", "is_active", "next_occurrence"),
    )
    __mapper_args__ = {"version_id_col": version}


class ExpenseModel(Base):
    """
    Expense record: ad-hoc entry or a materialized recurring occurrence
    """
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    paid_by: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    family_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    expense_type: Mapped[str] = mapped_column(String(16), nullable=False, default="personal")

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    expense_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")

    split_type: Mapped[str] = mapped_column(String(16), nullable=False, default="full")
    shared_with: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    recurring_expense_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="approved")  # pending / approved / rejected
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_expenses_family_category_date", "family_id", "category", "expense_date"),
        Index("ix_expenses_user_date", "user_id", "expense_date"),
    )
    __mapper_args__ = {"version_id_col": version}


class BudgetModel(Base):
    """
    Per-category spending limit for a user or a family over a rolling window
    """
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    family_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    limit_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    spent: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    period: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    last_reset: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    alert_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80, server_default="80")
    alert_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    rollover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_budgets_family_category_period", "family_id", "category", "period"),
        Index("ix_budgets_user_category_period", "user_id", "category", "period"),
    )
    __mapper_args__ = {"version_id_col": version}


# ============================================================================
# Audit
# ============================================================================


class AuditLogModel(Base):
    """
    Append-only audit trail of entity changes
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    family_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    changes: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_audit_entity", "entity_type", "entity_id", "occurred_at"),
    )
