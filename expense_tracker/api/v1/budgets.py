"""
Budget API endpoints
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_db, get_current_user
from expense_tracker.application.budgets import (
    CreateBudgetUseCase, DeactivateBudgetUseCase, budget_utilization,
)
from expense_tracker.application.families import require_member
from expense_tracker.infrastructure.db.models import User
from expense_tracker.utils.dates import to_naive_utc
from expense_tracker.utils.validation import parse_amount


router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


class CreateBudgetRequest(BaseModel):
    category: str
    limit_amount: str
    period: str = "monthly"  # weekly / monthly / yearly
    family_id: int | None = None
    alert_threshold: int = 80
    rollover: bool = False
    window_start: datetime | None = None

    @field_validator("limit_amount")
    @classmethod
    def validate_limit(cls, v: str) -> str:
        return str(parse_amount(v, allow_zero=True))


class BudgetResponse(BaseModel):
    budget_id: int
    category: str
    period: str
    limit_amount: str
    spent: str
    remaining: str
    percent_used: str
    is_exceeded: bool
    window_start: datetime
    window_end: datetime


@router.post("/")
def create_budget(
    req: CreateBudgetRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a budget (personal, or for a family when family_id is given)"""
    budget_id = CreateBudgetUseCase(db).execute(
        category=req.category,
        limit_amount=Decimal(req.limit_amount),
        period=req.period,
        user_id=None if req.family_id is not None else user.id,
        family_id=req.family_id,
        alert_threshold=req.alert_threshold,
        rollover=req.rollover,
        window_start=to_naive_utc(req.window_start) if req.window_start else None,
        actor_user_id=user.id,
    )
    return {"budget_id": budget_id}


@router.get("/", response_model=list[BudgetResponse])
def list_budgets(
    family_id: int | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Utilization of active budgets, most used first"""
    if family_id is not None:
        require_member(db, family_id, user.id)
        rows = budget_utilization(db, family_id=family_id)
    else:
        rows = budget_utilization(db, user_id=user.id)
    return [
        BudgetResponse(
            budget_id=r.budget_id,
            category=r.category,
            period=r.period,
            limit_amount=str(r.limit_amount),
            spent=str(r.spent),
            remaining=str(r.remaining),
            percent_used=str(r.percent_used.quantize(Decimal("0.01"))),
            is_exceeded=r.is_exceeded,
            window_start=r.window_start,
            window_end=r.window_end,
        )
        for r in rows
    ]


@router.post("/{budget_id}/deactivate")
def deactivate_budget(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    DeactivateBudgetUseCase(db).execute(budget_id, user.id)
    return {"status": "deactivated"}

