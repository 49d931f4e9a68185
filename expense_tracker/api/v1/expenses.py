"""
Expense API endpoints
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_db, get_current_user
from expense_tracker.application.expenses import (
    CreateExpenseUseCase,
    ApproveExpenseUseCase,
    RejectExpenseUseCase,
    SoftDeleteExpenseUseCase,
    MarkSplitPaidUseCase,
    aggregate_by_category,
    get_visible_expense,
)
from expense_tracker.application.families import require_member
from expense_tracker.config import get_settings
from expense_tracker.domain.split import pending_amount
from expense_tracker.infrastructure.db.models import User, ExpenseModel
from expense_tracker.utils.dates import to_naive_utc
from expense_tracker.utils.money import currency_table_from_settings
from expense_tracker.utils.validation import parse_amount


router = APIRouter(prefix="/api/v1/expenses", tags=["expenses"])


class ShareIn(BaseModel):
    user_id: int
    amount: str | None = None


class CreateExpenseRequest(BaseModel):
    amount: str
    category: str
    expense_date: datetime | None = None
    description: str = ""
    expense_type: str = "personal"
    family_id: int | None = None
    paid_by: int | None = None
    split_type: str = "full"
    shared_with: list[ShareIn] | None = None
    currency: str | None = None  # defaults to the base currency

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class RejectExpenseRequest(BaseModel):
    reason: str | None = None


class ShareOut(BaseModel):
    user_id: int
    amount: str
    is_paid: bool


class ExpenseResponse(BaseModel):
    id: int
    amount: str
    category: str
    description: str
    expense_date: datetime
    expense_type: str
    family_id: int | None
    paid_by: int
    split_type: str
    shared_with: list[ShareOut]
    pending_amount: str  # shares not yet paid back
    approval_status: str
    recurring_expense_id: int | None


def _to_response(e: ExpenseModel) -> ExpenseResponse:
    shares = e.shared_with or []
    return ExpenseResponse(
        id=e.id,
        amount=str(e.amount),
        category=e.category,
        description=e.description,
        expense_date=e.expense_date,
        expense_type=e.expense_type,
        family_id=e.family_id,
        paid_by=e.paid_by,
        split_type=e.split_type,
        shared_with=[ShareOut(**s) for s in shares],
        pending_amount=str(pending_amount(shares)),
        approval_status=e.approval_status,
        recurring_expense_id=e.recurring_expense_id,
    )


@router.post("/")
def create_expense(
    req: CreateExpenseRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record an expense; family expenses by children wait for approval"""
    use_case = CreateExpenseUseCase(db, currencies=currency_table_from_settings(get_settings()))
    expense_id = use_case.execute(
        user_id=user.id,
        amount=Decimal(req.amount),
        category=req.category,
        expense_date=to_naive_utc(req.expense_date) if req.expense_date else None,
        description=req.description,
        expense_type=req.expense_type,
        family_id=req.family_id,
        paid_by=req.paid_by,
        split_type=req.split_type,
        shared_with=[s.model_dump(exclude_none=True) for s in req.shared_with] if req.shared_with else None,
        currency=req.currency,
    )
    return {"expense_id": expense_id}


@router.post("/{expense_id}/approve")
def approve_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ApproveExpenseUseCase(db).execute(expense_id, user.id)
    return {"status": "approved"}


@router.post("/{expense_id}/reject")
def reject_expense(
    expense_id: int,
    req: RejectExpenseRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    RejectExpenseUseCase(db).execute(expense_id, user.id, reason=req.reason)
    return {"status": "rejected"}


@router.post("/{expense_id}/shares/{share_user_id}/paid")
def mark_share_paid(
    expense_id: int,
    share_user_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    MarkSplitPaidUseCase(db).execute(expense_id, share_user_id, user.id)
    return {"status": "paid"}


@router.delete("/{expense_id}")
def delete_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft delete; the record stays for audit"""
    SoftDeleteExpenseUseCase(db).execute(expense_id, user.id)
    return {"status": "deleted"}


@router.get("/by-category")
def expenses_by_category(
    start: datetime,
    end: datetime,
    family_id: int | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Approved spending per category in [start, end]"""
    if family_id is not None:
        require_member(db, family_id, user.id)
    rows = aggregate_by_category(
        db, to_naive_utc(start), to_naive_utc(end),
        user_id=None if family_id is not None else user.id,
        family_id=family_id,
    )
    return [
        {"category": r.category, "total": str(r.total), "count": r.count, "avg_amount": str(r.avg_amount)}
        for r in rows
    ]


@router.get("/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _to_response(get_visible_expense(db, expense_id, user.id))
