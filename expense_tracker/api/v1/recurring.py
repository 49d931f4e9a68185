"""
Recurring expense API endpoints
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_db, get_current_user
from expense_tracker.application.recurring_expenses import (
    CreateRecurringExpenseUseCase,
    UpdateRecurringExpenseUseCase,
    DeactivateRecurringExpenseUseCase,
    preview_upcoming,
    get_recurring_statistics,
)
from expense_tracker.infrastructure.db.models import User, RecurringExpenseModel
from expense_tracker.utils.dates import to_naive_utc
from expense_tracker.utils.validation import parse_amount


router = APIRouter(prefix="/api/v1/recurring", tags=["recurring"])


# === Request/Response models ===

class ShareIn(BaseModel):
    user_id: int
    amount: str | None = None


class CreateRecurringRequest(BaseModel):
    amount: str
    category: str
    pattern: str  # daily / weekly / monthly / yearly
    start_date: datetime
    description: str = ""
    end_date: datetime | None = None
    expense_type: str = "personal"
    family_id: int | None = None
    paid_by: int | None = None
    split_type: str = "full"
    shared_with: list[ShareIn] | None = None
    auto_approve: bool = True
    max_occurrences: int | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class UpdateRecurringRequest(BaseModel):
    amount: str | None = None
    category: str | None = None
    description: str | None = None
    split_type: str | None = None
    shared_with: list[ShareIn] | None = None
    auto_approve: bool | None = None
    end_date: datetime | None = None
    max_occurrences: int | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return str(parse_amount(v)) if v is not None else None


class RecurringResponse(BaseModel):
    id: int
    amount: str
    category: str
    description: str
    pattern: str
    expense_type: str
    family_id: int | None
    start_date: datetime
    end_date: datetime | None
    next_occurrence: datetime
    last_processed: datetime | None
    occurrence_count: int
    max_occurrences: int | None
    auto_approve: bool
    is_active: bool


class UpcomingResponse(BaseModel):
    template_id: int
    amount: str
    category: str
    description: str
    pattern: str
    next_occurrence: datetime
    days_until: int


def _shares(items: list[ShareIn] | None) -> list[dict] | None:
    if items is None:
        return None
    return [s.model_dump(exclude_none=True) for s in items]


def _to_response(t: RecurringExpenseModel) -> RecurringResponse:
    return RecurringResponse(
        id=t.id,
        amount=str(t.amount),
        category=t.category,
        description=t.description,
        pattern=t.pattern,
        expense_type=t.expense_type,
        family_id=t.family_id,
        start_date=t.start_date,
        end_date=t.end_date,
        next_occurrence=t.next_occurrence,
        last_processed=t.last_processed,
        occurrence_count=t.occurrence_count,
        max_occurrences=t.max_occurrences,
        auto_approve=t.auto_approve,
        is_active=t.is_active,
    )


# === Endpoints ===

@router.post("/", response_model=RecurringResponse)
def create_recurring(
    req: CreateRecurringRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a recurring expense template"""
    template_id = CreateRecurringExpenseUseCase(db).execute(
        user_id=user.id,
        amount=Decimal(req.amount),
        category=req.category,
        pattern=req.pattern,
        start_date=to_naive_utc(req.start_date),
        description=req.description,
        end_date=to_naive_utc(req.end_date) if req.end_date else None,
        expense_type=req.expense_type,
        family_id=req.family_id,
        paid_by=req.paid_by,
        split_type=req.split_type,
        shared_with=_shares(req.shared_with),
        auto_approve=req.auto_approve,
        max_occurrences=req.max_occurrences,
    )
    return _to_response(db.get(RecurringExpenseModel, template_id))


@router.get("/", response_model=list[RecurringResponse])
def list_recurring(
    include_inactive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Templates of the current user"""
    query = db.query(RecurringExpenseModel).filter(RecurringExpenseModel.user_id == user.id)
    if not include_inactive:
        query = query.filter(RecurringExpenseModel.is_active == True)  # noqa: E712
    return [_to_response(t) for t in query.order_by(RecurringExpenseModel.next_occurrence).all()]


@router.get("/upcoming", response_model=list[UpcomingResponse])
def upcoming_recurring(
    days: int = 30,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Templates coming due in the next `days` days"""
    if days < 0 or days > 366:
        raise HTTPException(status_code=400, detail="days must be between 0 and 366")
    return [
        UpcomingResponse(
            template_id=u.template_id,
            amount=str(u.amount),
            category=u.category,
            description=u.description,
            pattern=u.pattern,
            next_occurrence=u.next_occurrence,
            days_until=u.days_until,
        )
        for u in preview_upcoming(db, user.id, days=days)
    ]


@router.get("/stats")
def recurring_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Monthly-equivalent cost of active templates"""
    stats = get_recurring_statistics(db, user.id)
    return {
        "total_recurring": stats.total_recurring,
        "total_monthly_amount": str(stats.total_monthly_amount),
        "by_category": [
            {"category": c["category"], "monthly_amount": str(c["monthly_amount"])}
            for c in stats.by_category
        ],
    }


@router.patch("/{template_id}", response_model=RecurringResponse)
def update_recurring(
    template_id: int,
    req: UpdateRecurringRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Edit a template; only future occurrences are affected"""
    # null clears end_date / max_occurrences; for other fields it means "unchanged"
    changes = {
        k: v for k, v in req.model_dump(exclude_unset=True).items()
        if v is not None or k in ("end_date", "max_occurrences")
    }
    if "amount" in changes:
        changes["amount"] = Decimal(changes["amount"])
    if "shared_with" in changes:
        changes["shared_with"] = _shares(req.shared_with)
    if changes.get("end_date") is not None:
        changes["end_date"] = to_naive_utc(changes["end_date"])
    UpdateRecurringExpenseUseCase(db).execute(template_id, user.id, **changes)
    return _to_response(db.get(RecurringExpenseModel, template_id))


@router.post("/{template_id}/deactivate")
def deactivate_recurring(
    template_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Stop a template from producing further expenses"""
    DeactivateRecurringExpenseUseCase(db).execute(template_id, user.id)
    return {"status": "deactivated"}

