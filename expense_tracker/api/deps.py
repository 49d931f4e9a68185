"""
FastAPI dependencies (DB session, current user)
"""
from fastapi import Depends, Request, HTTPException, status
from sqlalchemy.orm import Session

from expense_tracker.infrastructure.db.session import get_db as _get_db
from expense_tracker.infrastructure.db.models import User


# Re-export so routers and tests override a single dependency
get_db = _get_db


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Current user from the signed session cookie (set by the auth layer)

    Raises:
        HTTPException(401): no session or unknown/inactive user

    Usage:
        @router.get("/budgets")
        def list_budgets(user: User = Depends(get_current_user)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user
