"""
Tests for the HTTP surface (recurring, budgets, expenses)
"""
import base64
import json
from datetime import timedelta
from decimal import Decimal

import itsdangerous
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from expense_tracker.api.deps import get_db
from expense_tracker.application.expenses import CreateExpenseUseCase, ApproveExpenseUseCase
from expense_tracker.application.families import CreateFamilyUseCase, AddFamilyMemberUseCase
from expense_tracker.application.notifications import NotificationService
from expense_tracker.config import get_settings
from expense_tracker.infrastructure.db.models import ExpenseModel
from expense_tracker.main import create_app
from expense_tracker.utils.dates import utcnow


def _session_cookie(user_id: int) -> str:
    """Cookie in the format Starlette's SessionMiddleware signs"""
    data = base64.b64encode(json.dumps({"user_id": user_id}).encode("utf-8"))
    signer = itsdangerous.TimestampSigner(str(get_settings().SECRET_KEY))
    return signer.sign(data).decode("utf-8")


@pytest.fixture
def client(db_engine):
    """Test client bound to the in-memory database, scheduler off"""
    app = create_app(start_jobs=False)
    SessionLocal = sessionmaker(bind=db_engine)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def authenticated_client(client, user):
    client.cookies.set("session", _session_cookie(user.id))
    return client


def _recurring_payload(**kwargs):
    payload = {
        "amount": "50",
        "category": "Utilities",
        "pattern": "monthly",
        "start_date": (utcnow() - timedelta(days=1)).isoformat(),
    }
    payload.update(kwargs)
    return payload


def test_health(client):
    assert client.get("/health").text == "ok"


def test_requires_session(client):
    response = client.get("/api/v1/recurring/")
    assert response.status_code == 401


def test_unknown_user_in_session(client):
    client.cookies.set("session", _session_cookie(9999))
    assert client.get("/api/v1/recurring/").status_code == 401


def test_create_and_list_recurring(authenticated_client):
    response = authenticated_client.post("/api/v1/recurring/", json=_recurring_payload(amount="49,90"))
    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == "49.90"
    assert data["is_active"] is True

    listed = authenticated_client.get("/api/v1/recurring/").json()
    assert [t["id"] for t in listed] == [data["id"]]


def test_invalid_pattern_is_400(authenticated_client):
    response = authenticated_client.post("/api/v1/recurring/", json=_recurring_payload(pattern="hourly"))
    assert response.status_code == 400
    assert "pattern" in response.json()["detail"]


def test_invalid_amount_is_422(authenticated_client):
    response = authenticated_client.post("/api/v1/recurring/", json=_recurring_payload(amount="1.999"))
    assert response.status_code == 422


def test_batch_passes_are_not_exposed(authenticated_client):
    # processing runs from the scheduler and run_recurring.py only
    assert authenticated_client.post("/api/v1/recurring/process-due").status_code in (404, 405)
    assert authenticated_client.post("/api/v1/budgets/reset-due").status_code in (404, 405)


def test_upcoming_and_stats(authenticated_client):
    start = utcnow() + timedelta(days=3)
    authenticated_client.post("/api/v1/recurring/", json=_recurring_payload(start_date=start.isoformat()))
    authenticated_client.post("/api/v1/recurring/", json=_recurring_payload(
        amount="10", category="Coffee", pattern="weekly",
        start_date=(utcnow() + timedelta(days=60)).isoformat(),
    ))

    upcoming = authenticated_client.get("/api/v1/recurring/upcoming?days=30").json()
    assert len(upcoming) == 1
    assert upcoming[0]["days_until"] == 3

    stats = authenticated_client.get("/api/v1/recurring/stats").json()
    assert stats["total_recurring"] == 2
    assert stats["total_monthly_amount"] == "90.00"
    assert stats["by_category"][0] == {"category": "Utilities", "monthly_amount": "50.00"}


def test_patch_and_deactivate(authenticated_client):
    template_id = authenticated_client.post("/api/v1/recurring/", json=_recurring_payload()).json()["id"]

    patched = authenticated_client.patch(f"/api/v1/recurring/{template_id}", json={"amount": "75"})
    assert patched.status_code == 200
    assert patched.json()["amount"] == "75.00"

    assert authenticated_client.post(f"/api/v1/recurring/{template_id}/deactivate").status_code == 200
    again = authenticated_client.patch(f"/api/v1/recurring/{template_id}", json={"amount": "80"})
    assert again.status_code == 400


def test_missing_template_is_404(authenticated_client):
    assert authenticated_client.post("/api/v1/recurring/404/deactivate").status_code == 404


def test_budget_and_expense_flow(authenticated_client):
    created = authenticated_client.post("/api/v1/budgets/", json={
        "category": "Food", "limit_amount": "100",
        "window_start": (utcnow() - timedelta(days=1)).isoformat(),
    })
    assert created.status_code == 200

    response = authenticated_client.post("/api/v1/expenses/", json={"amount": "45", "category": "Food"})
    assert response.status_code == 200

    budgets = authenticated_client.get("/api/v1/budgets/").json()
    assert budgets[0]["spent"] == "45.00"
    assert budgets[0]["percent_used"] == "45.00"
    assert budgets[0]["is_exceeded"] is False

    start = (utcnow() - timedelta(days=1)).isoformat()
    end = (utcnow() + timedelta(days=1)).isoformat()
    totals = authenticated_client.get(f"/api/v1/expenses/by-category?start={start}&end={end}").json()
    assert totals == [{"category": "Food", "total": "45.00", "count": 1, "avg_amount": "45.00"}]


def test_foreign_family_budgets_forbidden(authenticated_client):
    assert authenticated_client.get("/api/v1/budgets/?family_id=7").status_code == 403


def test_expense_shows_pending_share_amount(client, user, make_user):
    friend = make_user("friend@example.com")
    client.cookies.set("session", _session_cookie(user.id))
    expense_id = client.post("/api/v1/expenses/", json={
        "amount": "30", "category": "Dinner", "split_type": "equal",
        "shared_with": [{"user_id": user.id}, {"user_id": friend.id}],
    }).json()["expense_id"]

    client.cookies.set("session", _session_cookie(friend.id))
    assert client.get(f"/api/v1/expenses/{expense_id}").json()["pending_amount"] == "30.00"
    assert client.post(f"/api/v1/expenses/{expense_id}/shares/{friend.id}/paid").status_code == 200

    data = client.get(f"/api/v1/expenses/{expense_id}").json()
    assert data["pending_amount"] == "15.00"
    assert [s["is_paid"] for s in data["shared_with"]] == [False, True]


def test_expense_hidden_from_strangers(client, user, make_user):
    stranger = make_user("stranger@example.com")
    client.cookies.set("session", _session_cookie(user.id))
    expense_id = client.post("/api/v1/expenses/", json={"amount": "12", "category": "Food"}).json()["expense_id"]

    client.cookies.set("session", _session_cookie(stranger.id))
    assert client.get(f"/api/v1/expenses/{expense_id}").status_code == 403


def test_stale_approval_is_409(client, db_engine, db_session, user, make_user, sender):
    parent = make_user("parent@example.com")
    child = make_user("child@example.com")
    family_id = CreateFamilyUseCase(db_session).execute(user.id, "Home")
    add = AddFamilyMemberUseCase(db_session)
    add.execute(family_id, parent.id, "parent", actor_user_id=user.id)
    add.execute(family_id, child.id, "child", actor_user_id=user.id)
    notifier = NotificationService(db_session, sender=sender)
    expense_id = CreateExpenseUseCase(db_session, notifier=notifier).execute(
        user_id=child.id, amount=Decimal("20"), category="Food",
        expense_type="family", family_id=family_id,
    )

    # the request's session read the expense before the parent approved it
    stale = sessionmaker(bind=db_engine)()
    stale.get(ExpenseModel, expense_id)
    ApproveExpenseUseCase(db_session, notifier=notifier).execute(expense_id, parent.id)
    client.app.dependency_overrides[get_db] = lambda: stale
    client.cookies.set("session", _session_cookie(user.id))
    try:
        response = client.post(f"/api/v1/expenses/{expense_id}/approve")
    finally:
        stale.close()

    assert response.status_code == 409
    expense = db_session.get(ExpenseModel, expense_id)
    db_session.refresh(expense)
    assert expense.approved_by == parent.id
