"""
Notification delivery for budget alerts and approval requests.

Email goes out over SMTP when EMAIL_SMTP_USER is configured; otherwise the
message is only logged (stub mode), like the other unconfigured channels.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from sqlalchemy.orm import Session

from expense_tracker.config import get_settings
from expense_tracker.application.families import APPROVER_ROLES
from expense_tracker.domain.budget import BudgetAggregator
from expense_tracker.infrastructure.db.models import (
    User, FamilyMemberModel, FamilyModel, BudgetModel, ExpenseModel,
)
from expense_tracker.utils.money import format_money

logger = logging.getLogger(__name__)


class Sender(Protocol):
    def send(self, to: str, subject: str, body: str) -> bool: ...


class EmailSender:
    """SMTP delivery. Returns False (and logs) instead of raising."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def send(self, to: str, subject: str, body: str) -> bool:
        cfg = self.settings
        if not cfg.EMAIL_SMTP_USER:
            logger.info("EMAIL stub: to=%s subject=%s", to, subject)
            return False

        msg = EmailMessage()
        msg["From"] = cfg.EMAIL_FROM or cfg.EMAIL_SMTP_USER
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            with smtplib.SMTP(cfg.EMAIL_SMTP_HOST, cfg.EMAIL_SMTP_PORT, timeout=10) as smtp:
                smtp.starttls()
                smtp.login(cfg.EMAIL_SMTP_USER, cfg.EMAIL_SMTP_PASSWORD)
                smtp.send_message(msg)
            return True
        except (smtplib.SMTPException, OSError):
            logger.exception("Email send failed to=%s", to)
            return False


class NotificationService:
    def __init__(self, db: Session, sender: Sender | None = None, currency: str | None = None):
        self.db = db
        self.sender = sender or EmailSender()
        self.currency = currency or get_settings().BASE_CURRENCY

    def send_budget_alert(self, budget: BudgetModel) -> int:
        """Notify everyone who watches this budget. Returns deliveries made."""
        if budget.family_id is not None:
            recipients = self._family_users(budget.family_id)
            family = self.db.get(FamilyModel, budget.family_id)
            scope = family.name if family else f"family #{budget.family_id}"
        else:
            owner = self.db.get(User, budget.user_id) if budget.user_id is not None else None
            recipients = [owner] if owner and owner.is_active else []
            scope = "your personal budget"
        recipients = [u for u in recipients if u.notify_budget_alerts]

        percent = BudgetAggregator.percent_used(budget)
        subject = f"Budget alert: {budget.category} at {percent:.0f}%"
        body = (
            f"The {budget.category} budget of {scope} has reached {percent:.0f}% of its limit.\n"
            f"Limit: {format_money(budget.limit_amount, self.currency)}\n"
            f"Spent: {format_money(budget.spent, self.currency)}\n"
            f"Remaining: {format_money(BudgetAggregator.remaining(budget), self.currency)}\n"
        )
        return self._deliver(recipients, subject, body)

    def send_approval_request(self, expense: ExpenseModel) -> int:
        """Ask approvers to review a pending expense. Returns deliveries made."""
        if expense.family_id is not None:
            recipients = self._family_users(expense.family_id, roles=APPROVER_ROLES)
            recipients = [u for u in recipients if u.id != expense.user_id]
        else:
            owner = self.db.get(User, expense.user_id)
            recipients = [owner] if owner and owner.is_active else []
        recipients = [u for u in recipients if u.notify_approval_requests]

        submitter = self.db.get(User, expense.user_id)
        who = submitter.name if submitter and submitter.name else "A family member"
        subject = f"Expense approval required: {format_money(expense.amount, self.currency)}"
        body = (
            f"{who} submitted an expense for approval:\n"
            f"Amount: {format_money(expense.amount, self.currency)}\n"
            f"Category: {expense.category}\n"
            f"Description: {expense.description or 'N/A'}\n"
            f"Date: {expense.expense_date:%Y-%m-%d}\n"
        )
        return self._deliver(recipients, subject, body)

    def _family_users(self, family_id: int, roles: tuple[str, ...] | None = None) -> list[User]:
        q = (
            self.db.query(User)
            .join(FamilyMemberModel, FamilyMemberModel.user_id == User.id)
            .filter(
                FamilyMemberModel.family_id == family_id,
                FamilyMemberModel.is_active == True,  # noqa: E712
                User.is_active == True,  # noqa: E712
            )
        )
        if roles:
            q = q.filter(FamilyMemberModel.role.in_(roles))
        return q.order_by(User.id).all()

    def _deliver(self, recipients: list[User], subject: str, body: str) -> int:
        sent = 0
        for user in recipients:
            if self.sender.send(user.email, subject, body):
                sent += 1
        return sent
