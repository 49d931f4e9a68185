"""
Run one recurring-expense pass and one budget reset pass (cron entry point)

    DATABASE_URL=postgresql://... python run_recurring.py
"""
import logging
import sys

from expense_tracker.infrastructure.db.session import get_db
from expense_tracker.application.budgets import BudgetService
from expense_tracker.application.recurring_expenses import RecurringExpenseEngine, OUTCOME_FAILED

logging.basicConfig(level=logging.INFO)

db = next(get_db())

try:
    outcomes = RecurringExpenseEngine(db).process_due()
    print(f"Recurring templates due: {len(outcomes)}")
    for o in outcomes:
        suffix = f" expense_id={o.expense_id}" if o.expense_id else ""
        suffix += f" error={o.error}" if o.error else ""
        print(f"  - template {o.template_id}: {o.outcome}{suffix}")

    resets = BudgetService(db).reset_due_budgets()
    print(f"Budgets due for reset: {len(resets)}")
    for r in resets:
        print(f"  - budget {r.budget_id}: {r.outcome}")

    failed = sum(1 for o in outcomes if o.outcome == OUTCOME_FAILED)
    failed += sum(1 for r in resets if r.outcome == "failed")
finally:
    db.close()

sys.exit(1 if failed else 0)
