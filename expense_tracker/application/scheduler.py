"""
Background scheduler - runs periodic jobs inside the FastAPI process.

Jobs:
  - Recurring expenses (every RECURRING_INTERVAL_MINUTES)
  - Budget period resets (every BUDGET_RESET_INTERVAL_MINUTES)

Every job opens its own session; per-item failures are handled inside the
job, so an exception here means the whole pass could not run.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from expense_tracker.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_recurring():
    from expense_tracker.infrastructure.db.session import get_session_factory
    from expense_tracker.application.recurring_expenses import RecurringExpenseEngine

    Session = get_session_factory()
    db = Session()
    try:
        RecurringExpenseEngine(db).process_due()
    except Exception:
        logger.exception("Recurring expenses job failed")
    finally:
        db.close()


def _run_budget_resets():
    from expense_tracker.infrastructure.db.session import get_session_factory
    from expense_tracker.application.budgets import BudgetService

    Session = get_session_factory()
    db = Session()
    try:
        BudgetService(db).reset_due_budgets()
    except Exception:
        logger.exception("Budget reset job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_recurring,
        "interval",
        minutes=settings.RECURRING_INTERVAL_MINUTES,
        id="recurring_expenses",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        _run_budget_resets,
        "interval",
        minutes=settings.BUDGET_RESET_INTERVAL_MINUTES,
        id="budget_resets",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: recurring_expenses (every %d min), budget_resets (every %d min)",
        settings.RECURRING_INTERVAL_MINUTES, settings.BUDGET_RESET_INTERVAL_MINUTES,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
