"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from expense_tracker.config import get_settings
from expense_tracker.domain.errors import (
    ValidationError, NotFoundError, ConcurrencyConflict, PermissionDenied,
)
from expense_tracker.infrastructure.db.session import check_db_connection
from expense_tracker.api.v1 import recurring, budgets, expenses

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches everything the exception handlers did not map"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(start_jobs: bool | None = None) -> FastAPI:
    """
    Application factory

    Args:
        start_jobs: run the background scheduler; defaults to SCHEDULER_ENABLED
    """
    settings = get_settings()
    if start_jobs is None:
        start_jobs = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        from expense_tracker.application.scheduler import start_scheduler, shutdown_scheduler

        if start_jobs:
            start_scheduler()
        try:
            yield
        finally:
            if start_jobs:
                shutdown_scheduler()

    app = FastAPI(
        title="Expense Tracker",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    app.add_exception_handler(ValidationError, _error_handler(400))
    app.add_exception_handler(PermissionDenied, _error_handler(403))
    app.add_exception_handler(NotFoundError, _error_handler(404))
    app.add_exception_handler(ConcurrencyConflict, _error_handler(409))

    app.include_router(recurring.router)
    app.include_router(budgets.router)
    app.include_router(expenses.router)

    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "expense_tracker.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
