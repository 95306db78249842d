import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings, Settings
from .core.logging import init_logging, request_context_middleware
from .core import errors
from .db.dal import Database
from .db.migrate import apply_migrations
from .routers import budgets, expenses, health, notifications, reports
from .services.approval import ApprovalService
from .services.notifications import NotificationTrigger, make_sink
from .services.reporting import ReportingService


def create_app(settings_override: Settings | None = None) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment (e.g., temp DB). Falls back to cached get_settings().
    """
    settings = settings_override or get_settings()
    if settings_override is not None:
        settings.init_post_load()  # idempotent; derives db_path for overrides
    # Initialize logging early
    init_logging(debug=settings.debug)

    # Ensure database schema (idempotent) so test-injected fresh DBs have tables
    try:
        apply_migrations(settings.db_path)  # type: ignore[arg-type]
    except Exception:
        # Failing to init DB is fatal; re-raise after logging
        logging.getLogger("budget_engine").exception("failed to apply migrations on startup")
        raise

    app = FastAPI(
        title=settings.app_name, debug=settings.debug, version=settings.version
    )

    # App-scoped services shared by every request
    db = Database(
        settings.db_path,  # type: ignore[arg-type]
        timeout=settings.db_timeout_seconds,
        enforce_budget_allocation=settings.enforce_budget_allocation,
        storage_retries=settings.storage_retry_attempts,
    )
    trigger = NotificationTrigger(db, make_sink(settings.notification_sink, db))
    app.state.settings = settings
    app.state.db = db
    app.state.trigger = trigger
    app.state.approval = ApprovalService(
        db,
        trigger,
        admin_role=settings.admin_role,
        storage_retries=settings.storage_retry_attempts,
    )
    app.state.reporting = ReportingService(
        db,
        warn_pct=settings.budget_warn_pct,
        danger_pct=settings.budget_danger_pct,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )

    # Middleware (request id / structured logging)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(errors.LedgerError, errors.ledger_error_handler)
    app.add_exception_handler(StarletteHTTPException, errors.not_found_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(budgets.router)
    app.include_router(expenses.router)
    app.include_router(reports.router)
    app.include_router(notifications.router)

    @app.get("/")
    async def root():
        return {"message": "Budget Allocation Engine API", "version": settings.version}

    return app


app = create_app()
