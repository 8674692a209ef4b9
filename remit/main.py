import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from remit.models.profile import UserProfile  # noqa: F401
from remit.models.session import UserSession  # noqa: F401
from remit.models.transaction import IssuedTransactionId, Transaction  # noqa: F401
from remit.router.routes_auth import router as auth_router
from remit.router.routes_health import router as health_router
from remit.router.routes_payments import router as payments_router
from remit.router.routes_profile import router as profile_router
from remit.router.routes_transactions import router as transactions_router
from remit.router.routes_webhooks import router as webhooks_router
from remit.services.settlement import build_settlement_client, resume_pending_handoffs
from remit.services.validator import field_name, reason_code
from remit.utils import db as db_core
from remit.utils.config import settings
from remit.utils.errors import PaymentError, RetryableError
from remit.utils.logging import configure_logging
from remit.utils.runtime import TaskTracker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting app and validating DB connectivity")
    await asyncio.wait_for(db_core.check_db_connection(), timeout=settings.db_operation_timeout_seconds)
    if settings.db_auto_create:
        await db_core.ensure_tables_exist()
        logger.info("Schema ensure step completed")

    app.state.task_tracker = TaskTracker()
    app.state.settlement_client = build_settlement_client(settings)
    await resume_pending_handoffs(
        tracker=app.state.task_tracker,
        client=app.state.settlement_client,
        session_factory=db_core.SessionLocal,
        delay_seconds=settings.settlement_handoff_delay_seconds,
    )
    try:
        yield
    finally:
        await app.state.task_tracker.drain()
        await app.state.settlement_client.aclose()
        # Only close pooled DB connections; this does not drop tables.
        await db_core.engine.dispose()


async def handle_payment_error(_: Request, exc: PaymentError) -> JSONResponse:
    headers = None
    if isinstance(exc, RetryableError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def handle_request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for error in exc.errors():
        loc = [part for part in error.get("loc", ()) if part != "body"]
        fields.append({
            "field": field_name(loc),
            "code": reason_code(error.get("type", "")),
            "message": error.get("msg", "Invalid value"),
        })
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "message": "Request is invalid", "fields": fields},
    )


def create_app() -> FastAPI:
    application = FastAPI(title="Remit Payment Submission Service", lifespan=lifespan)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
    )
    application.add_exception_handler(PaymentError, handle_payment_error)
    application.add_exception_handler(RequestValidationError, handle_request_validation_error)
    application.include_router(health_router)
    application.include_router(auth_router)
    application.include_router(profile_router)
    application.include_router(payments_router)
    application.include_router(transactions_router)
    application.include_router(webhooks_router)
    return application


app = create_app()
