"""
Main FastAPI application entry point.
Sets up the API, middleware, error handling, background dispatcher and routes.

Run with: uvicorn bankswift.main:app --reload
"""

import asyncio
import functools
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from bankswift.core.config import settings
from bankswift.core.errors import AppError, ConcurrencyBusyError
from bankswift.core.middleware import RequestLogMiddleware
from bankswift.database import engine, Base, SessionLocal
from bankswift.logging_config import setup_logging
from bankswift.api import accounts, auth, events, transactions, transfers
from bankswift.services import idempotency
from bankswift.services import transfers as transfer_service
from bankswift.services.events import ConnectionManager
from bankswift.services.outbox import OutboxDispatcher

setup_logging()
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the outbox dispatcher; stop it on shutdown."""
    dispatcher = OutboxDispatcher(
        SessionLocal,
        periodic=[
            functools.partial(transfer_service.expire_pending_transfers, connections=app.state.connections),
            idempotency.purge_expired,
        ],
    )
    task = asyncio.create_task(dispatcher.run_forever())
    app.state.dispatcher = dispatcher
    try:
        yield
    finally:
        dispatcher.stop()
        await task
        engine.dispose()


# Initialize FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc UI
    lifespan=lifespan
)

# Live-update subscribers, one registry per app
app.state.connections = ConnectionManager(queue_size=settings.SSE_QUEUE_SIZE)

# CORS middleware (allows frontend to call API)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if isinstance(exc, ConcurrencyBusyError) else None
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code, "error": type(exc).__name__},
        headers=headers,
    )


@app.get("/")
def root():
    """
    Root endpoint - service info.
    """
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "status": "running",
        "docs": "/docs",
        "endpoints": {
            "users": f"{settings.API_V1_PREFIX}/users",
            "accounts": f"{settings.API_V1_PREFIX}/accounts",
            "transfers": f"{settings.API_V1_PREFIX}/transfers",
            "transactions": f"{settings.API_V1_PREFIX}/transactions",
            "events": f"{settings.API_V1_PREFIX}/events"
        }
    }


@app.get("/health")
def health_check():
    """
    Health check endpoint for monitoring.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "connected"
    except Exception:
        logger.exception("Health check could not reach the database")
        database = "unreachable"
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database
    }


# Include API routers
app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
app.include_router(accounts.router, prefix=settings.API_V1_PREFIX)
app.include_router(transfers.router, prefix=settings.API_V1_PREFIX)
app.include_router(transactions.router, prefix=settings.API_V1_PREFIX)
app.include_router(events.router, prefix=settings.API_V1_PREFIX)
