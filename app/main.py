"""
Sarafi Ledger — FastAPI application entry point.

Configures the app, middleware, domain error handlers, and registers all
API routers.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api import batch_payments, payments, remittances, transactions
from app.core.exceptions import (
    NotFoundError,
    PersistenceError,
    PolicyViolation,
    ValidationError,
)
from app.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    from app.database import engine
    from app.redis_client import redis

    yield

    # Shutdown: close connections
    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-currency transaction and partial-payment ledger for currency exchange offices.",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Domain error handlers ---
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.message},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message},
    )


@app.exception_handler(PolicyViolation)
async def policy_violation_handler(request: Request, exc: PolicyViolation):
    content = {"detail": exc.message}
    if exc.remaining_balance is not None:
        content["remaining_balance"] = str(exc.remaining_balance)
        content["currency"] = exc.currency
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": exc.message},
    )


# --- Routers ---
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])
app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
app.include_router(
    batch_payments.router, prefix="/api/v1/payments/batch", tags=["Batch payments"],
)
app.include_router(remittances.router, prefix="/api/v1/remittances", tags=["Remittances"])


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": "0.1.0",
    }
