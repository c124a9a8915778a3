from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from app.database import engine, Base
from app.db_helpers import (
    authenticate_internal_request_from_headers,
    clear_request_user_id,
    set_request_user_id,
)
from app.exceptions import InvalidPaymentInput, RecurringPaymentError, RecurringPaymentNotFound
from app.routes import api_router

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _cors_origins() -> list[str]:
    """CORS_ALLOW_ORIGINS (comma separated), else FRONTEND_URL/APP_URL, else the local dev server."""
    configured = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if o.strip()]
    if configured:
        return configured
    frontend_url = os.getenv("FRONTEND_URL") or os.getenv("APP_URL")
    return [frontend_url] if frontend_url else ["http://localhost:3000"]


def _requires_signature(request: Request) -> bool:
    return request.method != "OPTIONS" and request.url.path.startswith("/api/")


def _signed_path(request: Request) -> str:
    if request.url.query:
        return f"{request.url.path}?{request.url.query}"
    return request.url.path


if _env_bool("AUTO_CREATE_TABLES", default=False):
    logger.warning("AUTO_CREATE_TABLES is enabled; creating recurring payment tables from SQLAlchemy metadata.")
    Base.metadata.create_all(bind=engine)

docs_enabled = _env_bool("API_DOCS_ENABLED", default=False)

app = FastAPI(
    title="Recurring Payments API",
    description="Recurring payment detection, cost analysis and bill reminders",
    version="0.1.0",
    docs_url="/docs" if docs_enabled else None,
    redoc_url="/redoc" if docs_enabled else None,
    openapi_url="/openapi.json" if docs_enabled else None,
)


@app.middleware("http")
async def internal_auth_middleware(request: Request, call_next):
    if not _requires_signature(request):
        return await call_next(request)

    try:
        request_user_id = authenticate_internal_request_from_headers(
            method=request.method,
            path_with_query=_signed_path(request),
            headers=request.headers,
        )
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    except Exception:
        logger.exception("Unexpected internal auth error")
        return JSONResponse(status_code=500, content={"detail": "Internal authentication failure."})

    token = set_request_user_id(request_user_id)
    try:
        return await call_next(request)
    finally:
        clear_request_user_id(token)


@app.exception_handler(RecurringPaymentError)
async def recurring_payment_error_handler(request: Request, exc: RecurringPaymentError):
    # Routes map the errors they expect; anything that slips through lands here
    if isinstance(exc, RecurringPaymentNotFound):
        status_code = 404
    elif isinstance(exc, InvalidPaymentInput):
        status_code = 400
    else:
        status_code = 500
        logger.error(f"Unhandled recurring payment error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.get("/")
def root():
    payload = {"message": "Recurring Payments API"}
    if docs_enabled:
        payload["docs"] = "/docs"
    return payload


@app.get("/health")
def health():
    return {"status": "healthy"}
