import logging
import time
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.api.v1.routes import router as api_router
from app.core.config import get_settings, parse_cors_origins
from app.core.database import Base, SessionLocal, engine
from app.core.logging import configure_logging
from app.middlewares.rate_limit import limiter

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
_started_at = time.time()


def _uptime_seconds() -> int:
    return int(max(0, time.time() - _started_at))


def _site_origin(url: str) -> str | None:
    parsed = urlparse(str(url or "").strip())
    if not (parsed.scheme and parsed.netloc):
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def allowed_origins() -> list[str]:
    origins = parse_cors_origins(settings.cors_origins or "")
    storefront = _site_origin(settings.frontend_base_url)
    if storefront:
        origins.append(storefront)
    return list(dict.fromkeys(origins))


def _first_error_message(errors: list) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg") or "Invalid value"
    return f"{field}: {message}" if field else message


@app.exception_handler(SQLAlchemyTimeoutError)
async def sqlalchemy_timeout_handler(request: Request, exc: SQLAlchemyTimeoutError):
    logger.warning("Database pool exhausted on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Service is busy. Please retry in a moment."})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Checkout clients read {success, message}; FastAPI's detail stays for everyone else.
    errors = jsonable_encoder(exc.errors())
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": _first_error_message(errors), "detail": errors},
    )


cors_origins = allowed_origins()
logger.info("CORS allow_origins=%s", cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.on_event("startup")
def create_tables_for_local_runs():
    # Migrations own the schema; this is only for throwaway environments.
    if not settings.auto_create_tables:
        return
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as exc:
        logger.warning("Skipping table creation, database unavailable: %s", exc)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    return {"status": "ok", "uptime_seconds": _uptime_seconds(), "service": settings.app_name}


@app.get("/readyz")
def readyz():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Readiness check could not reach the database: %s", exc)
        return JSONResponse(status_code=503, content={"status": "not_ready", "detail": "database_unavailable"})
    finally:
        db.close()
    return {"status": "ready", "uptime_seconds": _uptime_seconds()}
