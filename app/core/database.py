import importlib.util
import logging
from urllib.parse import urlparse

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.core.config import get_settings


class Base(DeclarativeBase):
    pass


settings = get_settings()
logger = logging.getLogger(__name__)

LOCAL_DB_HOSTS = {"localhost", "127.0.0.1", "db"}

# Floors for the Postgres pool. Every open payment dialog polls the status
# endpoint every few seconds, on top of the callback and checkout traffic.
MIN_POOL_SIZE = 5
MIN_MAX_OVERFLOW = 5
MIN_POOL_TIMEOUT = 8


def _resolve_database_url(raw_url: str) -> str:
    """Route bare postgresql:// URLs to psycopg3 when psycopg2 is not installed."""
    if not raw_url.startswith("postgresql://"):
        return raw_url
    if importlib.util.find_spec("psycopg2") is None and importlib.util.find_spec("psycopg") is not None:
        return "postgresql+psycopg://" + raw_url[len("postgresql://"):]
    return raw_url


def _postgres_pool_options() -> dict:
    requested = {
        "pool_size": int(settings.db_pool_size),
        "max_overflow": int(settings.db_max_overflow),
        "pool_timeout": int(settings.db_pool_timeout),
    }
    effective = {
        "pool_size": max(MIN_POOL_SIZE, requested["pool_size"]),
        "max_overflow": max(MIN_MAX_OVERFLOW, requested["max_overflow"]),
        "pool_timeout": max(MIN_POOL_TIMEOUT, requested["pool_timeout"]),
    }
    raised = {name: (requested[name], value) for name, value in effective.items() if value != requested[name]}
    if raised:
        logger.warning("Raised DB pool settings to their minimums: %s", raised)
    return {
        **effective,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_recycle": settings.db_pool_recycle,
        "pool_use_lifo": True,
    }


def _engine_options(url: str) -> dict:
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        # Sync endpoints run in FastAPI's threadpool.
        return {"connect_args": {"check_same_thread": False}}
    if not parsed.scheme.startswith("postgresql"):
        return {}

    connect_args = {
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 5,
    }
    if parsed.hostname not in LOCAL_DB_HOSTS:
        connect_args["sslmode"] = "require"
    return {"connect_args": connect_args, **_postgres_pool_options()}


database_url = _resolve_database_url(str(settings.database_url))
engine = create_engine(database_url, **_engine_options(database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
