import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings
from app.services.errors import InternalError

LOGGER = logging.getLogger(__name__)


def _build_database_url() -> str:
    raw_url = settings.database_url
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Busy timeout; worker threads share the pool.
        return {"timeout": settings.db_timeout_seconds, "check_same_thread": False}
    if url.startswith("postgresql"):
        timeout_ms = settings.db_timeout_seconds * 1000
        return {
            "connect_timeout": settings.db_timeout_seconds,
            "options": f"-c statement_timeout={timeout_ms}",
        }
    return {}


DATABASE_URL = _build_database_url()
engine = create_engine(
    DATABASE_URL or "sqlite://",
    pool_pre_ping=True,
    connect_args=_connect_args(DATABASE_URL),
)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
)
Base = declarative_base()


def init_db() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured")
    from app.models.schema import audit as _audit  # noqa: F401
    from app.models.schema import otp as _otp  # noqa: F401
    from app.models.schema import role as _role  # noqa: F401
    from app.models.schema import user as _user  # noqa: F401

    Base.metadata.create_all(bind=engine)


def ping_db() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError:
        LOGGER.exception("Database health check failed")
        return False
    return True


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def storage_errors(operation: str):
    """Translate storage failures (including timeouts) into a retryable InternalError."""
    try:
        yield
    except SQLAlchemyError as exc:
        LOGGER.exception("Storage failure during %s", operation)
        raise InternalError("Temporary storage failure, please retry") from exc
