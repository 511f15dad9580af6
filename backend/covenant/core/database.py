"""Engine and session factory for the subscription database."""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from covenant.core.config import settings


def _connect_args(dsn: str) -> dict[str, Any]:
    # The API serves requests from a threadpool; SQLite must allow that.
    if dsn.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.APP_DATABASE_DSN,
    connect_args=_connect_args(settings.APP_DATABASE_DSN),
    pool_pre_ping=not settings.APP_DATABASE_DSN.startswith("sqlite"),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session, closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the subscriptions and fulfillments tables if missing.

    Deployments that run the Alembic revision do not need this.
    """
    import covenant.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
