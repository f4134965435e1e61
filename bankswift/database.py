"""
Database connection and session management.
Uses SQLAlchemy for ORM and connection pooling.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from bankswift.core.config import settings


def build_engine(url: str, echo: bool = False):
    """
    Create an engine for the given URL.

    SQLite gets no pool sizing (it uses its own pool classes) and is
    allowed to be shared across the threadpool that runs sync endpoints.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False}
        )
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,  # Connection pool size
        max_overflow=20  # Max connections beyond pool_size
    )


# Create database engine
engine = build_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)

# Base class for models
Base = declarative_base()


def get_db():
    """Request-scoped session; services commit or roll back themselves."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
