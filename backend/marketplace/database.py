"""
Database configuration and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from .config import settings
from .models.base import Base
# Import all models to ensure they're registered with SQLAlchemy
from .models import user, post, bid, chat, sale_chat, notification  # noqa: F401


def build_engine(database_url: str):
    """Create an engine for ``database_url`` with the pool options used in production"""
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # In-memory SQLite must share one connection across threads
            options["poolclass"] = StaticPool
        return create_engine(database_url, echo=(settings.log_verbosity == "full"), **options)

    # For Cloud SQL, if host starts with /cloudsql/, use it as the Unix socket directory
    if settings.db_host.startswith('/cloudsql/') and not settings.database_url_override:
        unix_socket_path = '/cloudsql/' + settings.db_host.split('/cloudsql/')[1]
        return create_engine(
            database_url,
            echo=(settings.log_verbosity == "full"),
            pool_pre_ping=True,
            pool_recycle=300,
            connect_args={
                "host": unix_socket_path
            }
        )

    return create_engine(
        database_url,
        echo=(settings.log_verbosity == "full"),
        pool_pre_ping=True,
        pool_recycle=300,
    )


# Create database engine
engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create any missing tables"""
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """
    Database dependency for FastAPI routes
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
