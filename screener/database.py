from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from screener.core.config import settings

# Support both PostgreSQL and SQLite via centralized settings
DATABASE_URL = settings.database_url


def build_engine(url: str, **kwargs) -> Engine:
    """
    Create an engine for the given URL.
    SQLite needs cross-thread access for the worker pool and explicit
    foreign-key enforcement so ON DELETE CASCADE actually fires.
    """
    if url.startswith("postgresql"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", 30)
    if url.endswith(":memory:"):
        # One shared connection, otherwise every thread would see its own empty database
        kwargs.setdefault("poolclass", StaticPool)
    sqlite_engine = create_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def init_db(bind: Engine = None):
    """
    Registers all domain models and initializes the database schema.
    This should be called during the application startup lifespan.
    """
    # Import all models to ensure they are registered with Base.metadata before create_all
    from screener.models import job, screening, task, cache_entry  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
