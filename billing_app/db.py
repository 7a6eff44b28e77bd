# billing_app/db.py

import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from billing_app import config

log = logging.getLogger("billing_app.db")

# Base class for all models
Base = declarative_base()


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    Build an engine for DATABASE_URL.

    SQLite connections are shared with the threadpool that runs blocking
    storage calls, so same-thread checking is disabled. An in-memory SQLite
    URL gets a StaticPool so every session sees the same database.
    """
    kwargs = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, future=True, expire_on_commit=False)


engine = make_engine(config.DATABASE_URL, echo=config.DB_ECHO)
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Create tables registered on Base (no-op for tables that already exist)."""
    import billing_app.models  # noqa: F401

    target = bind or engine
    log.info("Initializing the database...")
    Base.metadata.create_all(bind=target)
    log.info("Database tables created (if not already present).")

