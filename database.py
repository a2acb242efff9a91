"""Database engine, session factory and schema bootstrap."""
import logging
from typing import Any, Dict

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import DB_TIMEOUT_SECONDS
from models import Base, AdminCredential

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, timeout: float = DB_TIMEOUT_SECONDS) -> Engine:
    """
    Create the SQLAlchemy engine for the durable store.

    Every call against the store is bounded by ``timeout`` seconds: waiting
    for a pooled connection, opening a connection and, on PostgreSQL, each
    statement.

    Args:
        database_url: SQLAlchemy URL
        timeout: Bound in seconds

    Returns:
        Engine (no connection is opened yet)
    """
    url = make_url(database_url)
    backend = url.get_backend_name()
    kwargs: Dict[str, Any] = {"pool_pre_ping": True}

    if backend == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            pool_timeout=timeout,
        )
        if backend == "postgresql":
            kwargs["connect_args"] = {
                "connect_timeout": max(1, int(timeout)),
                "options": f"-c statement_timeout={int(timeout * 1000)}",
            }

    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine, session_factory: sessionmaker, admin_username: str, admin_password_hash: str) -> None:
    """Create tables and seed the admin credential if it is missing."""
    Base.metadata.create_all(bind=engine)

    db = session_factory()
    try:
        existing = db.execute(
            select(AdminCredential).where(AdminCredential.username == admin_username)
        ).scalar_one_or_none()
        if existing is None:
            db.add(AdminCredential(username=admin_username, password_hash=admin_password_hash))
            db.commit()
            logger.info("Seeded admin credential", extra={"username": admin_username})
    finally:
        db.close()
