from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def get_connect_args(database_url: str) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if database_url.startswith("sqlite"):
        # Timer callbacks and flushes may run on worker threads
        return {"check_same_thread": False}
    return {}


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, making sure a file-backed SQLite directory exists"""
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise every thread sees its own empty database
        return create_engine(
            database_url,
            connect_args=get_connect_args(database_url),
            poolclass=StaticPool,
        )

    return create_engine(database_url, connect_args=get_connect_args(database_url))


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create session factory bound to ``engine``"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Get a synchronous DB session with proper resource management"""
    db = factory()
    try:
        yield db
    finally:
        db.close()
