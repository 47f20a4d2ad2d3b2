import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Base class for all models
Base = declarative_base()


def create_db_engine(database_url: str):
    """Create the SQLAlchemy engine for ``database_url``.

    SQLite files get their parent folder created, and the connection is
    shared across Streamlit's script threads.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    path = database_url.split("///", 1)[1] if "///" in database_url else ""
    if not path or path == ":memory:":
        # one shared connection, otherwise every session sees an empty database
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    return create_engine(database_url, connect_args={"check_same_thread": False})


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine) -> None:
    """Create all tables that don't exist yet."""
    # Import models so they register on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory):
    """
    Context manager for database sessions.
    Commits on success, rolls back on error, always closes.

    Usage:
        with session_scope(factory) as db:
            db.add(obj)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
