"""Local database for install records.

Install runs are recorded in a SQLite database (or any SQLAlchemy URL set
through BLOBFREE_DB_URL). Tables are created on first use.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _ensure_sqlite_parent(db_url: str) -> None:
    db_path = db_url.removeprefix("sqlite:///")
    if db_path and db_path != ":memory:" and db_path != db_url:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def get_engine(db_url: str) -> Engine:
    """Create an engine for the records database.

    Args:
        db_url: Database URL.

    Returns:
        SQLAlchemy Engine instance.
    """
    connect_args: dict[str, bool] = {}
    if db_url.startswith("sqlite"):
        # Sessions are used from the event loop and from worker threads
        connect_args["check_same_thread"] = False
        _ensure_sqlite_parent(db_url)
    return create_engine(db_url, connect_args=connect_args)


def create_all_tables(engine: Engine) -> None:
    """Create the install record tables if they do not exist."""
    # Register the models with the mapper before creating tables
    from blobfree_installer.installer import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def open_records(db_url: str) -> sessionmaker[Session]:
    """Open the records database and return a session factory.

    Args:
        db_url: Database URL.

    Returns:
        Session factory bound to a database with all tables present.
    """
    engine = get_engine(db_url)
    create_all_tables(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


__all__ = ["Base", "create_all_tables", "get_engine", "open_records"]
