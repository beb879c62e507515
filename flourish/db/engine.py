"""Database URL resolution and engine construction."""

import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import NullPool

# Default database path (can be overridden via environment variable)
DEFAULT_DB_PATH = Path.home() / ".flourish" / "flourish.db"


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Get the database URL.

    Args:
        db_path: Optional path to a SQLite database file. If None, uses
                 the DATABASE_URL env var or the default path.

    Returns:
        SQLAlchemy connection URL.
    """
    if db_path is not None:
        path = Path(db_path)
    elif os.environ.get("DATABASE_URL"):
        # Support full URL or just path
        url = os.environ["DATABASE_URL"]
        if "://" in url:
            return url
        path = Path(url)
    else:
        path = DEFAULT_DB_PATH

    path = path.expanduser()
    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    return f"sqlite:///{path}"


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for a database URL.

    Pooling is disabled: every connect opens a fresh DBAPI connection from
    the URL, so a reconnect never hands back a stale handle.

    Args:
        url: Database URL.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Allow multi-threaded access
    return create_engine(url, echo=echo, poolclass=NullPool, connect_args=connect_args)
