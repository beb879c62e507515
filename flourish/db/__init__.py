"""Database initialization and persistence layer."""

from flourish.db.engine import (
    create_db_engine,
    get_database_url,
)
from flourish.db.models import (
    Base,
    CatalogDetailsDB,
    CatalogEntryDB,
    LibraryEntryDB,
)
from flourish.db.repositories import (
    CatalogRepository,
    DetailsRepository,
    LibraryRepository,
)
from flourish.db.store import (
    ResilientStore,
    StoreUnavailable,
    TransactionError,
    TxHandle,
    WriteResult,
    open_store,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    # Models
    "Base",
    "CatalogEntryDB",
    "CatalogDetailsDB",
    "LibraryEntryDB",
    # Repositories
    "CatalogRepository",
    "DetailsRepository",
    "LibraryRepository",
    # Store
    "ResilientStore",
    "StoreUnavailable",
    "TransactionError",
    "TxHandle",
    "WriteResult",
    "open_store",
]
