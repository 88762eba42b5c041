"""
==============================================================================
Database Package
==============================================================================

SQLAlchemy infrastructure and the book record model.

├── database.py   - DatabaseManager, Base, get_db
└── models.py     - BookRecord

==============================================================================
"""

from .database import Base, DatabaseManager, get_database_manager, get_db
from .models import UNKNOWN_YEAR, BookRecord

__all__ = [
    "Base",
    "DatabaseManager",
    "get_database_manager",
    "get_db",
    "BookRecord",
    "UNKNOWN_YEAR",
]
