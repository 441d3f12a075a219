# promo/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from promo.db.base import Base
from promo.db.session import create_database_engine, dispose_engine, get_session, transaction_session

__all__ = [
    "Base",
    "create_database_engine",
    "dispose_engine",
    "get_session",
    "transaction_session",
]
