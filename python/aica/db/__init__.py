"""Database module for the blob store.

Provides engine creation, session management, and ORM models.
"""

from aica.db.engine import create_db_engine, get_engine
from aica.db.models import Base, EncryptedConversation, Organization
from aica.db.session import create_session_factory, get_db, get_session_factory

__all__ = [
    "Base",
    "EncryptedConversation",
    "Organization",
    "create_db_engine",
    "create_session_factory",
    "get_db",
    "get_engine",
    "get_session_factory",
]
