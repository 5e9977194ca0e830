"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the authenticated organization.
"""

from aica.auth.middleware import get_principal
from aica.db.session import get_db, get_session_factory

__all__ = ["get_db", "get_principal", "get_session_factory"]
