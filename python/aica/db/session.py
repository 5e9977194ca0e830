"""Session factories for the blob store database.

Routes get one session per request from get_db; the auth middleware opens
its own short-lived sessions from the same factory.
"""

from collections.abc import Iterator
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from aica.db.engine import get_engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """sessionmaker bound to engine (the configured engine if None).

    Objects stay loaded after commit so services can build responses from
    rows they just wrote.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: a session closed when the request finishes."""
    with get_session_factory()() as db:
        yield db
