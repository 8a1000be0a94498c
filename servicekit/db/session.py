from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from servicekit.config import get_settings
from servicekit.observability.sqlalchemy import query_tracer_from_settings


def create_traced_engine(database_url: str) -> Engine:
    """Engine whose statements are logged by a `QueryTracer`."""

    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise every session sees its own empty database.
        engine = create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    query_tracer_from_settings(get_settings()).install(engine)
    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_traced_engine(get_settings().database_url)


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    # expire_on_commit=False: repositories hand entities back after their session closed.
    return sessionmaker(bind=engine or get_engine(), autoflush=False, expire_on_commit=False)

