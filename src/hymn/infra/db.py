from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.schema import MetaData

from hymn.infra.settings import settings

# Deterministic constraint/index names
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def get_engine(db_url: str | None = None) -> Engine:
    """Create a database engine for ``db_url`` (defaults to ``settings.database_url``).

    SQLite URLs get ``check_same_thread=False``; an in-memory SQLite URL is
    pinned to a single connection so every session sees the same database.
    """
    chosen_url = db_url or settings.database_url

    connect_args: dict[str, object] = {}
    kwargs: dict[str, object] = {}
    if chosen_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if chosen_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(
        chosen_url,
        echo=settings.echo_sql,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
        **kwargs,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine`` with the project's UoW defaults."""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(engine: Engine) -> None:
    """Create all tables known to ``Base`` (idempotent)."""
    # Import for side effect: registers the mapped classes on Base.metadata.
    from hymn.domain import entities  # noqa: F401

    Base.metadata.create_all(engine)
