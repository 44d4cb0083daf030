import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_session_factory(database_url: str) -> sessionmaker:
    """Build an engine for `database_url`, create the tables and return a session factory."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine_kwargs = {}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        engine_kwargs["poolclass"] = StaticPool

    logger.info("Using DATABASE_URL: %s", database_url)
    engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    create_db_and_tables(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_db_and_tables(engine):
    from . import models  # noqa: F401  registers the tables on Base
    Base.metadata.create_all(bind=engine)
