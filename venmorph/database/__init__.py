from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Base class for declarative models
Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Engine configuration for the attestation audit database"""
    if database_url.startswith('sqlite'):
        # SQLite uses a singleton/static pool, pool sizing does not apply
        return create_engine(database_url, echo=echo)

    return create_engine(
        database_url,
        pool_size=5,                # Maximum number of database connections in the pool
        max_overflow=10,            # Maximum number of connections that can be created beyond pool_size
        pool_timeout=30,            # Seconds to wait before giving up on getting a connection from the pool
        pool_recycle=1800,          # Recycle connections after 30 minutes
        echo=echo                   # Set to True to log all SQL
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine
    )


def init_db(engine: Engine, base: Optional[type] = None) -> None:
    (base or Base).metadata.create_all(bind=engine)
