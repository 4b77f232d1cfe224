"""
Database engine helpers.

Every engine built here carries bounded timeouts so a stalled store surfaces
as a (retryable) StoreError instead of hanging an import.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_STORE_TIMEOUT_SECONDS = 30


def build_engine(database_url: str, timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
                 **kwargs) -> Engine:
    """
    Create an engine with bounded connection and statement timeouts.

    Args:
        database_url: SQLAlchemy URL
        timeout_seconds: Upper bound for acquiring a connection and for a
                         single statement (PostgreSQL) / lock wait (SQLite)
        **kwargs: Passed through to create_engine (pool sizing, echo, ...)
    """
    connect_args = dict(kwargs.pop('connect_args', {}))

    if database_url.startswith('sqlite'):
        connect_args.setdefault('timeout', timeout_seconds)
        connect_args.setdefault('check_same_thread', False)
        engine = create_engine(database_url, connect_args=connect_args, **kwargs)
        enable_sqlite_savepoints(engine)
        return engine

    if database_url.startswith('postgresql'):
        connect_args.setdefault('connect_timeout', int(timeout_seconds))
        connect_args.setdefault('options', f"-c statement_timeout={int(timeout_seconds * 1000)}")

    kwargs.setdefault('pool_timeout', timeout_seconds)
    kwargs.setdefault('pool_pre_ping', True)
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def enable_sqlite_savepoints(engine: Engine):
    """
    Make pysqlite honour SAVEPOINT and foreign keys.

    pysqlite defers BEGIN on its own, which breaks nested transactions;
    take over transaction control and switch foreign-key enforcement on.
    """
    @event.listens_for(engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN')

    logger.debug("SQLite savepoint/foreign-key support enabled")


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory matching the API and worker settings."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
