"""
Database access

Relational store shared by the storefront and the point-of-sale desk.
One Session is handed out per request; every stock-mutating operation
runs inside a single `unit_of_work`.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from errors import InternalError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookstore.db")

Base = declarative_base()


def make_engine(url: str = DATABASE_URL, **kwargs):
    connect_args = {}
    sqlite = url.startswith("sqlite")
    if sqlite:
        connect_args["check_same_thread"] = False
    engine = create_engine(
        url,
        echo=os.getenv("DATABASE_ECHO", "").lower() in ("1", "true"),
        pool_pre_ping=True,
        connect_args=connect_args,
        **kwargs,
    )
    if sqlite:
        _serialize_sqlite_writers(engine)
    return engine


def _serialize_sqlite_writers(engine) -> None:
    """SQLite has no row locks and ignores FOR UPDATE.

    Take the database write lock when the transaction begins instead, so a
    stock read and the decrement that follows it cannot interleave with
    another writer.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        # pysqlite would otherwise defer BEGIN until the first write
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None) -> None:
    # models must be imported so their tables are registered on Base
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """Commit everything done in the block, or nothing.

    Any exception rolls the whole transaction back before it reaches the
    caller. Driver/store failures surface as InternalError.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("transaction rolled back after store failure")
        raise InternalError("Database operation failed") from exc
    except Exception:
        session.rollback()
        raise
