from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from lodgecore import config

# Declarative base
Base = declarative_base()


def build_engine(url: str, **kwargs):
    """
    Creates an engine for the transactional store.

    PostgreSQL relies on row locks (SELECT ... FOR UPDATE) taken by the services.
    SQLite ignores FOR UPDATE, so every transaction is opened with BEGIN IMMEDIATE,
    which serializes writers for the whole database file.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # hand transaction control to SQLAlchemy
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Session per request
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """
    Commits everything done inside the block, or rolls it all back.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
