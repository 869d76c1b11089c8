from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from finnest.config import settings
from finnest.errors import StoreUnavailable

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False},
    echo=False,
)


@event.listens_for(engine, "connect")
def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(settings.store_busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
SessionLocal = sessionmaker(bind=engine)


class Base(DeclarativeBase):
    pass


def init_db(bind=None) -> None:
    from finnest import models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Run one logical engine operation as a single transaction.

    Commits once on success. On any failure the session is rolled back so
    none of the operation's writes become visible; SQLite lock/IO errors
    are re-raised as StoreUnavailable.
    """
    try:
        yield db
        db.commit()
    except OperationalError as e:
        db.rollback()
        raise StoreUnavailable(str(e.orig) if e.orig else str(e)) from e
    except BaseException:
        db.rollback()
        raise
