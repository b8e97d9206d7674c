"""
Database configuration - SQLAlchemy persistence layer
The engine services only ever talk to a Session; durability is the database's job
"""
from contextlib import contextmanager
from typing import Callable, Iterator
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from hotelops.config import settings

Base = declarative_base()

_UOW_KEY = "hotelops.unit_of_work"
_AFTER_COMMIT_KEY = "hotelops.after_commit"


def make_engine(url: str = None):
    """Create an engine; SQLite connections may be shared across threads"""
    url = url or settings.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine) -> scoped_session:
    """Thread-local sessions bound to ``engine``"""
    return scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def init_db(engine) -> None:
    """Create all tables"""
    from hotelops.models import ontology  # noqa
    Base.metadata.create_all(bind=engine)

    # file databases only
    if engine.dialect.name == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        with engine.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.commit()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    One public operation = one transaction.

    Nested calls (e.g. StayService -> BillingService) join the outer unit of
    work; only the outermost level commits. Any exception rolls back the
    whole unit so a failed call leaves no partial state behind.
    """
    if db.info.get(_UOW_KEY):
        yield db
        return

    db.info[_UOW_KEY] = True
    db.info[_AFTER_COMMIT_KEY] = []
    try:
        yield db
        db.commit()
        callbacks = db.info[_AFTER_COMMIT_KEY]
    except Exception:
        db.rollback()
        raise
    finally:
        db.info.pop(_UOW_KEY, None)
        db.info.pop(_AFTER_COMMIT_KEY, None)

    for callback in callbacks:
        callback()


def after_commit(db: Session, callback: Callable[[], None]) -> None:
    """Run ``callback`` once the enclosing unit of work commits; dropped on rollback"""
    if db.info.get(_UOW_KEY):
        db.info[_AFTER_COMMIT_KEY].append(callback)
    else:
        callback()
