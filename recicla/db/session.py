import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..core.errors import Unavailable
from .feed import ChangeFeed, Subscriber, track_changes

logger = logging.getLogger(__name__)

ATOMIC_DEPTH_KEY = "recicla.atomic_depth"

T = TypeVar("T")


def _serialize_sqlite_transactions(engine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two read-then-write
    # transactions interleave; take the write lock up front instead
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class LedgerStore:
    """
    Handle on the backing database: engine, session factory and change feed.

    One store is built per process (or per test) and passed to whoever needs it;
    nothing in the services reaches for a module-level engine.
    """

    def __init__(self, url: str | None = None, *, echo: bool = False, busy_timeout: float | None = None):
        self.url = url or settings.DATABASE_URL

        # Required for SQLite (otherwise threading errors)
        connect_args = {}
        if self.url.startswith("sqlite"):
            connect_args = {
                "check_same_thread": False,
                "timeout": busy_timeout if busy_timeout is not None else settings.SQLITE_BUSY_TIMEOUT,
            }

        self.engine = create_engine(
            self.url,
            echo=echo,
            future=True,
            connect_args=connect_args,
        )
        if self.engine.dialect.name == "sqlite":
            _serialize_sqlite_transactions(self.engine)

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        self.feed = ChangeFeed()
        track_changes(self.SessionLocal, self.feed)

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        from .base import Base
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
        return self.feed.subscribe(collection, callback)

    def watch(self, collection: str, query: Callable[[Session], T], callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Live read path: call ``callback`` with ``query``'s result now and again
        after every committed change to ``collection``. Returns the unsubscribe
        function.
        """
        def run(_event=None):
            with self.session() as db:
                result = query(db)
            callback(result)

        unsubscribe = self.subscribe(collection, run)
        try:
            run()
        except Exception:
            unsubscribe()
            raise
        return unsubscribe


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run the enclosed statements as one transaction on ``db``.

    Nested blocks join the enclosing one; only the outermost block commits,
    and any error rolls the whole unit back. Read-only callers use it too so
    their transaction (and on SQLite the write lock) ends with the read.

    Store failures become ``Unavailable``; the outcome of a commit that failed
    that way is unknown, so callers must re-read state before retrying.
    """
    depth = db.info.get(ATOMIC_DEPTH_KEY, 0)
    db.info[ATOMIC_DEPTH_KEY] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except OperationalError as e:
        if depth:
            raise
        db.rollback()
        logger.error(f"Ledger store operation failed: {e}", exc_info=True)
        raise Unavailable("The ledger store is unavailable; re-read the entity before retrying") from e
    except Exception:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info[ATOMIC_DEPTH_KEY] = depth
