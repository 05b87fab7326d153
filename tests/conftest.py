import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from recicla.core.errors import ReciclaError
from recicla.db.session import LedgerStore, atomic
from recicla.models.points import TransactionType
from recicla.models.user import UserRole
from recicla.services import points_ledger, user_service


@pytest.fixture
def store(tmp_path):
    """A file-backed SQLite store per test, so worker threads share it."""
    store = LedgerStore(f"sqlite:///{tmp_path / 'recicla.db'}", busy_timeout=30.0)
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def db(store):
    session = store.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def make(user_id: str, *, role: UserRole = UserRole.CITIZEN, points: int = 0, name: str | None = None):
        user_service.register_user(db, user_id=user_id, display_name=name or user_id.title())
        if role != UserRole.CITIZEN:
            with atomic(db):
                user = user_service.get_user(db, user_id)
                user.role = role
        if points:
            points_ledger.credit(db, user_id=user_id, amount=points, type=TransactionType.ADJUST, reason="setup")
        return user_service.get_user(db, user_id)
    return make


@pytest.fixture
def citizen(make_user):
    return make_user("ana", name="Ana")


@pytest.fixture
def operator(make_user):
    return make_user("olga", role=UserRole.OPERATOR, name="Olga")


@pytest.fixture
def admin(make_user):
    return make_user("root", role=UserRole.ADMIN, name="Root")


@pytest.fixture
def run_concurrently(store):
    """
    Run ``fn(session, i)`` in ``count`` threads, each with its own session,
    released together. Returns ``("ok", result)`` or ``("error", exc)`` per thread.
    """
    def run(fn, count):
        barrier = threading.Barrier(count)

        def worker(i):
            with store.session() as session:
                barrier.wait()
                try:
                    return "ok", fn(session, i)
                except ReciclaError as e:
                    return "error", e

        with ThreadPoolExecutor(max_workers=count) as pool:
            return list(pool.map(worker, range(count)))
    return run
