from recicla.core.config import settings
from recicla.db.session import LedgerStore


def init():
    store = LedgerStore()
    store.create_all()
    store.dispose()


if __name__ == "__main__":
    init()
    print(f"Database schema created at {settings.DATABASE_URL}")
