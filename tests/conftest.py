import os

# Keep the module-level engine off the real data directory; tests build their own.
os.environ.setdefault("MONEY_TRACKER_DATABASE_URL", "sqlite://")
os.environ.setdefault("MONEY_TRACKER_SEED_CATEGORIES", "0")

import pytest  # noqa: E402

from database import Base, create_db_engine  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'money.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()
