import os
import tempfile

# Settings and the engine are built at import time, so the environment must be
# pinned before any sessionguard module loads.
_TEST_DIR = tempfile.mkdtemp(prefix="sessionguard-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'sessionguard.db')}"
os.environ["DB_INIT_MODE"] = "create_all"
os.environ["DENY_LIST_BACKEND"] = "memory"
os.environ["RUN_EVENT_WORKER"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FILE"] = os.path.join(_TEST_DIR, "app.log")

import pytest  # noqa: E402

from sessionguard.core.database import Base, SessionLocal, engine  # noqa: E402
from sessionguard.core.deny_list import access_deny_list  # noqa: E402
from sessionguard.models.principal import Principal  # noqa: E402
from sessionguard.services.rate_limiter import refresh_rate_limiter  # noqa: E402

CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_shared_state():
    access_deny_list.close()
    refresh_rate_limiter.reset()
    yield
    access_deny_list.close()


@pytest.fixture
def principal(db):
    p = Principal(email="ana@example.com", name="Ana")
    db.add(p)
    db.commit()
    db.refresh(p)
    return p
