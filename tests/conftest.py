import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', f"sqlite:///{Path(tempfile.gettempdir()) / 'resume_api_test.db'}")
os.environ.setdefault('AUTH_JWT_SECRET', 'test-secret')
os.environ.setdefault('CREDIT_REFRESH_ENABLED', 'false')

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from resume_api.api.dependencies import get_ledger  # noqa: E402
from resume_api.core.security import create_access_token  # noqa: E402
from resume_api.database import build_engine, init_db  # noqa: E402
from resume_api.main import app  # noqa: E402
from resume_api.services.credit_ledger import CreditLedger  # noqa: E402


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def ledger(engine, clock):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return CreditLedger(factory, billing_period_days=30, clock=clock)


@pytest.fixture
def client(ledger):
    app.dependency_overrides[get_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict:
        return {'Authorization': f'Bearer {create_access_token(user_id)}'}

    return _headers
