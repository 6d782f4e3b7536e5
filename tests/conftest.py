import os
import tempfile
from contextlib import contextmanager

import pytest

# Settings are read at import time
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="marketplace-uploads-"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from fastapi.testclient import TestClient

from marketplace import main
from marketplace.checkout import CheckoutProcessor
from tests.fakes import FakeConn, FakeDatabase


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def processor(db):
    return CheckoutProcessor(db.store)


@pytest.fixture
def fake_conn(monkeypatch):
    """Every `get_conn()` in the app yields this one scripted connection."""
    conn = FakeConn()
    state = {"commits": 0, "rollbacks": 0}

    @contextmanager
    def _get_conn():
        try:
            yield conn
            state["commits"] += 1
        except Exception:
            state["rollbacks"] += 1
            raise

    conn.state = state
    monkeypatch.setattr(main, "get_conn", _get_conn)
    return conn


@pytest.fixture
def client(db):
    main.app.dependency_overrides[main.get_processor] = lambda: CheckoutProcessor(db.store)
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
