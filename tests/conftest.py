"""
Shared fixtures: a fresh SQLite file database per test (built with the same
engine options as the app), a session bound to it, and a FastAPI TestClient
whose get_db dependency uses that session.
"""
import os
import tempfile
from datetime import date

# The app's own engine must not write into the working directory
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+pysqlite:///{os.path.join(tempfile.mkdtemp(prefix='fulfillment-'), 'app.db')}"
)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.context import set_actor, set_request_id  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db import models  # noqa: E402,F401
from app.db.session import engine_options, get_db  # noqa: E402
from services.inventory import service as inventory  # noqa: E402
from services.mrp import bom as boms  # noqa: E402


@pytest.fixture(scope="function")
def engine(tmp_path):
    url = f"sqlite+pysqlite:///{tmp_path / 'test.db'}"
    eng = create_engine(url, future=True, **engine_options(url))
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory):
    """Create a fresh database session for each test"""
    set_actor(None)
    set_request_id(None)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    from main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ============================================================================
# Catalog fixtures
# ============================================================================

@pytest.fixture
def make_product(db):
    def _make(name, product_type="standard", stock=0, **kw):
        return inventory.create_product(db, name=name, product_type=product_type, stock=stock, **kw)
    return _make


@pytest.fixture
def widget_setup(db, make_product):
    """Finished product A (stock 0), component X (stock 10), BOM(A) = 2 x X."""
    a = make_product("Widget A", "manufactured", 0)
    x = make_product("Component X", "component", 10)
    bom = boms.create_bom(db, a.id, [(x.id, 2)])
    return a, x, bom


@pytest.fixture
def schedule():
    return {"scheduled_start_date": date(2026, 3, 1), "scheduled_end_date": date(2026, 3, 5)}
