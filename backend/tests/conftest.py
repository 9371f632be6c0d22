"""Shared test fixtures for the filedrive backend test suite.

All tests use a SQLite database file in a temporary directory (a file, not
``:memory:``, so that several connections and threads see the same data).
Each test gets a clean schema via drop_all/create_all, ensuring complete
isolation.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="filedrive-tests-")

# Point the app at throwaway storage before any app imports.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(_TEST_DIR, 'filedrive_test.db')}",
)
os.environ["BLOB_BACKEND"] = "local"
os.environ["BLOB_ROOT"] = os.path.join(_TEST_DIR, "blobs")
os.environ["ENVIRONMENT"] = "development"
os.environ["RECONCILE_ON_STARTUP"] = "false"
os.environ["LOG_FORMAT"] = "text"

import io

import pytest
from fastapi.testclient import TestClient

from filedrive.api.nodes import get_blob_store
from filedrive.database import Base, SessionLocal, engine, init_db
from filedrive.main import app
from filedrive.services.tree_service import TreeService
from filedrive.storage.local import LocalBlobStore

OWNER = "alice"
OTHER_OWNER = "bob"


@pytest.fixture(autouse=True)
def _clean_schema():
    """Recreate all tables before each test for isolation.

    Runs before the test (not after) so test failures leave data
    available for debugging.
    """
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def blob_store(tmp_path) -> LocalBlobStore:
    """Local blob store rooted in the test's temporary directory."""
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture()
def service(db, blob_store) -> TreeService:
    return TreeService(db, blob_store)


@pytest.fixture()
def client(blob_store):
    """FastAPI TestClient with the blob store dependency overridden to the test store."""
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def owner_headers() -> dict:
    """Identity headers as forwarded by the gateway."""
    return {"X-Owner-Id": OWNER}


@pytest.fixture()
def other_owner_headers() -> dict:
    return {"X-Owner-Id": OTHER_OWNER}


def make_stream(data: bytes = b"hi") -> io.BytesIO:
    """Factory for upload byte streams."""
    return io.BytesIO(data)


def stored_keys(blob_store) -> set:
    """All storage keys currently in a blob store."""
    return {info.key for info in blob_store.iter_blobs()}
