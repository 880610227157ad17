"""Shared test fixtures for the Droply test suite.

Tests run against a throw-away SQLite database (override with
TEST_DATABASE_URL). Every test starts from an empty ``files`` table. The
ImageKit client is replaced by ``FakeBlobStore`` through a dependency
override, so no test touches the network.
"""

import os
import tempfile

# Configure the app before any droply imports.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "droply_test.db"),
)
os.environ["AUTH_ENABLED"] = "true"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["LOG_FORMAT"] = "text"

import threading
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import text
from fastapi.testclient import TestClient

from droply.database import get_db, SessionLocal
from droply.main import app
from droply.core.config import settings
from droply.core.token_factory import create_token
from droply.exceptions import BlobStoreError
from droply.middleware.request_context import rate_limiter
from droply.models import FileEntry
from droply.services.blob_store import UploadedBlob, get_blob_store


class FakeBlobStore:
    """In-memory stand-in for ImageKit.

    Knobs:
        fail_uploads   -- every upload raises BlobStoreError
        fail_lookups   -- every find_by_name raises BlobStoreError
        fail_deletes   -- set of ids whose deletion raises BlobStoreError
    """

    def __init__(self) -> None:
        self.blobs: Dict[str, Dict[str, Any]] = {}
        self.delete_calls: List[str] = []
        self.fail_uploads = False
        self.fail_lookups = False
        self.fail_deletes: set = set()
        self._lock = threading.Lock()
        self._counter = 0

    def upload(self, content: bytes, file_name: str, folder: str) -> UploadedBlob:
        if self.fail_uploads:
            raise BlobStoreError("upload refused")
        with self._lock:
            self._counter += 1
            file_id = f"blob-{self._counter}"
            path = f"{folder}/{file_name}"
            self.blobs[file_id] = {
                "type": "file",
                "fileId": file_id,
                "name": file_name,
                "filePath": path,
                "content": content,
            }
        url = f"https://ik.imagekit.io/test{path}"
        return UploadedBlob(
            file_id=file_id,
            name=file_name,
            url=url,
            file_path=path,
            size=len(content),
            file_type="image",
            thumbnail_url=f"https://ik.imagekit.io/test/tr:n-ik_ml_thumbnail{path}",
        )

    def add_blob(self, name: str, file_id: Optional[str] = None, kind: str = "file") -> str:
        """Seed a stored object, as if uploaded directly by a browser."""
        with self._lock:
            self._counter += 1
            file_id = file_id or f"blob-{self._counter}"
            self.blobs[file_id] = {"type": kind, "fileId": file_id, "name": name}
        return file_id

    def find_by_name(self, name: str, limit: int = 1) -> List[Dict[str, Any]]:
        if self.fail_lookups:
            raise BlobStoreError("search unavailable")
        with self._lock:
            matches = [dict(b) for b in self.blobs.values() if b["name"] == name]
        for match in matches:
            if match["type"] != "file":
                match.pop("fileId", None)
        return matches[:limit]

    def delete(self, file_id: str) -> None:
        with self._lock:
            self.delete_calls.append(file_id)
            if file_id in self.fail_deletes:
                raise BlobStoreError("delete refused")
            if file_id not in self.blobs:
                raise BlobStoreError(f"no such file: {file_id}", status_code=404)
            del self.blobs[file_id]

    def authentication_parameters(self) -> Dict[str, Any]:
        return {"token": "fake-token", "expire": 1700001800, "signature": "fake-signature"}


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty the files table before each test.

    Runs before the test (not after) so failures leave data for debugging.
    """
    db = SessionLocal()
    try:
        db.execute(text("DELETE FROM files"))
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def client(db, blob_store):
    """TestClient with the DB session and blob store overridden."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    rate_limiter.reset()  # Reset rate limiter so tests don't hit 429
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_for(user_id: str) -> dict:
    """Authorization header carrying a valid session for *user_id*."""
    token = create_token(user_id, settings.jwt_secret_key)
    return {"Authorization": f"Bearer {token}"}


def make_entry(db, user_id: str = "u1", **overrides) -> FileEntry:
    """Insert a row directly, bypassing the service. Defaults to a root-level file."""
    values = {
        "name": "photo.png",
        "path": f"/droply/{user_id}/photo.png",
        "size": 10,
        "type": "image/png",
        "file_url": f"https://ik.imagekit.io/test/droply/{user_id}/photo.png",
        "thumbnail_url": None,
        "user_id": user_id,
        "parent_id": None,
        "is_folder": False,
        "is_starred": False,
        "is_trash": False,
    }
    if overrides.get("is_folder"):
        values.update(type="folder", file_url="", size=0, path=f"/folders/{user_id}/x")
    values.update(overrides)
    entry = FileEntry(**values)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def make_folder(client, name: str = "Docs", user_id: str = "u1", parent_id: Optional[str] = None) -> dict:
    """Create a folder through the API and return its JSON."""
    resp = client.post(
        "/api/folders/create",
        json={"name": name, "userId": user_id, "parentId": parent_id},
        headers=auth_for(user_id),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["folder"]
