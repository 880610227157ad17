"""Tests for direct upload, upload registration and upload credentials."""

import pytest

from droply.api import files as files_api
from droply.core.config import settings
from droply.services.file_service import read_capped
from tests.conftest import auth_for, make_entry, make_folder


def _upload(client, user_id="u1", parent_id=None, name="cat.png", content=b"\x89PNG data", mime="image/png"):
    data = {"userId": user_id}
    if parent_id is not None:
        data["parentId"] = parent_id
    return client.post(
        "/api/files/upload",
        files={"file": (name, content, mime)},
        data=data,
        headers=auth_for(user_id),
    )


class TestDirectUpload:

    def test_upload_into_folder(self, client, blob_store):
        folder = make_folder(client, name="Pics")
        resp = _upload(client, parent_id=folder["id"])
        assert resp.status_code == 200, resp.text

        entry = resp.json()
        assert entry["name"] == "cat.png"
        assert entry["type"] == "image/png"
        assert entry["size"] == len(b"\x89PNG data")
        assert entry["parentId"] == folder["id"]
        assert entry["isFolder"] is False
        assert entry["path"].startswith(f"/droply/u1/folder/{folder['id']}/")
        assert entry["path"].endswith(".png")
        assert entry["fileUrl"].startswith("https://ik.imagekit.io/")
        assert entry["thumbnailUrl"]
        assert len(blob_store.blobs) == 1

    def test_upload_to_root(self, client):
        resp = _upload(client)
        assert resp.status_code == 200
        entry = resp.json()
        assert entry["parentId"] is None
        assert entry["path"].startswith("/droply/u1/")
        assert "/folder/" not in entry["path"]

    def test_pdf_accepted(self, client):
        resp = _upload(client, name="doc.pdf", mime="application/pdf")
        assert resp.status_code == 200
        assert resp.json()["type"] == "application/pdf"

    def test_stored_name_is_unique_per_upload(self, client):
        a = _upload(client).json()
        b = _upload(client).json()
        assert a["path"] != b["path"]
        assert a["name"] == b["name"] == "cat.png"

    def test_unsupported_type_rejected(self, client, blob_store):
        resp = _upload(client, name="notes.txt", mime="text/plain")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Only images and pdf are supported"}
        assert blob_store.blobs == {}

    def test_missing_file_rejected(self, client):
        resp = client.post("/api/files/upload", data={"userId": "u1"}, headers=auth_for("u1"))
        assert resp.status_code == 400
        assert resp.json() == {"error": "No file provided"}

    def test_unknown_parent_is_404(self, client, blob_store):
        resp = _upload(client, parent_id="missing")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Parent folder not found"}
        assert blob_store.blobs == {}

    def test_other_users_parent_is_404(self, client):
        theirs = make_folder(client, name="Theirs", user_id="u2")
        resp = _upload(client, parent_id=theirs["id"])
        assert resp.status_code == 404

    def test_file_as_parent_is_404(self, client, db):
        f = make_entry(db)
        resp = _upload(client, parent_id=f.id)
        assert resp.status_code == 404

    def test_too_large_rejected(self, client, blob_store, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        resp = _upload(client, content=b"x" * 4096)
        assert resp.status_code == 400
        assert resp.json() == {"error": "File is too large"}
        assert blob_store.blobs == {}

    def test_upload_is_read_with_a_cap(self, client, monkeypatch):
        reads = []

        def recording_read(stream, limit):
            data = read_capped(stream, limit)
            reads.append((limit, len(data)))
            return data

        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        monkeypatch.setattr(files_api, "read_capped", recording_read)
        resp = _upload(client, content=b"x" * 4096)
        assert resp.status_code == 400
        assert reads == [(4, 5)]

    def test_payload_at_limit_accepted(self, client, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        resp = _upload(client, content=b"1234")
        assert resp.status_code == 200
        assert resp.json()["size"] == 4

    def test_blob_store_failure_is_500_and_writes_nothing(self, client, blob_store):
        blob_store.fail_uploads = True
        resp = _upload(client)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to upload file"}
        assert client.get("/health").json()["entry_count"] == 0

    def test_other_user_in_form_rejected(self, client):
        resp = client.post(
            "/api/files/upload",
            files={"file": ("cat.png", b"x", "image/png")},
            data={"userId": "u2"},
            headers=auth_for("u1"),
        )
        assert resp.status_code == 401


class TestRegisterUpload:

    def _register(self, client, imagekit, user_id="u1"):
        return client.post(
            "/api/upload",
            json={"imagekit": imagekit, "userId": user_id},
            headers=auth_for(user_id),
        )

    def test_register_full_result(self, client):
        resp = self._register(client, {
            "url": "https://ik.imagekit.io/test/droply/u1/sunset.jpg",
            "name": "sunset.jpg",
            "filePath": "/droply/u1/sunset.jpg",
            "size": 2048,
            "fileType": "image",
            "thumbnailUrl": "https://ik.imagekit.io/test/tr:n-thumb/sunset.jpg",
            "fileId": "ik-123",
            "height": 600,
        })
        assert resp.status_code == 200, resp.text
        entry = resp.json()
        assert entry["name"] == "sunset.jpg"
        assert entry["path"] == "/droply/u1/sunset.jpg"
        assert entry["size"] == 2048
        assert entry["type"] == "image"
        assert entry["fileUrl"] == "https://ik.imagekit.io/test/droply/u1/sunset.jpg"
        assert entry["parentId"] is None
        assert entry["userId"] == "u1"

    def test_defaults_applied(self, client):
        resp = self._register(client, {"url": "https://ik.imagekit.io/test/x"})
        assert resp.status_code == 200
        entry = resp.json()
        assert entry["name"] == "Untitled"
        assert entry["path"] == "/droply/u1/Untitled"
        assert entry["size"] == 0
        assert entry["type"] == "image"
        assert entry["thumbnailUrl"] is None

    @pytest.mark.parametrize("imagekit", [None, {}, {"url": ""}])
    def test_missing_url_rejected(self, client, imagekit):
        resp = self._register(client, imagekit)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid file upload data"}

    def test_negative_size_rejected(self, client):
        resp = self._register(client, {"url": "https://ik.imagekit.io/test/x", "size": -1})
        assert resp.status_code == 400

    def test_other_user_rejected(self, client):
        resp = client.post(
            "/api/upload",
            json={"imagekit": {"url": "https://x"}, "userId": "u2"},
            headers=auth_for("u1"),
        )
        assert resp.status_code == 401


class TestUploadAuth:

    def test_returns_signed_parameters(self, client):
        resp = client.get("/api/imagekit-auth", headers=auth_for("u1"))
        assert resp.status_code == 200
        assert resp.json() == {"token": "fake-token", "expire": 1700001800, "signature": "fake-signature"}


class TestUploadScenario:

    def test_docs_folder_upload_then_list(self, client):
        docs = make_folder(client, name="Docs")
        resp = _upload(client, parent_id=docs["id"], name="a.png")
        assert resp.status_code == 200
        uploaded = resp.json()

        listed = client.get(
            "/api/files",
            params={"userId": "u1", "parentId": docs["id"]},
            headers=auth_for("u1"),
        ).json()
        assert [e["id"] for e in listed] == [uploaded["id"]]
        assert listed[0]["name"] == "a.png"

        root = client.get("/api/files", params={"userId": "u1"}, headers=auth_for("u1")).json()
        assert [e["name"] for e in root] == ["Docs"]
