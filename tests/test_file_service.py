"""Unit tests for FileService and its helpers, without HTTP."""

import io
import threading
import time

import pytest

from droply.database import SessionLocal
from droply.exceptions import (
    EntryNotFoundError,
    InternalError,
    ParentFolderNotFoundError,
    ValidationError,
)
from droply.models import FileEntry
from droply.repositories import FileRepository
from droply.schemas import ImageKitUploadResult
from droply.services.file_service import (
    BlobOutcomeStatus,
    FileService,
    derive_blob_id,
    is_supported_upload_type,
    read_capped,
    storage_file_name,
    storage_folder,
)
from tests.conftest import make_entry


class TestHelpers:

    def test_derive_blob_id_from_url(self):
        assert derive_blob_id("https://ik.imagekit.io/x/droply/u1/abc.png?tr=w-100", "/p/q.png") == "abc.png"

    def test_derive_blob_id_falls_back_to_path(self):
        assert derive_blob_id("", "/droply/u1/q.png") == "q.png"
        assert derive_blob_id("https://ik.imagekit.io/x/", "/droply/u1/q.png") == "q.png"

    def test_derive_blob_id_none_when_nothing_usable(self):
        assert derive_blob_id("", "") is None
        assert derive_blob_id(None, None) is None

    def test_storage_file_name_keeps_extension(self):
        name = storage_file_name("holiday.JPG")
        assert name.endswith(".JPG")
        assert len(name) == 36 + 4

    def test_storage_file_name_without_extension(self):
        assert "." not in storage_file_name("README")

    def test_read_capped_stops_one_byte_past_limit(self):
        stream = io.BytesIO(b"x" * 1000)
        assert read_capped(stream, 4) == b"xxxxx"
        assert stream.tell() == 5

    def test_read_capped_short_payload(self):
        assert read_capped(io.BytesIO(b"ab"), 4) == b"ab"

    def test_storage_folder(self):
        assert storage_folder("u1", None) == "/droply/u1"
        assert storage_folder("u1", "f1") == "/droply/u1/folder/f1"

    @pytest.mark.parametrize("mime,ok", [
        ("image/png", True),
        ("image/svg+xml", True),
        ("application/pdf", True),
        ("text/plain", False),
        ("", False),
        (None, False),
    ])
    def test_supported_upload_types(self, mime, ok):
        assert is_supported_upload_type(mime) is ok


class TestFolderHierarchy:

    def test_create_folder_under_owned_folder(self, db):
        service = FileService(db)
        parent = service.create_folder("u1", "Parent")
        child = service.create_folder("u1", "Child", parent.id)
        assert child.parent_id == parent.id
        assert child.is_folder is True

    def test_parent_of_other_owner_rejected(self, db):
        theirs = FileService(db).create_folder("u2", "Theirs")
        with pytest.raises(ParentFolderNotFoundError):
            FileService(db).create_folder("u1", "Mine", theirs.id)

    def test_depth_bound_enforced(self, db):
        service = FileService(db, max_folder_depth=3)
        parent_id = None
        for i in range(3):
            parent_id = service.create_folder("u1", f"level-{i}", parent_id).id
        with pytest.raises(ValidationError, match="too deep"):
            service.create_folder("u1", "too-deep", parent_id)

    def test_ancestor_chain(self, db):
        service = FileService(db)
        a = service.create_folder("u1", "a")
        b = service.create_folder("u1", "b", a.id)
        c = service.create_folder("u1", "c", b.id)
        assert FileRepository(db).get_ancestor_ids("u1", c.id, 64) == [c.id, b.id, a.id]

    def test_descendants_exclude_roots(self, db):
        service = FileService(db)
        a = service.create_folder("u1", "a")
        b = service.create_folder("u1", "b", a.id)
        leaf = make_entry(db, parent_id=b.id)
        found = {e.id for e in FileRepository(db).get_descendants("u1", [a.id])}
        assert found == {b.id, leaf.id}

    def test_move_cycle_rejected(self, db):
        service = FileService(db)
        a = service.create_folder("u1", "a")
        b = service.create_folder("u1", "b", a.id)
        with pytest.raises(ValidationError):
            service.move_entry("u1", a.id, b.id)

    def test_move_unknown_entry(self, db):
        with pytest.raises(EntryNotFoundError):
            FileService(db).move_entry("u1", "missing", None)

    def test_deleting_folder_row_cascades_to_children(self, db):
        service = FileService(db)
        folder = service.create_folder("u1", "a")
        make_entry(db, parent_id=folder.id)
        FileRepository(db).delete_many("u1", [folder.id])
        db.commit()
        assert db.query(FileEntry).count() == 0


class TestRegisterUpload:

    def test_missing_result_rejected(self, db):
        with pytest.raises(ValidationError):
            FileService(db).register_upload("u1", None)

    def test_registered_entry_is_root_level(self, db):
        entry = FileService(db).register_upload(
            "u1", ImageKitUploadResult(url="https://ik.imagekit.io/t/a.png", name="a.png")
        )
        assert entry.parent_id is None
        assert entry.path == "/droply/u1/a.png"


class TestUploadFile:

    def test_requires_blob_store(self, db):
        with pytest.raises(InternalError):
            FileService(db).upload_file("u1", b"data", "a.png", "image/png")

    def test_validation_precedes_upload(self, db, blob_store):
        service = FileService(db, blob_store)
        with pytest.raises(ValidationError, match="No file provided"):
            service.upload_file("u1", None, "", None)
        with pytest.raises(ParentFolderNotFoundError):
            service.upload_file("u1", b"data", "a.txt", "text/plain", "missing")
        assert blob_store.blobs == {}


class TestEmptyTrashService:

    def test_outcomes_reported_per_entry(self, db, blob_store):
        blob_store.add_blob("a.png")
        make_entry(db, name="a.png", file_url="https://ik.imagekit.io/t/a.png", is_trash=True)
        make_entry(db, name="b.png", file_url="https://ik.imagekit.io/t/b.png", is_trash=True)
        make_entry(db, name="Empty", is_folder=True, is_trash=True)

        result = FileService(db, blob_store, delete_concurrency=2).empty_trash("u1")
        assert result.deleted_count == 3
        assert result.count(BlobOutcomeStatus.DELETED) == 1
        assert result.count(BlobOutcomeStatus.FAILED) == 1
        assert result.count(BlobOutcomeStatus.SKIPPED) == 1

    def test_empty_trash_is_noop_when_nothing_trashed(self, db, blob_store):
        make_entry(db)
        result = FileService(db, blob_store).empty_trash("u1")
        assert result.deleted_count == 0
        assert result.outcomes == []
        assert blob_store.delete_calls == []


class TestMoveDepthAndConcurrency:

    def test_moved_subtree_height_counts_toward_depth(self, db):
        service = FileService(db, max_folder_depth=3)
        a = service.create_folder("u1", "a")
        service.create_folder("u1", "b", a.id)
        x = service.create_folder("u1", "x")
        y = service.create_folder("u1", "y", x.id)

        with pytest.raises(ValidationError, match="too deep"):
            service.move_entry("u1", a.id, y.id)

        moved = service.move_entry("u1", a.id, x.id)
        assert moved.parent_id == x.id

    def test_move_depth_matches_create_rule(self, db):
        service = FileService(db, max_folder_depth=2)
        x = service.create_folder("u1", "x")
        y = service.create_folder("u1", "y", x.id)
        f = make_entry(db)

        with pytest.raises(ValidationError, match="too deep"):
            service.create_folder("u1", "z", y.id)
        with pytest.raises(ValidationError, match="too deep"):
            service.move_entry("u1", f.id, y.id)
        assert service.move_entry("u1", f.id, x.id).parent_id == x.id

    def test_crossing_moves_cannot_form_a_cycle(self, db):
        """A second move started mid-flight waits for the first, then sees its result."""
        service = FileService(db)
        a_id = service.create_folder("u1", "a").id
        b_id = service.create_folder("u1", "b").id

        errors = []

        def move_b_under_a():
            other = SessionLocal()
            try:
                FileService(other).move_entry("u1", b_id, a_id)
            except Exception as e:
                errors.append(e)
            finally:
                other.close()

        worker = threading.Thread(target=move_b_under_a)
        commit = service._commit_entry

        def commit_after_racing_move(entry, failure_message):
            worker.start()
            time.sleep(0.3)
            return commit(entry, failure_message)

        service._commit_entry = commit_after_racing_move
        service.move_entry("u1", a_id, b_id)
        db.commit()
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert len(errors) == 1 and isinstance(errors[0], ValidationError)

        db.expire_all()
        a = db.get(FileEntry, a_id)
        b = db.get(FileEntry, b_id)
        assert a.parent_id == b_id
        assert b.parent_id is None
