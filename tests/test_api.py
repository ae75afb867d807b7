# tests/test_api.py
"""
Tests for the file manager actions on top of the local and S3 storages.
"""
import io
import os
import zipfile

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from filemanager.api import LocalApi, S3Api
from filemanager.file_access.events import (
    AfterFileExtractEvent,
    AfterFolderCreateEvent,
    AfterFolderReadEvent,
    AfterFolderSeekEvent,
    AfterItemDeleteEvent,
    AfterItemDownloadEvent,
    AfterItemMoveEvent,
)
from filemanager.file_access.exceptions import (
    BackendFailureError,
    ConflictError,
    ForbiddenError,
    InvalidPathError,
    NotFoundError,
)
from filemanager.file_access.registry import StorageRegistry
from filemanager.file_access.upload import UploadedFile

from tests.conftest import BUCKET, make_image


def zip_bytes(entries):
    """Build an archive from ``{name: bytes}``; names ending in / are folders."""
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as zf:
        for name, data in entries.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), "")
            else:
                zf.writestr(name, data)
    return out.getvalue()


def ids(response):
    return [entry["id"] for entry in response]


@pytest.fixture
def api(registry):
    return LocalApi(registry, request_id="test-request")


@pytest.fixture
def events(api):
    received = []
    for event_class in (AfterFolderReadEvent, AfterFolderSeekEvent, AfterFolderCreateEvent,
                        AfterItemMoveEvent, AfterItemDeleteEvent, AfterItemDownloadEvent,
                        AfterFileExtractEvent):
        api.dispatcher.add_listener(event_class.NAME, received.append)
    return received


@pytest.fixture
def sample_tree(files_root):
    (files_root / "a.txt").write_bytes(b"hello")
    (files_root / "docs").mkdir()
    (files_root / "docs" / "b.txt").write_bytes(b"hi!")
    (files_root / "tool.exe").write_bytes(b"MZ")
    (files_root / "_thumbs").mkdir()
    return files_root


class TestInitiate:
    def test_shared_config(self, api):
        response = api.initiate()
        assert response["id"] == "/"
        assert response["type"] == "initiate"
        config = response["attributes"]["config"]
        assert config["security"]["read_only"] is False
        assert "exe" in config["security"]["extensions"]["restrictions"]
        assert config["upload"]["file_size_limit"] == 16_000_000
        assert config["viewer"]["absolute_path"] is True
        assert "options" not in config


class TestReadFolder:
    def test_hides_restricted_entries(self, api, sample_tree):
        response = api.read_folder("/")
        assert ids(response) == ["/a.txt", "/docs/"]
        assert response[0]["type"] == "file"
        assert response[0]["attributes"]["size"] == 5
        assert response[1]["type"] == "folder"

    def test_dispatches_file_list(self, api, events, sample_tree):
        api.read_folder("/")
        [event] = events
        assert isinstance(event, AfterFolderReadEvent)
        assert [os.path.basename(path.rstrip("/")) for path in event.files_list] == ["a.txt", "docs"]

    def test_file_is_not_a_folder(self, api, sample_tree):
        with pytest.raises(NotFoundError) as exc_info:
            api.read_folder("/a.txt")
        assert exc_info.value.label == "DIRECTORY_NOT_EXIST"

    def test_missing_folder(self, api):
        with pytest.raises(NotFoundError) as exc_info:
            api.read_folder("/missing/")
        assert exc_info.value.label == "DIRECTORY_NOT_EXIST"

    def test_get_info(self, api, sample_tree):
        response = api.get_info("/docs/b.txt")
        assert response["id"] == "/docs/b.txt"
        assert response["attributes"]["name"] == "b.txt"


class TestSeekFolder:
    def test_prefix_match_is_recursive_and_case_insensitive(self, api, events, files_root):
        (files_root / "docs" / "sub").mkdir(parents=True)
        (files_root / "docs" / "Report.txt").write_bytes(b"r")
        (files_root / "docs" / "sub" / "report-2.txt").write_bytes(b"r")
        (files_root / "other.txt").write_bytes(b"o")
        (files_root / "report.exe").write_bytes(b"x")

        response = api.seek_folder("/", "rep")

        assert sorted(ids(response)) == ["/docs/Report.txt", "/docs/sub/report-2.txt"]
        [event] = events
        assert event.search_string == "rep"
        assert len(event.search_result) == 2


class TestAddFolder:
    def test_creates_normalized_folder(self, api, events, files_root):
        response = api.add_folder("/", "new folder")
        assert response["id"] == "/new_folder/"
        assert (files_root / "new_folder").is_dir()
        assert isinstance(events[0], AfterFolderCreateEvent)

    def test_existing_folder_conflicts(self, api, files_root):
        api.add_folder("/", "docs")
        with pytest.raises(ConflictError) as exc_info:
            api.add_folder("/", "docs")
        assert exc_info.value.label == "DIRECTORY_ALREADY_EXISTS"

    def test_read_only_storage(self, make_local_storage, files_root):
        registry = StorageRegistry()
        registry.register(make_local_storage({"security.read_only": True}))
        with pytest.raises(ForbiddenError) as exc_info:
            LocalApi(registry).add_folder("/", "docs")
        assert exc_info.value.label == "NOT_ALLOWED"
        assert not (files_root / "docs").exists()

    def test_failing_listener_does_not_break_action(self, api, files_root):
        def broken(event):
            raise RuntimeError("listener failure")

        api.dispatcher.add_listener(AfterFolderCreateEvent.NAME, broken)
        response = api.add_folder("/", "docs")
        assert response["id"] == "/docs/"
        assert (files_root / "docs").is_dir()


class TestRename:
    def test_rename_file(self, api, sample_tree):
        response = api.rename("/docs/b.txt", "c.txt")
        assert response["id"] == "/docs/c.txt"
        assert (sample_tree / "docs" / "c.txt").read_bytes() == b"hi!"
        assert not (sample_tree / "docs" / "b.txt").exists()

    def test_rename_folder(self, api, sample_tree):
        response = api.rename("/docs/", "papers")
        assert response["id"] == "/papers/"
        assert (sample_tree / "papers" / "b.txt").exists()

    def test_slash_in_name(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.rename("/a.txt", "docs/a.txt")
        assert exc_info.value.label == "FORBIDDEN_CHAR_SLASH"

    def test_root_cannot_be_renamed(self, api):
        with pytest.raises(ForbiddenError) as exc_info:
            api.rename("/", "other")
        assert exc_info.value.label == "NOT_ALLOWED"

    def test_existing_target_conflicts(self, api, sample_tree):
        (sample_tree / "b.txt").write_bytes(b"b")
        with pytest.raises(ConflictError) as exc_info:
            api.rename("/a.txt", "b.txt")
        assert exc_info.value.label == "FILE_ALREADY_EXISTS"
        assert (sample_tree / "a.txt").read_bytes() == b"hello"

    def test_thumbnail_follows(self, api, local_storage, files_root):
        (files_root / "photo.png").write_bytes(make_image(200, 100))
        local_storage.get_item("/photo.png").create_thumbnail()
        assert (files_root / "_thumbs" / "photo.png").exists()

        api.rename("/photo.png", "picture.png")

        assert (files_root / "_thumbs" / "picture.png").exists()
        assert not (files_root / "_thumbs" / "photo.png").exists()


class TestCopyMove:
    def test_copy_file_into_folder(self, api, sample_tree):
        response = api.copy("/a.txt", "/docs/")
        assert response["id"] == "/docs/a.txt"
        assert (sample_tree / "a.txt").exists()
        assert (sample_tree / "docs" / "a.txt").read_bytes() == b"hello"

    def test_copy_folder(self, api, sample_tree):
        (sample_tree / "backup").mkdir()
        response = api.copy("/docs/", "/backup/")
        assert response["id"] == "/backup/docs/"
        assert (sample_tree / "backup" / "docs" / "b.txt").read_bytes() == b"hi!"

    def test_copy_conflict(self, api, sample_tree):
        (sample_tree / "docs" / "a.txt").write_bytes(b"other")
        with pytest.raises(ConflictError):
            api.copy("/a.txt", "/docs/")

    def test_copy_to_missing_folder(self, api, sample_tree):
        with pytest.raises(NotFoundError) as exc_info:
            api.copy("/a.txt", "/missing/")
        assert exc_info.value.label == "DIRECTORY_NOT_EXIST"

    def test_copy_to_file(self, api, sample_tree):
        with pytest.raises(NotFoundError) as exc_info:
            api.copy("/docs/b.txt", "/a.txt")
        assert exc_info.value.label == "DIRECTORY_NOT_EXIST"

    def test_move_file(self, api, events, sample_tree):
        response = api.move("/a.txt", "/docs/")
        assert response["id"] == "/docs/a.txt"
        assert not (sample_tree / "a.txt").exists()
        [event] = events
        assert event.item_data.is_exists is True
        assert event.original_item_data.is_exists is False

    def test_move_root_not_allowed(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.move("/", "/docs/")
        assert exc_info.value.label == "NOT_ALLOWED"

    def test_copy_folder_into_itself_not_allowed(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.copy("/docs/", "/docs/")
        assert exc_info.value.label == "NOT_ALLOWED"
        assert sorted(os.listdir(sample_tree / "docs")) == ["b.txt"]

    def test_copy_folder_into_subfolder_not_allowed(self, api, sample_tree):
        (sample_tree / "docs" / "sub").mkdir()
        with pytest.raises(ForbiddenError) as exc_info:
            api.copy("/docs/", "/docs/sub/")
        assert exc_info.value.label == "NOT_ALLOWED"
        assert os.listdir(sample_tree / "docs" / "sub") == []

    def test_move_folder_into_itself_not_allowed(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.move("/docs/", "/docs/")
        assert exc_info.value.label == "NOT_ALLOWED"
        assert (sample_tree / "docs" / "b.txt").read_bytes() == b"hi!"

    def test_copy_folder_to_parent_conflicts(self, api, sample_tree):
        with pytest.raises(ConflictError):
            api.copy("/docs/", "/")


class TestSaveAndDelete:
    def test_save_file(self, api, sample_tree):
        response = api.save_file("/a.txt", "changed content")
        assert response["attributes"]["size"] == len("changed content")
        assert (sample_tree / "a.txt").read_text() == "changed content"

    def test_save_folder_forbidden(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.save_file("/docs/", "text")
        assert exc_info.value.label == "FORBIDDEN_ACTION_DIR"

    def test_save_missing_file(self, api):
        with pytest.raises(NotFoundError) as exc_info:
            api.save_file("/new.txt", "text")
        assert exc_info.value.label == "FILE_DOES_NOT_EXIST"

    def test_delete_folder(self, api, events, sample_tree):
        response = api.delete("/docs/")
        assert response["id"] == "/docs/"
        assert not (sample_tree / "docs").exists()
        assert events[0].original_item_data.is_exists is False

    def test_delete_removes_thumbnail(self, api, local_storage, files_root):
        (files_root / "photo.png").write_bytes(make_image(200, 100))
        local_storage.get_item("/photo.png").create_thumbnail()
        api.delete("/photo.png")
        assert not (files_root / "photo.png").exists()
        assert not (files_root / "_thumbs" / "photo.png").exists()

    def test_delete_root_not_allowed(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.delete("/")
        assert exc_info.value.label == "NOT_ALLOWED"
        assert sample_tree.exists()

    def test_delete_restricted_file(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.delete("/tool.exe")
        assert exc_info.value.label == "FORBIDDEN_NAME"


class TestContent:
    def test_read_file_is_inline(self, api, sample_tree):
        stream = api.read_file("/a.txt")
        assert stream.headers["Content-Disposition"] == "inline"
        assert stream.headers["Content-Type"] == "text/plain"
        assert stream.read() == b"hello"

    def test_read_file_range(self, api, sample_tree):
        stream = api.read_file("/a.txt", "bytes=1-2")
        assert stream.status_code == 206
        assert stream.read() == b"el"

    def test_read_folder_content_forbidden(self, api, sample_tree):
        with pytest.raises(ForbiddenError):
            api.read_file("/docs/")

    def test_download_file(self, api, events, sample_tree):
        stream = api.download("/a.txt")
        headers = stream.headers
        assert headers["Content-Disposition"] == 'attachment; filename="a.txt"'
        assert headers["Content-Description"] == "File Transfer"
        assert headers["Cache-Control"].startswith("must-revalidate")
        assert stream.read() == b"hello"
        assert isinstance(events[0], AfterItemDownloadEvent)

    def test_download_folder_as_zip(self, api, sample_tree, temp_dir, monkeypatch):
        archive_path = str(temp_dir / "download.zip")
        monkeypatch.setattr("filemanager.api.local_api.make_temp_path", lambda suffix="": archive_path)

        stream = api.download("/docs/")
        assert stream.headers["Content-Disposition"] == 'attachment; filename="docs.zip"'
        assert stream.mime_type == "application/zip"
        data = stream.read()

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert sorted(zf.namelist()) == ["b.txt", "fm.txt"]
            assert zf.read("b.txt") == b"hi!"
        assert not os.path.exists(archive_path)

    def test_download_root_not_allowed(self, api, sample_tree):
        with pytest.raises(ForbiddenError):
            api.download("/")

    def test_thumbnail_is_generated_on_request(self, api, files_root):
        (files_root / "photo.png").write_bytes(make_image(300, 200))
        stream = api.get_image("/photo.png", thumbnail=True)
        data = stream.read()
        assert (files_root / "_thumbs" / "photo.png").exists()
        with Image.open(io.BytesIO(data)) as img:
            assert img.size[0] <= 64 and img.size[1] <= 64

    def test_image_without_thumbnail(self, api, files_root):
        image = make_image(300, 200)
        (files_root / "photo.png").write_bytes(image)
        assert api.get_image("/photo.png").read() == image
        assert not (files_root / "_thumbs" / "photo.png").exists()

    def test_image_outside_root_writes_nothing(self, api, files_root, temp_dir):
        (temp_dir / "outside").mkdir()
        (temp_dir / "outside" / "p.png").write_bytes(make_image(300, 200))
        before = sorted(temp_dir.rglob("*"))

        with pytest.raises(InvalidPathError) as exc_info:
            api.get_image("/../outside/p.png", thumbnail=True)

        assert exc_info.value.label == "INVALID_FILE_PATH"
        assert sorted(temp_dir.rglob("*")) == before
        assert not (files_root / "outside").exists()


class TestUpload:
    def test_upload_files(self, api, files_root):
        response = api.upload("/", [
            UploadedFile(name="one.txt", stream=io.BytesIO(b"1")),
            UploadedFile(name="tool.exe", stream=io.BytesIO(b"MZ")),
        ])
        assert response[0]["id"] == "/one.txt"
        assert response[1]["id"] == "INVALID_FILE_TYPE"
        assert (files_root / "one.txt").exists()

    def test_all_rejected_raises_first_error(self, api, files_root):
        with pytest.raises(ForbiddenError) as exc_info:
            api.upload("/", [UploadedFile(name="tool.exe", stream=io.BytesIO(b"MZ"))])
        assert exc_info.value.label == "INVALID_FILE_TYPE"


class TestSummary:
    def test_summarize(self, api, sample_tree):
        response = api.summarize()
        assert response["type"] == "summary"
        assert response["attributes"] == {"size": 8, "files": 2, "folders": 1, "size_limit": 0}


class TestExtract:
    def test_extract_archive(self, api, events, files_root):
        (files_root / "out").mkdir()
        (files_root / "archive.zip").write_bytes(zip_bytes({
            "inner/": b"",
            "inner/x.txt": b"x",
            "top.txt": b"top",
            "deep/y.txt": b"y",
            "bad.exe": b"MZ",
        }))

        response = api.extract("/archive.zip", "/out/")

        assert ids(response) == ["/out/inner/", "/out/top.txt", "/out/deep/"]
        assert (files_root / "out" / "inner" / "x.txt").read_bytes() == b"x"
        assert (files_root / "out" / "deep" / "y.txt").read_bytes() == b"y"
        assert not (files_root / "out" / "bad.exe").exists()
        [event] = events
        assert len(event.files_list) == 3

    def test_entries_escaping_the_target_are_skipped(self, api, files_root, temp_dir):
        (files_root / "out").mkdir()
        (files_root / "archive.zip").write_bytes(zip_bytes({
            "../../evil/": b"",
            "../../escaped.txt": b"pwned",
            "../sibling.txt": b"pwned",
            "ok.txt": b"ok",
        }))

        response = api.extract("/archive.zip", "/out/")

        assert ids(response) == ["/out/ok.txt"]
        assert (files_root / "out" / "ok.txt").read_bytes() == b"ok"
        assert not (temp_dir / "escaped.txt").exists()
        assert not (temp_dir / "evil").exists()
        assert not (files_root / "escaped.txt").exists()
        assert not (files_root / "sibling.txt").exists()

    def test_broken_archive(self, api, files_root):
        (files_root / "broken.zip").write_bytes(b"not a zip")
        with pytest.raises(BackendFailureError) as exc_info:
            api.extract("/broken.zip", "/")
        assert exc_info.value.label == "ERROR_EXTRACTING_FILE"

    def test_folder_is_not_an_archive(self, api, sample_tree):
        with pytest.raises(ForbiddenError) as exc_info:
            api.extract("/docs/", "/")
        assert exc_info.value.label == "FORBIDDEN_ACTION_DIR"


@pytest.fixture
def make_s3_api(make_s3_storage):
    def _make(**fields):
        registry = StorageRegistry()
        registry.register(make_s3_storage(**fields))
        return S3Api(registry)
    return _make


class TestS3Api:
    def test_initiate_exposes_folder_download_option(self, make_s3_api):
        config = make_s3_api().initiate()["attributes"]["config"]
        assert config["options"] == {"allow_folder_download": False}

    def test_read_folder_hides_thumbnails(self, make_s3_api, put_object):
        put_object("a.txt", b"a")
        put_object("_thumbs/photo.png", b"x")
        assert ids(make_s3_api().read_folder("/")) == ["/a.txt"]

    def test_bulk_folder_rename_can_be_disabled(self, make_s3_api, put_object):
        put_object("docs/")
        put_object("a.txt", b"a")
        api = make_s3_api(allow_bulk=False)
        with pytest.raises(ForbiddenError) as exc_info:
            api.rename("/docs/", "papers")
        assert exc_info.value.label == "FORBIDDEN_ACTION_DIR"
        assert api.rename("/a.txt", "b.txt")["id"] == "/b.txt"

    def test_folder_download_refused(self, make_s3_api, put_object):
        put_object("docs/")
        with pytest.raises(ForbiddenError) as exc_info:
            make_s3_api().download("/docs/")
        assert exc_info.value.label == "FORBIDDEN_ACTION_DIR"

    def test_extract_from_bucket(self, make_s3_api, put_object, s3_client):
        put_object("archive.zip", zip_bytes({"inner/": b"", "inner/x.txt": b"x", "top.txt": b"top"}))

        response = make_s3_api().extract("/archive.zip", "/")

        assert ids(response) == ["/inner/", "/top.txt"]
        body = s3_client.get_object(Bucket=BUCKET, Key="userfiles/inner/x.txt")["Body"].read()
        assert body == b"x"
        head = s3_client.head_object(Bucket=BUCKET, Key="userfiles/top.txt")
        assert head["ContentType"] == "text/plain"

    def test_summary_backend_failure(self, make_s3_api, monkeypatch):
        api = make_s3_api()

        def failing_summary(directory, result=None):
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "ListObjectsV2")

        monkeypatch.setattr(api.storage, "get_dir_summary", failing_summary)
        with pytest.raises(BackendFailureError) as exc_info:
            api.summarize()
        assert exc_info.value.label == "ERROR_SERVER"
