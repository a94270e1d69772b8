# tests/test_service.py
import io
import json
import sys
from unittest.mock import MagicMock

import pytest

from filebridge.config import Exclude, FilemanagerConfig, Security, Upload, UploadPolicy
from filebridge.exceptions import (
    AccessError,
    InvalidNameError,
    InvalidPathError,
    NotFoundError,
    PathTraversalError,
    UnsupportedOperationError,
)
from filebridge.responses import ErrorResponse, FilemanagerAction
from filebridge.service import LimitedStream, stream_to
from filebridge.storage.base import Connector
from filebridge.storage.dto import FileProperties, FileType

MB = 1024 * 1024


def error_code(response):
    assert isinstance(response, ErrorResponse), response
    return response.code


def unwrap(body):
    assert body.startswith("<textarea>") and body.endswith("</textarea>")
    return json.loads(body[len("<textarea>"):-len("</textarea>")])


@pytest.fixture
def mock_connector():
    return MagicMock(spec=Connector)


# --- getfolder / getinfo ---


def test_get_folder_lists_visible_entries(service):
    wire = service.get_folder("/").to_wire()

    assert list(wire) == ["/README", "/docs/", "/images/"]
    assert wire["/README"]["File Type"] == "txt"
    assert wire["/docs/"]["File Type"] == "dir"
    assert wire["/docs/"]["Preview"] == "images/fileicons/_Open.png"
    assert wire["/README"]["Capabilities"] == ["select", "delete", "rename", "download", "replace"]


def test_get_folder_without_trailing_separator(service):
    wire = service.get_folder("/images").to_wire()
    assert wire["/images/photo.jpg"]["Preview"] == "/images/photo.jpg"
    assert wire["/images/photo.jpg"]["Properties"]["Width"] == 3
    assert wire["/images/archive/"]["File Type"] == "dir"


def test_get_folder_missing(service):
    assert error_code(service.get_folder("/missing/")) == NotFoundError.code


def test_traversal_is_rejected_before_backend(make_service, mock_connector):
    service = make_service(connector=mock_connector)

    response = service.get_folder("/images/../../etc/")

    assert error_code(response) == 2
    mock_connector.get_folder.assert_not_called()


@pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges on Windows")
def test_symlink_out_of_root_is_not_followed(service, backend_root, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret")
    (backend_root / "link").symlink_to(outside, target_is_directory=True)

    assert error_code(service.get_folder("/link/")) == PathTraversalError.code
    assert error_code(service.edit("/link/secret.txt")) == PathTraversalError.code


def test_get_info_root(service):
    wire = service.get_info("/").to_wire()
    assert wire["Path"] == "/"
    assert wire["Filename"] == ""
    assert wire["File Type"] == "dir"


def test_get_info_file(service):
    wire = service.get_info("/docs/readme.txt").to_wire()
    assert wire["Path"] == "/docs/readme.txt"
    assert wire["Preview"] == "images/fileicons/txt.png"
    assert wire["Properties"]["Size"] == 5


def test_get_info_with_folder_size(service):
    wire = service.get_info("/docs/", need_size=True).to_wire()
    assert wire["Path"] == "/docs/"
    assert wire["Properties"]["Size"] == 5


def test_custom_preview_resolver(make_service):
    service = make_service(preview_resolver=lambda path: f"/thumbs{path.path}")
    assert service.get_info("/README").to_wire()["Preview"] == "/thumbs/README"


# --- rename / delete / addfolder ---


def test_rename(service, backend_root):
    wire = service.rename("/docs/readme.txt", " notes.txt ").to_wire()
    assert wire == {
        "Old Path": "/docs/readme.txt",
        "Old Name": "readme.txt",
        "New Path": "/docs/notes.txt",
        "New Name": "notes.txt",
    }
    assert (backend_root / "docs" / "notes.txt").exists()


def test_rename_directory_keeps_trailing_separator(service, backend_root):
    wire = service.rename("/docs/", "papers").to_wire()
    assert wire["New Path"] == "/papers/"
    assert (backend_root / "papers").is_dir()


def test_rename_to_excluded_name(make_service, mock_connector):
    service = make_service(connector=mock_connector)
    mock_connector.get_info.return_value = FileProperties(name="readme.txt", type=FileType.FILE)
    assert error_code(service.rename("/docs/readme.txt", ".htaccess")) == 3
    mock_connector.rename.assert_not_called()


def test_rename_folder_given_without_trailing_separator(service, backend_root):
    wire = service.rename("/images/archive", "old").to_wire()
    assert wire == {
        "Old Path": "/images/archive/",
        "Old Name": "archive",
        "New Path": "/images/old/",
        "New Name": "old",
    }
    assert (backend_root / "images" / "old").is_dir()


def test_rename_folder_to_excluded_dir_name(make_service, backend_root):
    service = make_service(config=FilemanagerConfig(exclude=Exclude(disallowed_dirs=frozenset({"cache"}))))
    assert error_code(service.rename("/images/archive", "cache")) == InvalidNameError.code
    assert (backend_root / "images" / "archive").is_dir()


def test_rename_missing_source(service):
    assert error_code(service.rename("/docs/missing.txt", "x.txt")) == NotFoundError.code


def test_rename_to_name_with_separator(service):
    assert error_code(service.rename("/docs/readme.txt", "a/b.txt")) == InvalidPathError.code


def test_rename_without_capability(make_service, backend_root):
    service = make_service(capabilities="select,download")
    assert error_code(service.rename("/docs/readme.txt", "x.txt")) == AccessError.code
    assert (backend_root / "docs" / "readme.txt").exists()


def test_rename_conflict(service):
    assert error_code(service.rename("/README", "docs")) == 6


def test_delete(service, backend_root):
    assert service.delete("/docs/readme.txt").to_wire() == {"Path": "/docs/readme.txt"}
    assert not (backend_root / "docs" / "readme.txt").exists()


def test_delete_root_is_refused(make_service, mock_connector):
    service = make_service(connector=mock_connector)
    assert error_code(service.delete("/")) == AccessError.code
    mock_connector.delete.assert_not_called()


def test_add_folder(service, backend_root):
    assert service.add_folder("/docs", "sub").to_wire() == {"Parent": "/docs/", "Name": "sub"}
    assert (backend_root / "docs" / "sub").is_dir()


def test_add_folder_with_excluded_name(service, backend_root):
    assert error_code(service.add_folder("/", ".git")) == 3
    assert not (backend_root / ".git").exists()


def test_add_folder_below_a_file(service):
    assert error_code(service.add_folder("/README", "sub")) == NotFoundError.code


def test_add_folder_with_overlong_name(service):
    assert error_code(service.add_folder("/docs/", "a" * 300)) == InvalidNameError.code


# --- upload / replace ---


def test_upload(service, backend_root):
    body = service.upload("/docs/", "new.txt", io.BytesIO(b"data")).render()
    assert unwrap(body) == {"Path": "/docs/", "Name": "new.txt"}
    assert (backend_root / "docs" / "new.txt").read_bytes() == b"data"


def test_upload_existing_name(service):
    response = service.upload("/docs/", "readme.txt", io.BytesIO(b"data"))
    assert response.action == FilemanagerAction.UPLOAD
    assert unwrap(response.render())["Code"] == 6


def test_upload_declared_length_over_limit(make_service, mock_connector):
    config = FilemanagerConfig(upload=Upload(file_size_limit=1))
    service = make_service(config=config, connector=mock_connector)

    response = service.upload("/docs/", "big.bin", io.BytesIO(b""), content_length=2 * MB)

    assert error_code(response) == 7
    mock_connector.upload.assert_not_called()


def test_upload_body_over_limit(make_service, backend_root):
    service = make_service(config=FilemanagerConfig(upload=Upload(file_size_limit=1)))

    response = service.upload("/docs/", "big.bin", io.BytesIO(b"x" * (MB + 1)))

    assert error_code(response) == 7
    assert sorted(p.name for p in (backend_root / "docs").iterdir()) == ["readme.txt"]


def test_upload_policy(make_service):
    config = FilemanagerConfig(
        security=Security(upload_policy=UploadPolicy.DISALLOW_ALL, upload_restrictions={"png"})
    )
    service = make_service(config=config)
    assert error_code(service.upload("/docs/", "run.exe", io.BytesIO(b"x"))) == AccessError.code
    assert not isinstance(service.upload("/docs/", "a.png", io.BytesIO(b"x")), ErrorResponse)


def test_upload_force_single_extension(make_service, backend_root):
    service = make_service(force_single_extension=True)
    wire = service.upload("/docs/", "a.tar.gz", io.BytesIO(b"x")).to_wire()
    assert wire["Name"] == "a_tar.gz"
    assert (backend_root / "docs" / "a_tar.gz").exists()


def test_secure_image_upload(make_service, backend_root, png_bytes):
    service = make_service(secure_image_uploads=True)

    assert error_code(service.upload("/images/", "fake.png", io.BytesIO(b"not an image"))) == 8
    assert not (backend_root / "images" / "fake.png").exists()

    png = png_bytes(4, 4)
    assert not isinstance(service.upload("/images/", "real.png", io.BytesIO(png)), ErrorResponse)
    assert (backend_root / "images" / "real.png").read_bytes() == png


def test_replace(service, backend_root):
    body = service.replace("/docs/readme.txt", io.BytesIO(b"replaced")).render()
    assert unwrap(body) == {"Path": "/docs/", "Name": "readme.txt"}
    assert (backend_root / "docs" / "readme.txt").read_bytes() == b"replaced"


def test_replace_missing_file(service, backend_root):
    assert error_code(service.replace("/docs/missing.txt", io.BytesIO(b"x"))) == NotFoundError.code
    assert not (backend_root / "docs" / "missing.txt").exists()


def test_replace_directory(service):
    assert error_code(service.replace("/docs/", io.BytesIO(b"x"))) == InvalidPathError.code


def test_replace_without_capability(make_service):
    service = make_service(capabilities="select")
    assert error_code(service.replace("/docs/readme.txt", io.BytesIO(b"x"))) == AccessError.code


# --- editfile / download ---


def test_edit(service):
    assert service.edit("/docs/readme.txt").to_wire() == {"Path": "/docs/readme.txt", "Content": "hello"}


def test_edit_binary(service, backend_root):
    (backend_root / "docs" / "blob.bin").write_bytes(b"\x00\x01")
    assert error_code(service.edit("/docs/blob.bin")) == 8


def test_edit_larger_than_upload_limit(make_service, backend_root):
    (backend_root / "docs" / "big.txt").write_bytes(b"x" * (MB + 1))
    service = make_service(config=FilemanagerConfig(upload=Upload(file_size_limit=1)))

    assert error_code(service.edit("/docs/big.txt")) == UnsupportedOperationError.code
    assert service.edit("/docs/readme.txt").to_wire()["Content"] == "hello"


def test_download_and_stream_to(service):
    content = service.download("/docs/readme.txt")
    out = io.BytesIO()

    written = stream_to(content, out.write, chunk_size=2)

    assert written == 5
    assert out.getvalue() == b"hello"
    assert content.closed


def test_stream_to_closes_on_writer_failure(service):
    content = service.download("/docs/readme.txt")
    writer = MagicMock(side_effect=IOError("client went away"))

    with pytest.raises(IOError):
        stream_to(content, writer)

    assert content.closed


def test_download_errors_are_raised(make_service, service):
    with pytest.raises(NotFoundError):
        service.download("/docs/missing.txt")
    with pytest.raises(InvalidPathError):
        service.download("/docs/")
    with pytest.raises(AccessError):
        make_service(capabilities="select").download("/docs/readme.txt")


def test_limited_stream_read_all():
    assert LimitedStream(io.BytesIO(b"abc"), 3).read() == b"abc"
    assert LimitedStream(io.BytesIO(b"abc"), None).read() == b"abc"
