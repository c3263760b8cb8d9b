"""Tests for upload validation and local object storage."""
import io
import os

import pytest
from werkzeug.datastructures import FileStorage

from utils.engine import init_engine
from utils.errors import ValidationFailed
from utils.storage import LocalObjectStorage, compute_hash, read_upload, validate_image_upload

BASE_URL = "https://files.claimy.test/uploads"


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "uploads"), BASE_URL + "/")


def upload(content, filename, content_type="application/octet-stream"):
    return FileStorage(stream=io.BytesIO(content), filename=filename, content_type=content_type)


def test_put_writes_under_folder_and_reads_back(storage):
    stored = storage.put(b"receipt", "Receipt 01.PNG", "image/png", folder="user-1/receipt")

    assert stored.key.startswith("user-1/receipt/")
    assert stored.key.endswith("-Receipt_01.png")
    assert stored.url == f"{BASE_URL}/{stored.key}"
    assert stored.sha256 == compute_hash(b"receipt")
    assert storage.read_url(stored.url) == (b"receipt", "image/png")


def test_folder_parts_cannot_climb_out_of_the_root(storage):
    stored = storage.put(b"x", "a.txt", "text/plain", folder="../../etc")
    path = storage.resolve_path(stored.key)
    assert path is not None
    assert path.startswith(os.path.abspath(storage.root) + os.sep)


@pytest.mark.parametrize("key", ["../x", "../../etc/passwd", "user-1/../../x", "/etc/passwd"])
def test_resolve_path_rejects_traversal(storage, key):
    os.makedirs(storage.root, exist_ok=True)
    outside = os.path.join(os.path.dirname(os.path.abspath(storage.root)), "x")
    with open(outside, "wb") as f:
        f.write(b"secret")
    assert storage.resolve_path(key) is None


def test_resolve_path_ignores_missing_files(storage):
    assert storage.resolve_path("user-1/product/missing.png") is None


def test_read_url_ignores_foreign_urls(storage):
    assert storage.read_url("https://cdn.example.test/receipt.jpg") is None
    assert storage.read_url(f"{BASE_URL}/../x") is None
    assert storage.read_url("") is None


def test_validate_image_upload_accepts_real_image(png_bytes):
    result = validate_image_upload(upload(png_bytes, "blender.png", "image/png"))
    assert result.filename == "blender.png"
    assert result.content_type == "image/png"
    assert result.content == png_bytes


@pytest.mark.parametrize(
    "content, filename",
    [
        (b"not an image", "blender.png"),
        (b"GIF89a", "blender.gif"),
        (b"", "blender.png"),
        (b"plain", "blender"),
    ],
)
def test_validate_image_upload_rejects_bad_files(content, filename):
    with pytest.raises(ValidationFailed):
        validate_image_upload(upload(content, filename))


def test_read_upload_enforces_size_limit():
    with pytest.raises(ValidationFailed):
        read_upload(upload(b"x" * 11, "notes.txt"), max_bytes=10)
    assert read_upload(None) is None
    assert read_upload(upload(b"data", "")) is None


def test_upload_route_serves_stored_file_only_inside_root(app, tmp_path):
    storage = LocalObjectStorage(str(tmp_path / "served"), BASE_URL)
    init_engine(app, storage=storage)
    stored = storage.put(b"evidence", "photo.png", "image/png", folder="user-1/product")
    client = app.test_client()

    response = client.get(f"/uploads/{stored.key}")
    assert response.status_code == 200
    assert response.data == b"evidence"

    assert client.get("/uploads/user-1/product/missing.png").status_code == 404
