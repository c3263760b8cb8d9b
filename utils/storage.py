"""Upload validation and the object storage used for case evidence."""
import hashlib
import io
import mimetypes
import os
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from utils.errors import TransportFailure, ValidationFailed

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "heic"}
ALLOWED_IMAGE_FORMATS = {"JPEG", "PNG", "WEBP", "HEIF"}
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        raise ValidationFailed(message)


def compute_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass
class UploadedFile:
    content: bytes
    filename: str
    content_type: str


@dataclass
class StoredObject:
    url: str
    key: str
    sha256: str


def read_upload(file: Optional[FileStorage], max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> Optional[UploadedFile]:
    """Read an optional multipart upload into memory, enforcing the size limit."""
    if not file or not file.filename:
        return None
    filename = secure_filename(file.filename) or "upload.bin"
    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "Empty file")
    _fail_if(size > max_bytes, "File exceeds size limits")

    content = file.read()
    _fail_if(len(content) > max_bytes, "File exceeds size limits")
    content_type = file.mimetype or mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return UploadedFile(content=content, filename=filename, content_type=content_type)


def validate_image_upload(file: Optional[FileStorage], max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> Optional[UploadedFile]:
    upload = read_upload(file, max_bytes=max_bytes)
    if upload is None:
        return None
    _fail_if("." not in upload.filename, "Unsupported file name")
    ext = upload.filename.rsplit(".", 1)[1].lower()
    _fail_if(ext not in ALLOWED_IMAGE_EXTENSIONS, "File type not allowed")
    if ext != "heic":
        try:
            with Image.open(io.BytesIO(upload.content)) as img:
                image_format = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ValidationFailed("Image validation failed") from exc
        _fail_if(image_format not in ALLOWED_IMAGE_FORMATS, "Invalid image data")
    return upload


class ObjectStorage:
    """Stores binary content and hands back a retrievable URL."""

    def put(self, content: bytes, filename: str, content_type: str, folder: str = "") -> StoredObject:
        raise NotImplementedError

    def read_url(self, url: str) -> Optional[Tuple[bytes, str]]:
        """Content and type for a URL this storage issued, else ``None``."""
        return None


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: str, base_url: str) -> None:
        self.root = root
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_config(cls, config) -> "LocalObjectStorage":
        return cls(config.get("UPLOAD_FOLDER"), config.get("UPLOAD_BASE_URL", "/uploads"))

    def _split_name(self, filename: str) -> Tuple[str, str]:
        safe = secure_filename(filename or "") or "upload"
        if "." in safe:
            stem, ext = safe.rsplit(".", 1)
            return stem, ext.lower()
        return safe, "bin"

    def put(self, content: bytes, filename: str, content_type: str, folder: str = "") -> StoredObject:
        stem, ext = self._split_name(filename)
        parts = [secure_filename(p) for p in folder.split("/") if p and secure_filename(p)]
        key = "/".join(parts + [f"{uuid.uuid4().hex}-{stem}.{ext}"])
        path = os.path.join(self.root, *key.split("/"))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        except OSError as exc:
            raise TransportFailure(f"Object storage write failed: {exc}") from exc
        return StoredObject(url=f"{self.base_url}/{key}", key=key, sha256=compute_hash(content))

    def read_url(self, url: str) -> Optional[Tuple[bytes, str]]:
        prefix = f"{self.base_url}/"
        if not url or not url.startswith(prefix):
            return None
        path = self.resolve_path(url[len(prefix):])
        if not path:
            return None
        with open(path, "rb") as f:
            content = f.read()
        return content, mimetypes.guess_type(path)[0] or "application/octet-stream"

    def resolve_path(self, key: str) -> Optional[str]:
        abs_root = os.path.abspath(self.root)
        abs_path = os.path.abspath(os.path.join(abs_root, key))
        if not abs_path.startswith(abs_root + os.sep):
            return None
        if not os.path.isfile(abs_path):
            return None
        return abs_path
