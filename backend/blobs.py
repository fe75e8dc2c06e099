from __future__ import annotations

import base64
import binascii
import dataclasses
import os
import re
import typing as t
import uuid

import gridfs
from gridfs.errors import NoFile
from bson import ObjectId
from bson.errors import InvalidId

from phystutor.errors import NotFoundError, PayloadTooLargeError, ValidationError

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_MIME_TYPE = "image/jpeg"

MIME_TO_EXT = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


@dataclasses.dataclass(frozen=True)
class StoredBlob:
    id: str
    filename: str
    mime_type: str
    size: int


def max_upload_bytes() -> int:
    return int(os.environ.get("UPLOAD_MAX_BYTES") or DEFAULT_MAX_BYTES)


def decode_base64_payload(value: str, default_mime_type: str = DEFAULT_MIME_TYPE) -> tuple[bytes, str]:
    """Decode raw base64 or a `data:<mime>;base64,<data>` URL."""
    match = _DATA_URL.match(value.strip())
    data = match.group(2) if match else value.strip()
    mime_type = match.group(1) if match else default_mime_type
    try:
        return base64.b64decode(data, validate=False), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 image data") from exc


class GridFSBlobStore:
    """Upload bytes into a GridFS bucket and read them back by id."""

    def __init__(self, db: t.Any, *, bucket_name: str = "uploads", max_bytes: int | None = None) -> None:
        self.bucket = gridfs.GridFSBucket(db, bucket_name=bucket_name)
        self.max_bytes = max_bytes or max_upload_bytes()

    def put(self, data: bytes, mime_type: str | None = None) -> StoredBlob:
        if not data:
            raise ValidationError("Empty file")
        if len(data) > self.max_bytes:
            raise PayloadTooLargeError(f"File too large. Max {self.max_bytes // (1024 * 1024)}MB.")
        mime = mime_type or DEFAULT_MIME_TYPE
        filename = f"{uuid.uuid4()}{MIME_TO_EXT.get(mime, '.jpg')}"
        file_id = self.bucket.upload_from_stream(filename, data, metadata={"contentType": mime})
        return StoredBlob(id=str(file_id), filename=filename, mime_type=mime, size=len(data))

    def get(self, file_id: str) -> tuple[bytes, str]:
        try:
            oid = ObjectId(str(file_id))
        except (InvalidId, TypeError) as exc:
            raise ValidationError("Invalid file id") from exc
        try:
            stream = self.bucket.open_download_stream(oid)
        except NoFile as exc:
            raise NotFoundError("File not found") from exc
        metadata = stream.metadata or {}
        return stream.read(), str(metadata.get("contentType") or DEFAULT_MIME_TYPE)
