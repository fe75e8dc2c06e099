from __future__ import annotations

import base64
import binascii
import re
import socket
import typing as t
import urllib.error
import urllib.request

from .errors import NotFoundError, UpstreamTimeoutError, ValidationError

DEFAULT_MIME_TYPE = "image/jpeg"

_LOCAL_FILE_URL = re.compile(r"/api/files/([0-9a-fA-F]{24})(?:[?#].*)?$")


class BlobReader(t.Protocol):
    def get(self, file_id: str) -> tuple[bytes, str]: ...


class ImageLoader:
    """Fetch image bytes for a URL.

    URLs served by our own blob store are read straight from it; anything else
    is downloaded.
    """

    def __init__(self, blobs: BlobReader | None = None, timeout_s: float = 30.0) -> None:
        self.blobs = blobs
        self.timeout_s = timeout_s

    def load(self, url: str) -> tuple[bytes, str]:
        if url.startswith("data:"):
            header, _, data = url.partition(",")
            mime_type = header[len("data:"):].split(";")[0] or DEFAULT_MIME_TYPE
            try:
                return base64.b64decode(data), mime_type
            except (binascii.Error, ValueError) as exc:
                raise ValidationError("Invalid image data URL") from exc

        local = _LOCAL_FILE_URL.search(url)
        if local and self.blobs is not None:
            return self.blobs.get(local.group(1))

        if not url.startswith(("http://", "https://")):
            raise ValidationError(f"Unsupported image URL: {url[:200]}")

        req = urllib.request.Request(url, method="GET")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                data = resp.read()
                mime_type = resp.headers.get_content_type() if resp.headers else DEFAULT_MIME_TYPE
        except urllib.error.HTTPError as e:
            raise NotFoundError(f"Image could not be fetched (HTTP {e.code})") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise UpstreamTimeoutError("Image download timed out.") from e
            raise NotFoundError(f"Image could not be fetched: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise UpstreamTimeoutError("Image download timed out.") from e
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = DEFAULT_MIME_TYPE
        return data, mime_type

    def data_url(self, url: str) -> str:
        data, mime_type = self.load(url)
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
