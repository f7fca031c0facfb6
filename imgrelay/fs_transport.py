"""Serving source images from a local directory, with ranges and validators."""

from __future__ import annotations

import base64
import hashlib
import io
import mimetypes
import os
import posixpath
import stat
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import BinaryIO, Mapping

from imgrelay.notmodified import not_modified

_SNIFF_LEN = 512

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
    (b"%PDF-", "application/pdf"),
)

_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


class _FileLimiter:
    """Reads at most ``left`` bytes from a file, then reports end of data."""

    def __init__(self, stream: BinaryIO, left: int) -> None:
        self._stream = stream
        self._left = left

    def read(self, size: int = -1) -> bytes:
        if self._left <= 0:
            return b""
        if size < 0 or size > self._left:
            size = self._left
        data = self._stream.read(size)
        self._left -= len(data)
        return data

    def close(self) -> None:
        self._stream.close()


@dataclass
class FileResponse:
    """The outcome of a file request: status, headers and a readable body."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: BinaryIO | _FileLimiter = field(default_factory=io.BytesIO)
    content_length: int = 0

    def close(self) -> None:
        self.body.close()

    def __enter__(self) -> FileResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_etag(path: str, size: int, mtime_ns: int) -> str:
    """Build a quoted ETag from the request path, file size and modification time."""
    tag = f"{path}__{size}__{mtime_ns}".encode()
    digest = hashlib.md5(tag).digest()
    encoded = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return f'"{encoded}"'


def _not_found(message: str) -> FileResponse:
    body = message.encode()
    return FileResponse(404, {}, io.BytesIO(body), len(body))


def _sniff(head: bytes) -> str:
    for signature, mimetype in _SIGNATURES:
        if head.startswith(signature):
            return mimetype
    if len(head) >= 14 and head[:4] == b"RIFF" and head[8:14] == b"WEBPVP":
        return "image/webp"
    if head.lstrip(b"\t\n\x0c\r ").startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    if any(byte in _BINARY_BYTES for byte in head):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def _detect_content_type(stream: BinaryIO, name: str) -> str:
    head = stream.read(_SNIFF_LEN)
    mimetype = _sniff(head) if len(head) == _SNIFF_LEN else ""

    if not mimetype or mimetype.startswith(("text/plain", "application/octet-stream")):
        guessed, _ = mimetypes.guess_type(name)
        if guessed:
            mimetype = guessed

    return mimetype


class FileTransport:
    """Answers image requests from files below a root directory."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        etag_enabled: bool = False,
        last_modified_enabled: bool = False,
    ) -> None:
        self.root = os.fspath(root)
        self.etag_enabled = etag_enabled
        self.last_modified_enabled = last_modified_enabled

    def _resolve(self, path: str) -> str:
        clean = posixpath.normpath("/" + path.lstrip("/"))
        parts = [part for part in clean.split("/") if part]
        return os.path.join(self.root, *parts)

    def round_trip(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
        byte_range: tuple[int, int | None] | None = None,
    ) -> FileResponse:
        """Serve ``path``; ``byte_range`` is (start, end), end None or negative for EOF.

        Raises ValueError for an invalid range and OSError for unexpected
        file system failures.
        """
        request_headers = headers or {}
        header: dict[str, str] = {}
        fs_path = self._resolve(path)

        try:
            info = os.stat(fs_path)
        except (FileNotFoundError, NotADirectoryError):
            return _not_found(f"{path} doesn't exist")

        if stat.S_ISDIR(info.st_mode):
            return _not_found(f"{path} is directory")

        stream = open(fs_path, "rb")
        try:
            status = 200
            size = info.st_size
            body: BinaryIO | _FileLimiter = stream

            mimetype = _detect_content_type(stream, os.path.basename(fs_path))
            if mimetype:
                header["Content-Type"] = mimetype
            stream.seek(0)

            if byte_range is not None:
                start, end = byte_range
                if end is None or end < 0:
                    end = size - 1
                if start < 0 or end < start:
                    raise ValueError(f"invalid byte range: {byte_range!r}")

                stream.seek(start)
                status = 206
                size = end - start + 1
                body = _FileLimiter(stream, size)
                header["Content-Range"] = f"bytes {start}-{end}/{info.st_size}"
            else:
                if self.etag_enabled:
                    header["ETag"] = build_etag(path, info.st_size, info.st_mtime_ns)
                if self.last_modified_enabled:
                    header["Last-Modified"] = formatdate(info.st_mtime, usegmt=True)

            if not_modified(
                request_headers, header, self.etag_enabled, self.last_modified_enabled
            ):
                stream.close()
                return FileResponse(304, header, io.BytesIO(), 0)

            header["Accept-Ranges"] = "bytes"
            header["Content-Length"] = str(size)
            return FileResponse(status, header, body, size)
        except BaseException:
            stream.close()
            raise