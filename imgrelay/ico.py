"""Helpers for the ICO container: wrapping PNG data and repairing embedded BMPs."""

from __future__ import annotations

import struct

_FILE_HEADER_LEN = 14
_INFO_HEADER_LEN = 40
_ICO_DATA_OFFSET = 22
_MAX_ICO_DIMENSION = 256
_MIN_DIB_LEN = 36

_ICONDIR = struct.Struct("<HHH")
_ICONDIRENTRY = struct.Struct("<BBBBHHII")
_BMP_FILE_HEADER = struct.Struct("<2sIII")


class IcoError(ValueError):
    """The ICO data or image cannot be handled."""


def fix_bmp_header(data: bytes) -> bytes:
    """Turn a bitmap embedded in an ICO file into a standalone BMP file.

    ICO stores a bare DIB (no file header) with a doubled height that also
    covers the AND mask; this prepends a file header and halves the height.
    """
    if len(data) < _MIN_DIB_LEN:
        raise IcoError("embedded bitmap header is truncated")

    file_size = (_FILE_HEADER_LEN + len(data)) & 0xFFFFFFFF

    (color_used,) = struct.unpack_from("<I", data, 32)
    (bit_count,) = struct.unpack_from("<H", data, 14)

    if color_used == 0 and bit_count <= 8:
        palette_len = 4 * (1 << bit_count)
    else:
        palette_len = 4 * color_used
    pix_offset = (_FILE_HEADER_LEN + _INFO_HEADER_LEN + palette_len) & 0xFFFFFFFF

    (doubled_height,) = struct.unpack_from("<I", data, 8)
    height = doubled_height // 2

    return b"".join(
        (
            _BMP_FILE_HEADER.pack(b"BM", file_size, 0, pix_offset),
            data[:8],
            struct.pack("<I", height),
            data[12:],
        )
    )


def pack_ico(png_data: bytes, width: int, height: int, has_alpha: bool) -> bytes:
    """Wrap PNG-encoded image data into a single-image ICO file.

    Raises IcoError when either dimension exceeds 256 pixels.
    """
    if width > _MAX_ICO_DIMENSION or height > _MAX_ICO_DIMENSION:
        raise IcoError("Image dimensions is too big. Max dimension size for ICO is 256")

    header = _ICONDIR.pack(0, 1, 1)
    entry = _ICONDIRENTRY.pack(
        width % 256,
        height % 256,
        0,  # number of colours: not used
        0,  # reserved
        1,  # colour planes
        32 if has_alpha else 24,
        len(png_data),
        _ICO_DATA_OFFSET,
    )
    return header + entry + bytes(png_data)