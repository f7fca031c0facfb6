"""Decoding and encoding of BMP images into raw 8-bit pixel buffers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from itertools import cycle, islice
from typing import Iterator, Sequence

_FILE_HEADER_LEN = 14
_INFO_HEADER_LEN = 40
_V4_INFO_HEADER_LEN = 108
_V5_INFO_HEADER_LEN = 124
_SUPPORTED_INFO_LENS = (_INFO_HEADER_LEN, _V4_INFO_HEADER_LEN, _V5_INFO_HEADER_LEN)
_MAX_PALETTE_COLORS = 256
_PIXELS_PER_METER = 2835

_SAVE_HEADER = struct.Struct("<2sIHHIIIIHHIIIIII")


class BmpError(ValueError):
    """The data is not a BMP image, is truncated, or uses an unsupported feature."""


def _unsupported() -> BmpError:
    return BmpError("unsupported BMP image")


@dataclass
class Bitmap:
    """A decoded image: rows top to bottom, ``bands`` bytes per pixel (RGB or RGBA)."""

    width: int
    height: int
    bands: int
    pixels: bytes
    palette_bit_depth: int | None = None

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0 or self.bands <= 0:
            raise ValueError("invalid bitmap dimensions")
        if len(self.pixels) != self.width * self.height * self.bands:
            raise ValueError("pixel buffer size does not match bitmap dimensions")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self.pos = 0

    def read_full(self, size: int) -> bytes:
        chunk = self._data[self.pos : self.pos + size]
        if len(chunk) < size:
            self.pos = len(self._data)
            raise BmpError("unexpected end of BMP data")
        self.pos += size
        return chunk


def _u16(buf: bytes | bytearray, offset: int) -> int:
    return int.from_bytes(buf[offset : offset + 2], "little")


def _u32(buf: bytes | bytearray, offset: int) -> int:
    return int.from_bytes(buf[offset : offset + 4], "little")


def _i32(buf: bytes | bytearray, offset: int) -> int:
    return int.from_bytes(buf[offset : offset + 4], "little", signed=True)


def _rows(height: int, top_down: bool) -> range:
    return range(height) if top_down else range(height - 1, -1, -1)


def _indices(data: bytes, bpp: int) -> Iterator[int]:
    mask = (1 << bpp) - 1
    for byte in data:
        for shift in range(8 - bpp, -1, -bpp):
            yield (byte >> shift) & mask


def _colors(palette: Sequence[bytes], indices: Iterator[int]) -> bytes:
    try:
        return b"".join(palette[index] for index in indices)
    except IndexError:
        raise BmpError("BMP palette index out of range") from None


def _palette_bit_depth(colors: int) -> int:
    if colors > 16:
        return 8
    if colors > 4:
        return 4
    if colors > 2:
        return 2
    return 0


def _decode_paletted(
    reader: _Reader,
    width: int,
    height: int,
    bpp: int,
    palette: Sequence[bytes],
    top_down: bool,
) -> Bitmap:
    per_byte = 8 // bpp
    row_len = ((width + per_byte - 1) // per_byte + 3) & ~3
    stride = width * 3
    canvas = bytearray(stride * height)

    for y in _rows(height, top_down):
        row = reader.read_full(row_len)
        canvas[y * stride : (y + 1) * stride] = _colors(
            palette, islice(_indices(row, bpp), width)
        )

    return Bitmap(width, height, 3, bytes(canvas), _palette_bit_depth(len(palette)))


def _decode_rle(
    reader: _Reader, width: int, height: int, bpp: int, palette: Sequence[bytes]
) -> Bitmap:
    canvas = bytearray(width * height * 3)
    per_byte = 8 // bpp
    x, y = 0, height - 1

    def put(count: int, indices: Iterator[int]) -> None:
        start = (y * width + x) * 3
        canvas[start : start + count * 3] = _colors(palette, islice(indices, count))

    while True:
        first, second = reader.read_full(2)

        if first != 0:
            count = min(first, width - x)
            if count > 0:
                put(count, cycle(_indices(bytes([second]), bpp)))
                x += count
            continue

        if second == 0:  # end of line
            x, y = 0, y - 1
            if y < 0:
                break
        elif second == 1:  # end of bitmap
            break
        elif second == 2:  # delta
            dx, dy = reader.read_full(2)
            x = min(x + dx, width)
            y -= dy
            if y < 0:
                break
        else:  # absolute mode
            raw_len = ((second + per_byte - 1) // per_byte + 1) & ~1
            raw = reader.read_full(raw_len)
            count = min(second, width - x)
            if count > 0:
                put(count, _indices(raw, bpp))
                x += count

    return Bitmap(width, height, 3, bytes(canvas), _palette_bit_depth(len(palette)))


def _decode_rgb(
    reader: _Reader, width: int, height: int, bands: int, top_down: bool, no_alpha: bool
) -> Bitmap:
    if bands not in (3, 4):
        raise _unsupported()

    img_bands = 4 if bands == 4 and not no_alpha else 3
    row_len = (bands * width + 3) & ~3
    stride = width * img_bands
    used = width * bands
    canvas = bytearray(stride * height)

    for y in _rows(height, top_down):
        row = reader.read_full(row_len)
        line = bytearray(stride)
        line[0::img_bands] = row[2:used:bands]
        line[1::img_bands] = row[1:used:bands]
        line[2::img_bands] = row[0:used:bands]
        if img_bands == 4:
            line[3::4] = row[3:used:bands]
        canvas[y * stride : (y + 1) * stride] = line

    return Bitmap(width, height, img_bands, bytes(canvas))


def _decode_rgb16(
    reader: _Reader, width: int, height: int, top_down: bool, bmp565: bool
) -> Bitmap:
    row_len = (2 * width + 3) & ~3
    stride = width * 3
    canvas = bytearray(stride * height)

    for y in _rows(height, top_down):
        row = reader.read_full(row_len)
        line = bytearray()
        for (pixel,) in struct.iter_unpack("<H", row[: 2 * width]):
            if bmp565:
                red = ((pixel & 0xF800) >> 11) << 3
                green = ((pixel & 0x7E0) >> 5) << 2
            else:
                red = ((pixel & 0x7C00) >> 10) << 3
                green = ((pixel & 0x3E0) >> 5) << 3
            blue = (pixel & 0x1F) << 3
            line += bytes((red, green, blue))
        canvas[y * stride : (y + 1) * stride] = line

    return Bitmap(width, height, 3, bytes(canvas))


def load_bmp(data: bytes, no_alpha: bool = True) -> Bitmap:
    """Decode a BMP file with a BITMAPINFOHEADER (or V4/V5) header.

    A 32-bit image keeps its fourth band as alpha unless ``no_alpha`` is set;
    V4/V5 headers override ``no_alpha`` from their alpha mask.
    Raises BmpError for malformed, truncated or unsupported images.
    """
    reader = _Reader(data)
    header = bytearray(1024)

    header[: _FILE_HEADER_LEN + 4] = reader.read_full(_FILE_HEADER_LEN + 4)
    if header[:2] != b"BM":
        raise BmpError("not a BMP image")

    offset = _u32(header, 10)
    info_len = _u32(header, 14)
    if info_len not in _SUPPORTED_INFO_LENS:
        raise _unsupported()

    header[_FILE_HEADER_LEN + 4 : _FILE_HEADER_LEN + info_len] = reader.read_full(
        info_len - 4
    )

    width = _i32(header, 18)
    height = _i32(header, 22)
    top_down = False
    if height < 0:
        height, top_down = -height, True
    if width <= 0 or height <= 0:
        raise _unsupported()

    planes = _u16(header, 26)
    bpp = _u16(header, 28)
    compression = _u32(header, 30)

    if planes != 1:
        raise _unsupported()

    rle = False
    bmp565 = False

    if compression == 0:
        pass
    elif (compression == 1 and bpp == 8) or (compression == 2 and bpp == 4):
        rle = True
    elif compression == 3:
        if info_len == _INFO_HEADER_LEN:
            # Colour masks follow the info header
            header[54:66] = reader.read_full(12)

        rmask, gmask, bmask, amask = (_u32(header, pos) for pos in (54, 58, 62, 66))

        if bpp == 16 and (rmask, gmask, bmask) == (0xF800, 0x7E0, 0x1F):
            bmp565 = True
        elif bpp == 16 and (rmask, gmask, bmask) == (0x7C00, 0x3E0, 0x1F):
            pass
        elif bpp == 32 and (rmask, gmask, bmask, amask) == (
            0xFF0000,
            0xFF00,
            0xFF,
            0xFF000000,
        ):
            pass
        else:
            raise _unsupported()
    else:
        raise _unsupported()

    palette: list[bytes] = []
    if bpp <= 8:
        colors = _u32(header, 46) or (1 << bpp)
        if colors > _MAX_PALETTE_COLORS:
            raise _unsupported()
        raw = reader.read_full(colors * 4)
        # Stored as BGR with a padding byte
        palette = [bytes((raw[i + 2], raw[i + 1], raw[i])) for i in range(0, len(raw), 4)]

    reader.pos = offset

    if rle:
        return _decode_rle(reader, width, height, bpp, palette)

    if bpp in (1, 2, 4, 8):
        return _decode_paletted(reader, width, height, bpp, palette, top_down)
    if bpp == 16:
        return _decode_rgb16(reader, width, height, top_down, bmp565)
    if bpp == 24:
        return _decode_rgb(reader, width, height, 3, top_down, True)
    if bpp == 32:
        if info_len >= 70:
            no_alpha = _u32(header, 66) == 0
        return _decode_rgb(reader, width, height, 4, top_down, no_alpha)

    raise _unsupported()


def save_bmp(image: Bitmap) -> bytes:
    """Encode an RGB or RGBA bitmap as a bottom-up 24-bit BMP.

    Translucent pixels are premultiplied by their alpha (flattened onto black).
    """
    if image.bands not in (3, 4):
        raise BmpError("only RGB and RGBA images can be saved as BMP")

    width, height, bands = image.width, image.height, image.bands
    line_size = (width * 3 + 3) & ~3
    image_size = height * line_size
    header_size = _FILE_HEADER_LEN + _INFO_HEADER_LEN

    out = bytearray(
        _SAVE_HEADER.pack(
            b"BM",
            header_size + image_size,
            0,
            0,
            header_size,
            _INFO_HEADER_LEN,
            width,
            height,
            1,
            24,
            0,
            image_size,
            _PIXELS_PER_METER,
            _PIXELS_PER_METER,
            0,
            0,
        )
    )

    stride = width * bands
    used = width * 3

    for y in range(height - 1, -1, -1):
        src = image.pixels[y * stride : (y + 1) * stride]
        red, green, blue = src[0::bands], src[1::bands], src[2::bands]

        if bands == 4:
            alpha = src[3::4]

            def premultiply(channel: bytes) -> bytes:
                return bytes(
                    c * a // 255 if a < 255 else c for c, a in zip(channel, alpha)
                )

            red, green, blue = premultiply(red), premultiply(green), premultiply(blue)

        line = bytearray(line_size)
        line[0:used:3] = blue
        line[1:used:3] = green
        line[2:used:3] = red
        out += line

    return bytes(out)