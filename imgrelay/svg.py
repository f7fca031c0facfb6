"""SVG sanitizing and rewriting of features unsupported by the rasterizer."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator

_WHITESPACE = frozenset(b" \t\r\n")
_TAG_NAME_STOP = frozenset(b" \t\r\n/>")
_TAG_NAME_BAD_START = frozenset(b" \t\r\n/>=<")
_ATTR_NAME_STOP = frozenset(b" \t\r\n=>/")

_FE_DROP_SHADOW = b"feDropShadow"
_ID_ALPHABET = string.ascii_letters + string.digits + "_-"

_DROP_SHADOW_TEMPLATE = (
    b'<feMerge result="dsin-%(in_id)s"><feMergeNode %(in_attrs)s /></feMerge>\n'
    b"  <feGaussianBlur %(blur)s />\n"
    b'  <feOffset %(offset)s result="dsof-%(offset_id)s" />\n'
    b"  <feFlood %(flood)s />\n"
    b'  <feComposite in2="dsof-%(offset_id)s" operator="in" />\n'
    b"  <feMerge %(final)s>\n"
    b"    <feMergeNode />\n"
    b'    <feMergeNode in="dsin-%(in_id)s" />\n'
    b"  </feMerge>"
)

_UNSAFE_ATTRS = frozenset(
    """
    onafterprint onafterscriptexecute onanimationcancel onanimationend
    onanimationiteration onanimationstart onauxclick onbeforecopy onbeforecut
    onbeforeinput onbeforeprint onbeforescriptexecute onbeforeunload onbegin
    onblur onbounce oncanplay oncanplaythrough onchange onclick onclose
    oncontextmenu oncopy oncuechange oncut ondblclick ondrag ondragend
    ondragenter ondragleave ondragover ondragstart ondrop ondurationchange
    onend onended onerror onfinish onfocus onfocusin onfocusout
    onfullscreenchange onhashchange oninput oninvalid onkeydown onkeypress
    onkeyup onload onloadeddata onloadedmetadata onloadend onloadstart
    onmessage onmousedown onmouseenter onmouseleave onmousemove onmouseout
    onmouseover onmouseup onmousewheel onmozfullscreenchange onpagehide
    onpageshow onpaste onpause onplay onplaying onpointerdown onpointerenter
    onpointerleave onpointermove onpointerout onpointerover onpointerrawupdate
    onpointerup onpopstate onprogress onratechange onrepeat onreset onresize
    onscroll onsearch onseeked onseeking onselect onselectionchange
    onselectstart onshow onstart onsubmit ontimeupdate ontoggle ontouchend
    ontouchmove ontouchstart ontransitioncancel ontransitionend
    ontransitionrun ontransitionstart onunhandledrejection onunload
    onvolumechange onwebkitanimationend onwebkitanimationiteration
    onwebkitanimationstart onwebkittransitionend onwheel
    """.split()
)


class SvgError(ValueError):
    """The SVG document could not be tokenized."""


class _Kind(Enum):
    TEXT = auto()
    START_TAG = auto()
    ATTRIBUTE = auto()
    START_TAG_CLOSE = auto()
    START_TAG_CLOSE_VOID = auto()
    END_TAG = auto()
    COMMENT = auto()
    CDATA = auto()
    DOCTYPE = auto()
    PROCESSING_INSTRUCTION = auto()


@dataclass(frozen=True)
class _Token:
    kind: _Kind
    raw: bytes
    name: bytes = b""
    value: bytes = b""


def _find_end(data: bytes, marker: bytes, start: int) -> int:
    index = data.find(marker, start)
    return len(data) if index < 0 else index + len(marker)


def _skip_whitespace(data: bytes, pos: int) -> int:
    while pos < len(data) and data[pos] in _WHITESPACE:
        pos += 1
    return pos


def _lex_content(data: bytes, pos: int) -> tuple[_Token, int, bool]:
    n = len(data)

    if data.startswith(b"<!--", pos):
        end = _find_end(data, b"-->", pos + 4)
        return _Token(_Kind.COMMENT, data[pos:end]), end, False

    if data.startswith(b"<![CDATA[", pos):
        end = _find_end(data, b"]]>", pos + 9)
        return _Token(_Kind.CDATA, data[pos:end]), end, False

    if data.startswith(b"<!", pos):
        i, depth = pos + 2, 0
        while i < n:
            char = data[i]
            i += 1
            if char == ord("["):
                depth += 1
            elif char == ord("]"):
                depth -= 1
            elif char == ord(">") and depth <= 0:
                break
        return _Token(_Kind.DOCTYPE, data[pos:i]), i, False

    if data.startswith(b"<?", pos):
        end = _find_end(data, b"?>", pos + 2)
        return _Token(_Kind.PROCESSING_INSTRUCTION, data[pos:end]), end, False

    if data.startswith(b"</", pos):
        close = data.find(b">", pos + 2)
        if close < 0:
            name, end = data[pos + 2 :].strip(), n
        else:
            name, end = data[pos + 2 : close].strip(), close + 1
        return _Token(_Kind.END_TAG, data[pos:end], name), end, False

    if data[pos] == ord("<") and pos + 1 < n and data[pos + 1] not in _TAG_NAME_BAD_START:
        i = pos + 1
        while i < n and data[i] not in _TAG_NAME_STOP:
            i += 1
        return _Token(_Kind.START_TAG, data[pos:i], data[pos + 1 : i]), i, True

    following = data.find(b"<", pos + 1)
    end = n if following < 0 else following
    return _Token(_Kind.TEXT, data[pos:end]), end, False


def _lex_in_tag(data: bytes, pos: int) -> tuple[_Token, int, bool]:
    n = len(data)
    i = _skip_whitespace(data, pos)

    if i >= n:
        return _Token(_Kind.TEXT, data[pos:]), n, False
    if data.startswith(b"/>", i):
        return _Token(_Kind.START_TAG_CLOSE_VOID, data[pos : i + 2]), i + 2, False
    if data[i] == ord(">"):
        return _Token(_Kind.START_TAG_CLOSE, data[pos : i + 1]), i + 1, False

    name_start = i
    while i < n and data[i] not in _ATTR_NAME_STOP:
        i += 1
    if i == name_start:
        i += 1
    name = data[name_start:i]

    value = b""
    j = _skip_whitespace(data, i)
    if j < n and data[j] == ord("="):
        j = _skip_whitespace(data, j + 1)
        if j < n and data[j] in b"\"'":
            close = data.find(data[j : j + 1], j + 1)
            value_end = n if close < 0 else close + 1
        else:
            value_end = j
            while (
                value_end < n
                and data[value_end] not in _WHITESPACE
                and data[value_end] != ord(">")
                and not data.startswith(b"/>", value_end)
            ):
                value_end += 1
        value = data[j:value_end]
        i = value_end

    return _Token(_Kind.ATTRIBUTE, data[pos:i], name, value), i, True


def _tokens(data: bytes) -> Iterator[_Token]:
    if b"\x00" in data:
        raise SvgError("unexpected null character")

    pos, in_tag = 0, False
    while pos < len(data):
        if in_tag:
            token, pos, in_tag = _lex_in_tag(data, pos)
        else:
            token, pos, in_tag = _lex_content(data, pos)
        yield token


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "replace")


def sanitize(data: bytes) -> bytes:
    """Remove scripts, event handler attributes and external <use> references."""
    out = bytearray()
    ignore_depth = 0
    current_tag = ""

    for token in _tokens(data):
        if ignore_depth > 0:
            if token.kind in (_Kind.END_TAG, _Kind.START_TAG_CLOSE_VOID):
                ignore_depth -= 1
            elif token.kind is _Kind.START_TAG:
                ignore_depth += 1
            continue

        if token.kind is _Kind.START_TAG:
            current_tag = _text(token.name).lower()
            if current_tag == "script":
                ignore_depth += 1
                continue
        elif token.kind is _Kind.ATTRIBUTE:
            attr_name = _text(token.name).lower()
            if attr_name in _UNSAFE_ATTRS:
                continue
            if current_tag == "use" and attr_name in ("href", "xlink:href"):
                value = _text(token.value).strip("\"'").strip()
                if value and not value.startswith("#"):
                    continue

        out += token.raw

    return bytes(out)


def _new_id(size: int = 8) -> bytes:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size)).encode()


def _replace_drop_shadow(tokens: Iterator[_Token]) -> bytes:
    in_attrs = bytearray()
    blur_attrs = bytearray()
    offset_attrs = bytearray()
    flood_attrs = bytearray()
    final_attrs = bytearray()

    has_std_deviation = has_dx = has_dy = False

    for token in tokens:
        if token.kind in (_Kind.END_TAG, _Kind.START_TAG_CLOSE_VOID):
            break
        if token.kind is not _Kind.ATTRIBUTE:
            continue

        name = _text(token.name).lower()
        if name == "in":
            in_attrs += token.raw
        elif name == "stddeviation":
            blur_attrs += token.raw
            has_std_deviation = True
        elif name == "dx":
            offset_attrs += token.raw
            has_dx = True
        elif name == "dy":
            offset_attrs += token.raw
            has_dy = True
        elif name in ("flood-color", "flood-opacity"):
            flood_attrs += token.raw
        else:
            final_attrs += token.raw

    if not has_std_deviation:
        blur_attrs += b' stdDeviation="2"'
    if not has_dx:
        offset_attrs += b' dx="2"'
    if not has_dy:
        offset_attrs += b' dy="2"'

    return _DROP_SHADOW_TEMPLATE % {
        b"in_id": _new_id(),
        b"offset_id": _new_id(),
        b"in_attrs": bytes(in_attrs),
        b"blur": bytes(blur_attrs),
        b"offset": bytes(offset_attrs),
        b"flood": bytes(flood_attrs),
        b"final": bytes(final_attrs),
    }


def fix_unsupported(data: bytes) -> tuple[bytes, bool]:
    """Replace feDropShadow filters with equivalent primitives.

    Returns the (possibly new) document and whether anything was rewritten.
    Documents without feDropShadow are returned as the very same object.
    """
    if _FE_DROP_SHADOW not in data:
        return data, False

    out = bytearray()
    tokens = _tokens(data)
    for token in tokens:
        if token.kind is _Kind.START_TAG and token.name == _FE_DROP_SHADOW:
            out += _replace_drop_shadow(tokens)
            continue
        out += token.raw

    return bytes(out), True