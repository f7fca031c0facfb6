import re

import pytest

from imgrelay.svg import SvgError, fix_unsupported, sanitize


def _normalize_ids(data: bytes) -> str:
    return re.sub(r'"ds(in|of)-.+?"', r'"ds\1-test"', data.decode())


def test_sanitize_removes_scripts_and_handlers():
    source = (
        b'<svg onload="alert(1)" width="10">'
        b"<script>alert(<b>1</b>)</script><rect/></svg>"
    )
    assert sanitize(source) == b'<svg width="10"><rect/></svg>'


def test_sanitize_is_case_insensitive():
    source = b'<svg><SCRIPT type="x">bad()</SCRIPT><a ONCLICK="x()" id="a"/></svg>'
    assert sanitize(source) == b'<svg><a id="a"/></svg>'


def test_sanitize_self_closing_script():
    source = b'<svg><script src="x.js"/><g/></svg>'
    assert sanitize(source) == b"<svg><g/></svg>"


def test_sanitize_drops_external_use_references():
    source = (
        b'<svg><use xlink:href="http://example.com/x.svg#a" x="1"/>'
        b'<use href=" #local"/></svg>'
    )
    assert sanitize(source) == b'<svg><use x="1"/><use href=" #local"/></svg>'


def test_sanitize_keeps_href_on_other_tags():
    source = b'<svg><a href="http://example.com/">t</a></svg>'
    assert sanitize(source) == source


def test_sanitize_preserves_safe_document():
    source = (
        b'<?xml version="1.0" encoding="UTF-8"?>\n'
        b'<!DOCTYPE svg [<!ENTITY e "x">]>\n'
        b"<!-- a comment -->\n"
        b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">\n'
        b"  <style><![CDATA[rect { fill: red; }]]></style>\n"
        b'  <rect  x = "1" y=\'2\' width=3 />\n'
        b"  <text>1 &lt; 2</text>\n"
        b"</svg>\n"
    )
    assert sanitize(source) == source


def test_sanitize_rejects_null_character():
    with pytest.raises(SvgError):
        sanitize(b"<svg>\x00</svg>")


def test_fix_unsupported_nothing_changed():
    source = b'<svg><rect width="1"/></svg>'
    result, changed = fix_unsupported(source)
    assert changed is False
    assert result is source


def test_fix_unsupported_drop_shadow_void():
    source = (
        b'<svg><filter id="f"><feDropShadow dx="3" flood-color="red" '
        b'in="SourceGraphic" result="r"/></filter></svg>'
    )
    expected = (
        '<svg><filter id="f">'
        '<feMerge result="dsin-test"><feMergeNode  in="SourceGraphic" /></feMerge>\n'
        '  <feGaussianBlur  stdDeviation="2" />\n'
        '  <feOffset  dx="3" dy="2" result="dsof-test" />\n'
        '  <feFlood  flood-color="red" />\n'
        '  <feComposite in2="dsof-test" operator="in" />\n'
        '  <feMerge  result="r">\n'
        "    <feMergeNode />\n"
        '    <feMergeNode in="dsin-test" />\n'
        "  </feMerge>"
        "</filter></svg>"
    )

    result, changed = fix_unsupported(source)

    assert changed is True
    assert _normalize_ids(result) == expected


def test_fix_unsupported_drop_shadow_with_end_tag():
    source = b'<feDropShadow stdDeviation="1" dy="4"></feDropShadow>'
    expected = (
        '<feMerge result="dsin-test"><feMergeNode  /></feMerge>\n'
        '  <feGaussianBlur  stdDeviation="1" />\n'
        '  <feOffset  dy="4" dx="2" result="dsof-test" />\n'
        "  <feFlood  />\n"
        '  <feComposite in2="dsof-test" operator="in" />\n'
        "  <feMerge >\n"
        "    <feMergeNode />\n"
        '    <feMergeNode in="dsin-test" />\n'
        "  </feMerge>"
    )

    result, changed = fix_unsupported(source)

    assert changed is True
    assert _normalize_ids(result) == expected


def test_fix_unsupported_generates_matching_ids():
    result, _ = fix_unsupported(b"<feDropShadow/>")
    text = result.decode()

    in_ids = re.findall(r'dsin-([A-Za-z0-9_-]+)"', text)
    offset_ids = re.findall(r'dsof-([A-Za-z0-9_-]+)"', text)

    assert len(in_ids) == 2 and in_ids[0] == in_ids[1]
    assert len(offset_ids) == 2 and offset_ids[0] == offset_ids[1]
    assert len(in_ids[0]) == 8


def test_fix_unsupported_rejects_null_character():
    with pytest.raises(SvgError):
        fix_unsupported(b"<feDropShadow/>\x00")