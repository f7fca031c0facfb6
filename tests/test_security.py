import base64
import io
import re

import pytest

from imgrelay.security import (
    LimitedReader,
    SecurityError,
    SecurityOptions,
    SignatureError,
    SourceAddressError,
    check_dimensions,
    check_file_size,
    check_security_options_allowed,
    limit_file_size,
    signature_for,
    verify_signature,
    verify_source_network,
    verify_source_url,
)

KEYS = [b"test-key"]
SALTS = [b"test-salt"]


def test_verify_signature():
    verify_signature("dtLwhdnPPiu_epMl1LrzheLpvHas-4mwvY6L3Z8WwlY", "asd", KEYS, SALTS, 32, [])
    expected = base64.urlsafe_b64decode("dtLwhdnPPiu_epMl1LrzheLpvHas-4mwvY6L3Z8WwlY=")
    assert signature_for("asd", KEYS[0], SALTS[0], 32) == expected


def test_verify_signature_truncated():
    verify_signature("dtLwhdnPPis", "asd", KEYS, SALTS, 8, [])
    assert len(signature_for("asd", KEYS[0], SALTS[0], 8)) == 8


def test_verify_signature_invalid():
    with pytest.raises(SignatureError, match="Invalid signature"):
        verify_signature("dtLwhdnPPis", "asd", KEYS, SALTS, 32, [])


def test_verify_signature_multiple_pairs():
    keys = KEYS + [b"test-key2"]
    salts = SALTS + [b"test-salt2"]
    verify_signature("dtLwhdnPPiu_epMl1LrzheLpvHas-4mwvY6L3Z8WwlY", "asd", keys, salts, 32, [])
    verify_signature("jbDffNPt1-XBgDccsaE-XJB9lx8JIJqdeYIZKgOqZpg", "asd", keys, salts, 32, [])
    with pytest.raises(SignatureError):
        verify_signature("dtLwhdnPPis", "asd", keys, salts, 32, [])


def test_verify_signature_trusted():
    verify_signature("truested", "asd", KEYS, SALTS, 32, ["truested"])
    with pytest.raises(SignatureError):
        verify_signature("untrusted", "asd", KEYS, SALTS, 32, ["truested"])


def test_signature_for_request_path():
    path = "/rs:fill:4:4/plain/local:///test1.png"
    verify_signature("My9d3xq_PYpVHsPrCyww0Kh1w5KZeZhIlWhsa4az1TI", path, KEYS, SALTS, 32, [])
    with pytest.raises(SignatureError):
        verify_signature("unsafe", path, KEYS, SALTS, 32, [])


def test_no_keys_accepts_anything():
    verify_signature("@@@", "asd", [], SALTS, 32, [])
    verify_signature("@@@", "asd", KEYS, [], 32, [])
    with pytest.raises(SignatureError):
        verify_signature("@@@", "asd", KEYS, SALTS, 32, [])


def test_bad_encoding_message():
    with pytest.raises(SignatureError) as excinfo:
        verify_signature("abc=", "asd", KEYS, SALTS, 32, [])
    assert str(excinfo.value) == "Invalid signature encoding"
    assert excinfo.value.status_code == 403


def test_signature_round_trip_other_key():
    mac = signature_for("/some/path", b"secret", b"placeholder", 32)
    encoded = base64.urlsafe_b64encode(mac).decode().rstrip("=")
    verify_signature(encoded, "/some/path", [b"secret"], [b"placeholder"], 32, [])
    with pytest.raises(SignatureError):
        verify_signature(encoded, "/other/path", [b"secret"], [b"placeholder"], 32, [])


def test_source_url_allowed_and_denied():
    patterns = [re.compile(r"^local://"), re.compile(r"^http://images\.dev/")]
    verify_source_url("http://images.dev/lorem.jpg", patterns)
    verify_source_url("s3://anything", [])
    with pytest.raises(SecurityError) as excinfo:
        verify_source_url("s3://images/lorem/ipsum.jpg", patterns)
    assert excinfo.value.status_code == 404
    assert "s3://images/lorem/ipsum.jpg" in str(excinfo.value)


@pytest.mark.parametrize(
    "addr, loopback, link_local, private",
    [
        ("127.0.0.1:80", True, False, False),
        ("::1", True, False, False),
        ("169.254.1.1:443", False, True, False),
        ("192.168.0.1", False, False, True),
        ("8.8.8.8:80", False, False, False),
        ("2001:db8::1", False, False, False),
    ],
)
def test_source_network_allowed(addr, loopback, link_local, private):
    assert verify_source_network(addr, loopback, link_local, private) is None


@pytest.mark.parametrize(
    "addr",
    [
        "127.0.0.1:80",
        "[::1]:8080",
        "169.254.1.1:443",
        "224.0.0.5",
        "ff02::1",
        "10.1.2.3:80",
        "172.20.0.1:80",
        "fd00::1",
        "::ffff:10.0.0.1",
    ],
)
def test_source_network_denied(addr):
    with pytest.raises(SourceAddressError, match="source address is not allowed"):
        verify_source_network(addr, False, False, False)


@pytest.mark.parametrize("addr", ["not-an-ip", "example.com:80", "[::1]", ""])
def test_source_network_invalid(addr):
    with pytest.raises(SourceAddressError, match="invalid source address"):
        verify_source_network(addr, True, True, True)


def _opts(resolution=100, file_size=0, frames=1, frame_resolution=0):
    return SecurityOptions(resolution, file_size, frames, frame_resolution)


def test_check_file_size():
    check_file_size(10, _opts(file_size=0))
    check_file_size(10, _opts(file_size=10))
    with pytest.raises(SecurityError, match="file is too big") as excinfo:
        check_file_size(11, _opts(file_size=10))
    assert excinfo.value.status_code == 422


def test_limit_file_size_unlimited_returns_stream():
    stream = io.BytesIO(b"abcdef")
    assert limit_file_size(stream, _opts(file_size=0)) is stream


def test_limited_reader_stops_at_limit():
    reader = limit_file_size(io.BytesIO(b"abcdef"), _opts(file_size=4))
    assert isinstance(reader, LimitedReader)
    assert reader.read(10) == b"abcd"
    with pytest.raises(SecurityError):
        reader.read(1)


def test_limited_reader_partial_reads():
    reader = LimitedReader(io.BytesIO(b"abcdef"), 5)
    assert reader.read(2) == b"ab"
    assert reader.read() == b"cde"
    with pytest.raises(SecurityError):
        reader.read()


@pytest.mark.parametrize(
    "width, height, frames, frame_resolution",
    [
        (10, 10, 1, 0),
        (10, 10, 0, 0),
        (10, 10, 5, 100),
    ],
)
def test_check_dimensions_allowed(width, height, frames, frame_resolution):
    opts = _opts(frame_resolution=frame_resolution)
    assert check_dimensions(width, height, frames, opts) is None


@pytest.mark.parametrize(
    "width, height, frames, frame_resolution, message",
    [
        (10, 11, 1, 0, "^Source image resolution is too big$"),
        (10, 10, 2, 0, "^Source image resolution is too big$"),
        (10, 11, 5, 100, "^Source image frame resolution is too big$"),
    ],
)
def test_check_dimensions_denied(width, height, frames, frame_resolution, message):
    opts = _opts(frame_resolution=frame_resolution)
    with pytest.raises(SecurityError, match=message) as excinfo:
        check_dimensions(width, height, frames, opts)
    assert excinfo.value.status_code == 422


def test_check_dimensions_messages():
    with pytest.raises(SecurityError, match="frame resolution"):
        check_dimensions(20, 20, 3, _opts(frame_resolution=100))
    with pytest.raises(SecurityError, match="^Source image resolution is too big$"):
        check_dimensions(20, 20, 1, _opts())


def test_security_options_allowed():
    check_security_options_allowed(True)
    with pytest.raises(SecurityError) as excinfo:
        check_security_options_allowed(False)
    assert excinfo.value.status_code == 403
    assert excinfo.value.public_message == "Invalid URL"