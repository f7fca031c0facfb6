"""Request signatures, source restrictions and source size limits."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import ipaddress
import re
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Pattern, Sequence

_RAW_URL_B64_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class SecurityError(Exception):
    """A request rejected for security reasons, with an HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int = 422,
        public_message: str = "Invalid source image",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.public_message = public_message


class SignatureError(SecurityError):
    """The URL signature is missing, malformed or wrong."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 403, "Forbidden")


class SourceAddressError(SecurityError):
    """The source network address is invalid or not allowed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 404, "Invalid source")


@dataclass
class SecurityOptions:
    """Limits applied to source images."""

    max_src_resolution: int
    max_src_file_size: int
    max_animation_frames: int
    max_animation_frame_resolution: int


def _file_too_big() -> SecurityError:
    return SecurityError("Source image file is too big")


def signature_for(path: str, key: bytes, salt: bytes, signature_size: int) -> bytes:
    """Compute the HMAC-SHA256 of salt+path, truncated to ``signature_size``."""
    mac = hmac.new(key, digestmod=hashlib.sha256)
    mac.update(salt)
    mac.update(path.encode())
    digest = mac.digest()
    if signature_size < 32:
        return digest[:signature_size]
    return digest


def _decode_raw_url_b64(text: str) -> bytes:
    if not _RAW_URL_B64_RE.fullmatch(text):
        raise SignatureError("Invalid signature encoding")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        raise SignatureError("Invalid signature encoding") from None


def verify_signature(
    signature: str,
    path: str,
    keys: Sequence[bytes],
    salts: Sequence[bytes],
    signature_size: int,
    trusted_signatures: Iterable[str],
) -> None:
    """Raise SignatureError unless ``signature`` is valid for ``path``.

    With no keys or no salts configured every signature is accepted.
    """
    if not keys or not salts:
        return

    if signature in trusted_signatures:
        return

    message_mac = _decode_raw_url_b64(signature)

    for key, salt in zip(keys, salts, strict=True):
        if hmac.compare_digest(
            message_mac, signature_for(path, key, salt, signature_size)
        ):
            return

    raise SignatureError("Invalid signature")


def verify_source_url(image_url: str, allowed_sources: Sequence[Pattern[str]]) -> None:
    """Raise SecurityError unless ``image_url`` matches an allowed source."""
    if not allowed_sources:
        return

    if any(pattern.search(image_url) for pattern in allowed_sources):
        return

    raise SecurityError(
        f"Source URL is not allowed: {image_url}", 404, "Invalid source"
    )


def _split_host(addr: str) -> str | None:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1 : end + 2] != ":":
            return None
        return addr[1:end]
    if addr.count(":") != 1:
        return None
    return addr.split(":", 1)[0]


_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)
_V4_LINK_LOCAL_MULTICAST = ipaddress.ip_network("224.0.0.0/24")


def _is_private(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return any(ip.version == net.version and ip in net for net in _PRIVATE_NETWORKS)


def _is_link_local(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if ip.is_link_local:
        return True
    if ip.version == 4:
        return ip in _V4_LINK_LOCAL_MULTICAST
    packed = ip.packed
    return packed[0] == 0xFF and packed[1] & 0x0F == 0x02


def verify_source_network(
    addr: str, allow_loopback: bool, allow_link_local: bool, allow_private: bool
) -> None:
    """Raise SourceAddressError if the address is invalid or of a denied kind."""
    host = _split_host(addr)
    if host is None:
        host = addr

    if "%" in host:
        raise SourceAddressError("invalid source address")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        raise SourceAddressError("invalid source address") from None

    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if not allow_loopback and ip.is_loopback:
        raise SourceAddressError("source address is not allowed")

    if not allow_link_local and _is_link_local(ip):
        raise SourceAddressError("source address is not allowed")

    if not allow_private and _is_private(ip):
        raise SourceAddressError("source address is not allowed")


def check_file_size(size: int, opts: SecurityOptions) -> None:
    """Raise SecurityError if ``size`` exceeds the configured file size limit."""
    if opts.max_src_file_size > 0 and size > opts.max_src_file_size:
        raise _file_too_big()


class LimitedReader:
    """Reads from a stream and fails once the byte budget is used up."""

    def __init__(self, stream: BinaryIO, limit: int) -> None:
        self._stream = stream
        self._left = limit

    def read(self, size: int = -1) -> bytes:
        if self._left <= 0:
            raise _file_too_big()
        if size < 0 or size > self._left:
            size = self._left
        data = self._stream.read(size)
        self._left -= len(data)
        return data


def limit_file_size(stream: BinaryIO, opts: SecurityOptions) -> BinaryIO | LimitedReader:
    """Wrap ``stream`` in a LimitedReader when a file size limit is set."""
    if opts.max_src_file_size > 0:
        return LimitedReader(stream, opts.max_src_file_size)
    return stream


def check_dimensions(width: int, height: int, frames: int, opts: SecurityOptions) -> None:
    """Raise SecurityError if the image or frame resolution is over the limit."""
    frames = max(frames, 1)

    if frames > 1 and opts.max_animation_frame_resolution > 0:
        if width * height > opts.max_animation_frame_resolution:
            raise SecurityError("Source image frame resolution is too big")
    elif width * height * frames > opts.max_src_resolution:
        raise SecurityError("Source image resolution is too big")


def check_security_options_allowed(allowed: bool) -> None:
    """Raise SecurityError when per-request security options are disabled."""
    if not allowed:
        raise SecurityError(
            "Security processing options are not allowed", 403, "Invalid URL"
        )