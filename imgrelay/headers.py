"""Response header computation for processed and streamed images."""

from __future__ import annotations

import mimetypes
import posixpath
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping

_HTTP_TIME_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"

STREAM_REQUEST_HEADERS = ("If-None-Match", "Accept-Encoding", "Range")

STREAM_RESPONSE_HEADERS = (
    "ETag",
    "Content-Type",
    "Content-Encoding",
    "Content-Range",
    "Accept-Ranges",
    "Last-Modified",
)


def build_vary(accept_negotiation: bool, client_hints: bool) -> str:
    """Build the Vary header value; empty when nothing varies."""
    vary: list[str] = []
    if accept_negotiation:
        vary.append("Accept")
    if client_hints:
        vary.extend(("Sec-CH-DPR", "DPR", "Sec-CH-Width", "Width"))
    return ", ".join(vary)


def _parse_http_time(value: str) -> datetime | None:
    try:
        parsed = datetime.strptime(value, _HTTP_TIME_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def cache_control(
    force: datetime | None,
    origin_headers: Mapping[str, str] | None,
    ttl: int,
    fallback_ttl: int = 0,
    passthrough: bool = False,
    now: datetime | None = None,
) -> str:
    """Compute the Cache-Control header value for a response."""
    if now is None:
        now = datetime.now(timezone.utc)

    result = -1

    if origin_headers is not None and "Fallback-Image" in origin_headers and fallback_ttl > 0:
        result = fallback_ttl

    if force is not None and (result < 0 or force < now + timedelta(seconds=result)):
        result = min(ttl, max(0, int((force - now).total_seconds())))

    if passthrough and result < 0 and origin_headers is not None:
        value = origin_headers.get("Cache-Control", "")
        if value:
            return value

        expires = origin_headers.get("Expires", "")
        if expires:
            parsed = _parse_http_time(expires)
            if parsed is not None:
                result = max(0, int((parsed - now).total_seconds()))

    if result < 0:
        result = ttl

    if result > 0:
        return f"max-age={result}, public"
    return "no-cache"


def last_modified(origin_headers: Mapping[str, str] | None, enabled: bool) -> str | None:
    """Return the origin Last-Modified value to pass on, or None."""
    if not enabled or not origin_headers:
        return None
    return origin_headers.get("Last-Modified") or None


def canonical_link(origin_url: str) -> str | None:
    """Return a canonical Link header value for HTTP(S) origins, or None."""
    if origin_url.startswith(("https://", "http://")):
        return f'<{origin_url}>; rel="canonical"'
    return None


def _pairs(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return list(headers.items())
    return list(headers)


def stream_request_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> dict[str, str]:
    """Pick the client headers that are forwarded to the origin when streaming."""
    pairs = _pairs(headers)
    result: dict[str, str] = {}
    for name in STREAM_REQUEST_HEADERS:
        value = next((v for k, v in pairs if k.lower() == name.lower()), "")
        if value:
            result[name] = value
    return result


def stream_response_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> dict[str, str]:
    """Pick the origin headers passed back to the client; the last value wins."""
    pairs = _pairs(headers)
    result: dict[str, str] = {}
    for name in STREAM_RESPONSE_HEADERS:
        for key, value in pairs:
            if key.lower() == name.lower():
                result[name] = value
    return result


def _ext(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def stream_filename(url_path: str, filename: str = "", content_type: str = "") -> tuple[str, str]:
    """Return the (name, extension) used for a streamed image's Content-Disposition."""
    base = posixpath.basename(url_path)
    ext = _ext(base)

    name = filename if filename else base[: len(base) - len(ext)]

    if not ext and content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        extensions = sorted(mimetypes.guess_all_extensions(media_type))
        if extensions:
            ext = extensions[0]

    return name, ext