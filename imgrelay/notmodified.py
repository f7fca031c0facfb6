"""Decide whether a conditional request can be answered with 304."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

_HTTP_TIME_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _parse_http_time(value: str) -> datetime | None:
    try:
        return datetime.strptime(value, _HTTP_TIME_FORMAT)
    except ValueError:
        return None


def not_modified(
    request_headers: Mapping[str, str],
    response_headers: Mapping[str, str],
    etag_enabled: bool,
    last_modified_enabled: bool,
) -> bool:
    """Return True if the response may be replaced with 304 Not Modified."""
    if etag_enabled:
        if_none_match = _header(request_headers, "If-None-Match")
        if if_none_match and if_none_match == _header(response_headers, "ETag"):
            return True

    if last_modified_enabled:
        last_modified_raw = _header(response_headers, "Last-Modified")
        if not last_modified_raw:
            return False
        if_modified_since_raw = _header(request_headers, "If-Modified-Since")
        if not if_modified_since_raw:
            return False
        last_modified = _parse_http_time(last_modified_raw)
        if last_modified is None:
            return False
        if_modified_since = _parse_http_time(if_modified_since_raw)
        if if_modified_since is None:
            return False
        if not if_modified_since < last_modified:
            return True

    return False