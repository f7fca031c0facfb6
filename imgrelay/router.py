"""Request routing, request identifiers, timing and request/response logging."""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import unquote

logger = logging.getLogger(__name__)

_REQUEST_ID_HEADER = "X-Request-ID"
_AMZN_REQUEST_CONTEXT_HEADER = "x-amzn-request-context"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")
_NANOID_ALPHABET = string.ascii_letters + string.digits + "_-"
_NANOID_SIZE = 21
_SERVER_NAME = "imgrelay"


class RequestError(Exception):
    """A failed request carrying an HTTP status and a message safe for clients."""

    def __init__(
        self,
        status_code: int,
        message: str,
        public_message: str,
        unexpected: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.public_message = public_message
        self.unexpected = unexpected


class RequestTimer:
    """Tracks how long a request has run and whether it was cancelled or timed out."""

    def __init__(self, timeout: float | None) -> None:
        self._started = time.monotonic()
        self._timeout = timeout
        self._cancelled_at: float | None = None

    def elapsed(self) -> float:
        """Seconds since the timer was started."""
        return time.monotonic() - self._started

    def cancel(self) -> None:
        """Mark the request as cancelled. Only the first call counts."""
        if self._cancelled_at is None:
            self._cancelled_at = self.elapsed()

    def check_timeout(self) -> None:
        """Raise RequestError if the request was cancelled (499) or timed out (503)."""
        elapsed = self.elapsed()
        cancelled = self._cancelled_at is not None and (
            self._timeout is None or self._cancelled_at < self._timeout
        )
        if cancelled:
            raise RequestError(
                499, f"Request was cancelled after {elapsed:.6f}s", "Cancelled"
            )
        if self._timeout is not None and elapsed >= self._timeout:
            raise RequestError(
                503, f"Request was timed out after {elapsed:.6f}s", "Timeout"
            )


def _lookup(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


@dataclass
class Request:
    """An incoming HTTP request as seen by the router."""

    method: str
    uri: str
    headers: dict[str, str] = field(default_factory=dict)
    remote_addr: str = ""
    timer: RequestTimer | None = None

    @property
    def path(self) -> str:
        """The decoded URL path, without the query string."""
        return unquote(self.uri.split("?", 1)[0])

    def header(self, name: str) -> str:
        """Case-insensitive header lookup; empty string when absent."""
        return _lookup(self.headers, name)


@dataclass
class Response:
    """An HTTP response produced by a handler."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


Handler = Callable[[str, Request], Response]


@dataclass
class _Route:
    method: str
    prefix: str
    handler: Handler
    exact: bool

    def matches(self, request: Request) -> bool:
        if self.method != request.method:
            return False
        if self.exact:
            return request.path == self.prefix
        return request.path.startswith(self.prefix)


def _split_host_port(addr: str) -> tuple[str, str] | None:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1 : end + 2] != ":":
            return None
        return addr[1:end], addr[end + 2 :]
    if addr.count(":") != 1:
        return None
    host, port = addr.split(":", 1)
    return host, port


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _client_ip(request: Request) -> str:
    parts = _split_host_port(request.remote_addr)
    return parts[0] if parts else ""


def _replace_remote_addr(request: Request, ip: str) -> None:
    parts = _split_host_port(request.remote_addr)
    port = parts[1] if parts else "80"
    request.remote_addr = _join_host_port(ip.strip(), port)


def _new_request_id() -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(_NANOID_SIZE))


def _valid_request_id(req_id: str) -> bool:
    return bool(req_id) and _REQUEST_ID_RE.fullmatch(req_id) is not None


def _lambda_request_id(raw: str) -> str:
    try:
        context = json.loads(raw)
    except ValueError:
        return ""
    if not isinstance(context, dict):
        return ""
    request_id = context.get("requestId")
    return request_id if isinstance(request_id, str) else ""


def log_request(req_id: str, request: Request) -> None:
    """Log the start of a request."""
    fields = {
        "request_id": req_id,
        "method": request.method,
        "client_ip": _client_ip(request),
    }
    logger.info("Started %s", request.uri, extra={"fields": fields})


def log_response(
    req_id: str,
    request: Request,
    status: int,
    error: RequestError | None = None,
    *args: Mapping[str, Any],
) -> None:
    """Log the completion of a request; extra field mappings may follow."""
    if status >= 500 or (error is not None and error.unexpected):
        level = logging.ERROR
    elif status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    fields: dict[str, Any] = {
        "request_id": req_id,
        "method": request.method,
        "status": status,
        "client_ip": _client_ip(request),
    }
    if error is not None:
        fields["error"] = str(error)
    for extra in args:
        fields.update(extra)

    elapsed = request.timer.elapsed() if request.timer else 0.0
    logger.log(
        level,
        "Completed in %.6fs %s",
        elapsed,
        request.uri,
        extra={"fields": fields},
    )


def _not_found() -> Response:
    return Response(404, {"Content-Type": "text/plain"}, b" ")


class Router:
    """Dispatches requests to handlers by method and path prefix."""

    def __init__(
        self,
        prefix: str = "",
        health_check_path: str = "",
        write_timeout: float | None = 10,
    ) -> None:
        self.prefix = prefix
        self.write_timeout = write_timeout
        self.health_routes = [prefix + "/health"]
        if health_check_path:
            self.health_routes.append(prefix + health_check_path)
        self.favicon_route = prefix + "/favicon.ico"
        self.routes: list[_Route] = []
        self.health_handler: Handler | None = None

    def add(self, method: str, prefix: str, handler: Handler, exact: bool = False) -> None:
        """Register a handler; routes with an empty full prefix are ignored."""
        full_prefix = self.prefix + prefix
        if not full_prefix:
            return
        self.routes.append(_Route(method, full_prefix, handler, exact))

    def get(self, prefix: str, handler: Handler, exact: bool = False) -> None:
        self.add("GET", prefix, handler, exact)

    def options(self, prefix: str, handler: Handler, exact: bool = False) -> None:
        self.add("OPTIONS", prefix, handler, exact)

    def head(self, prefix: str, handler: Handler, exact: bool = False) -> None:
        self.add("HEAD", prefix, handler, exact)

    def serve(self, request: Request) -> Response:
        """Handle one request and return the response."""
        timer = RequestTimer(self.write_timeout)
        request.timer = timer
        try:
            return self._dispatch(request)
        finally:
            timer.cancel()

    def _request_id(self, request: Request) -> str:
        req_id = request.header(_REQUEST_ID_HEADER)
        if not _valid_request_id(req_id):
            lambda_context = request.header(_AMZN_REQUEST_CONTEXT_HEADER)
            if lambda_context:
                lambda_id = _lambda_request_id(lambda_context)
                if lambda_id:
                    req_id = lambda_id
        if not _valid_request_id(req_id):
            req_id = _new_request_id()
        return req_id

    def _dispatch(self, request: Request) -> Response:
        req_id = self._request_id(request)
        base_headers = {"Server": _SERVER_NAME, _REQUEST_ID_HEADER: req_id}

        def finish(response: Response) -> Response:
            response.headers = {**base_headers, **response.headers}
            return response

        if request.method == "GET":
            if self.health_handler is not None and request.path in self.health_routes:
                return finish(self.health_handler(req_id, request))
            if request.path == self.favicon_route:
                return finish(_not_found())

        forwarded = request.header("X-Forwarded-For")
        if ip := request.header("CF-Connecting-IP"):
            _replace_remote_addr(request, ip)
        elif forwarded:
            index = forwarded.find(",")
            if index > 0:
                forwarded = forwarded[:index]
            _replace_remote_addr(request, forwarded)
        elif ip := request.header("X-Real-IP"):
            _replace_remote_addr(request, ip)

        log_request(req_id, request)

        for route in self.routes:
            if route.matches(request):
                return finish(route.handler(req_id, request))

        log_response(
            req_id,
            request,
            404,
            RequestError(404, f"Route for {request.path} is not defined", "Not found"),
        )
        return finish(_not_found())