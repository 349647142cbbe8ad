"""HTTP handlers of the interceptor: health probe, static replies and upstream proxying."""

from __future__ import annotations

import http.client
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Protocol
from urllib.parse import SplitResult, urlsplit
from wsgiref.headers import Headers

from kedahttp.v1alpha1 import HTTPScaledObject

_STATUS_TEXT = {
    100: "Continue",
    101: "Switching Protocols",
    102: "Processing",
    103: "Early Hints",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    207: "Multi-Status",
    208: "Already Reported",
    226: "IM Used",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    305: "Use Proxy",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Request Entity Too Large",
    414: "Request URI Too Long",
    415: "Unsupported Media Type",
    416: "Requested Range Not Satisfiable",
    417: "Expectation Failed",
    418: "I'm a teapot",
    421: "Misdirected Request",
    422: "Unprocessable Entity",
    423: "Locked",
    424: "Failed Dependency",
    425: "Too Early",
    426: "Upgrade Required",
    428: "Precondition Required",
    429: "Too Many Requests",
    431: "Request Header Fields Too Large",
    451: "Unavailable For Legal Reasons",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
    506: "Variant Also Negotiates",
    507: "Insufficient Storage",
    508: "Loop Detected",
    510: "Not Extended",
    511: "Network Authentication Required",
}

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "proxy-connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_CHUNK_SIZE = 64 * 1024


def status_text(code: int) -> str:
    """Return the standard reason phrase for a status code, or "" if unknown."""
    return _STATUS_TEXT.get(code, "")


class ResponseWriter(Protocol):
    headers: Headers

    def write(self, data: bytes) -> int: ...

    def write_header(self, status_code: int) -> None: ...


@dataclass
class Request:
    """An incoming HTTP request along with the values attached while it is routed."""

    method: str = "GET"
    path: str = "/"
    query: str = ""
    host: str = ""
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    remote_addr: str = ""
    proto: str = "HTTP/1.1"
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("kedahttp"))
    httpso: Optional[HTTPScaledObject] = None
    stream: Optional[str] = None

    def user_agent(self) -> str:
        """Return the User-Agent header, or "" when absent."""
        return self.headers.get("User-Agent", "") or ""


@dataclass
class ResponseRecorder:
    """An in-memory response writer that records what a handler wrote."""

    code: int = 200
    headers: Headers = field(default_factory=Headers)
    body: bytearray = field(default_factory=bytearray)
    wrote_header: bool = False
    flushed: bool = False

    def write_header(self, status_code: int) -> None:
        """Record the status code; only the first call has an effect."""
        if self.wrote_header:
            return
        self.code = status_code
        self.wrote_header = True

    def write(self, data: bytes) -> int:
        """Append data to the body, writing a 200 status first if none was written."""
        if not self.wrote_header:
            self.write_header(200)
        self.body.extend(data)
        return len(data)

    def flush(self) -> None:
        self.flushed = True

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


HealthChecker = Callable[[], Any]


class Probe:
    """Serves health status computed periodically from a set of health checkers."""

    def __init__(
        self,
        health_checkers: Iterable[HealthChecker] = (),
        logger: Optional[logging.Logger] = None,
        check_interval: float = 1.0,
    ) -> None:
        self.health_checkers = list(health_checkers)
        self.healthy = False
        self.logger = logger or logging.getLogger("kedahttp.handlers").getChild("Probe")
        self.check_interval = check_interval

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Reply 200 when healthy, 503 otherwise, with the status text as body."""
        code = 200 if self.healthy else 503
        writer.write_header(code)
        try:
            writer.write(status_text(code).encode())
        except OSError:
            request.logger.getChild("ProbeHandler").exception("write failed")

    def start(self, stop_event: threading.Event) -> None:
        """Run checks every check_interval until stop_event is set; checks once before waiting."""
        while True:
            self.check()
            if stop_event.wait(self.check_interval):
                return

    def check(self) -> None:
        """Run the health checkers in order; the first failure marks the probe unhealthy."""
        for checker in self.health_checkers:
            try:
                checker()
            except Exception as err:
                self.healthy = False
                self.logger.error("health check function failed", exc_info=err)
                return
        self.healthy = True


class Static:
    """Replies with a fixed status code and logs the reason."""

    def __init__(self, status_code: int, error: Optional[BaseException] = None) -> None:
        self.status_code = status_code
        self.error = error

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Log the failed request and write the status code and its text."""
        logger = request.logger.getChild("StaticHandler")
        text = status_text(self.status_code)
        httpso = request.httpso
        logger.error(
            "%s",
            text,
            exc_info=self.error,
            extra={
                "routing_host": request.host,
                "routing_path": request.path,
                "namespaced_name": httpso.namespaced_name() if httpso is not None else "",
                "stream": request.stream,
            },
        )
        writer.write_header(self.status_code)
        try:
            writer.write(text.encode())
        except OSError:
            logger.exception("write failed")


def _connection_tokens(headers: Headers) -> set[str]:
    tokens: set[str] = set()
    for value in headers.get_all("Connection"):
        tokens.update(token.strip().lower() for token in value.split(",") if token.strip())
    return tokens


def _is_hop_by_hop(name: str, extra: set[str]) -> bool:
    lowered = name.lower()
    return lowered in _HOP_BY_HOP or lowered in extra


def _client_ip(remote_addr: str) -> str:
    if not remote_addr:
        return ""
    if remote_addr.startswith("["):
        return remote_addr[1:].split("]", 1)[0]
    host, sep, _port = remote_addr.rpartition(":")
    return host if sep else remote_addr


class Upstream:
    """Reverse-proxies a request to the stream URL attached to it."""

    def __init__(
        self,
        connect_timeout: Optional[float] = None,
        response_header_timeout: Optional[float] = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.response_header_timeout = response_header_timeout

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Forward the request and copy the response back; failures become 500 or 502."""
        logger = request.logger.getChild("UpstreamHandler")
        request = replace(request, logger=logger)
        if request.stream is None:
            Static(500, ValueError("context stream is nil")).serve_http(writer, request)
            return
        try:
            target = urlsplit(request.stream)
            conn, response = self._round_trip(target, request)
        except (OSError, ValueError, http.client.HTTPException) as err:
            Static(502, err).serve_http(writer, request)
            return
        try:
            extra = {
                token
                for value in response.headers.get_all("Connection", [])
                for token in (t.strip().lower() for t in value.split(","))
                if token
            }
            for name, value in response.getheaders():
                if not _is_hop_by_hop(name, extra):
                    writer.headers.add_header(name, value)
            writer.write_header(response.status)
            while chunk := response.read1(_CHUNK_SIZE):
                writer.write(chunk)
        except (OSError, http.client.HTTPException):
            logger.exception("failed copying response body from upstream")
        finally:
            conn.close()

    def _round_trip(
        self, target: SplitResult, request: Request
    ) -> tuple[http.client.HTTPConnection, http.client.HTTPResponse]:
        conn_cls = (
            http.client.HTTPSConnection if target.scheme == "https" else http.client.HTTPConnection
        )
        conn = conn_cls(target.hostname or "", target.port, timeout=self.connect_timeout)
        try:
            conn.connect()
            sock = conn.sock
            sock.settimeout(self.response_header_timeout)
            path = request.path or "/"
            if request.query:
                path = f"{path}?{request.query}"
            conn.putrequest(request.method, path, skip_host=True, skip_accept_encoding=True)
            for name, value in self._outgoing_headers(request, target):
                conn.putheader(name, value)
            body = request.body or None
            conn.endheaders(body)
            response = conn.getresponse()
            try:
                sock.settimeout(None)
            except OSError:
                pass
        except BaseException:
            conn.close()
            raise
        return conn, response

    @staticmethod
    def _outgoing_headers(request: Request, target: SplitResult) -> list[tuple[str, str]]:
        extra = _connection_tokens(request.headers)
        out = [
            (name, value)
            for name, value in request.headers.items()
            if not _is_hop_by_hop(name, extra)
            and name.lower() not in ("host", "x-forwarded-for")
        ]
        out.insert(0, ("Host", request.host or target.netloc))
        client_ip = _client_ip(request.remote_addr)
        prior = request.headers.get_all("X-Forwarded-For")
        if client_ip:
            out.append(("X-Forwarded-For", ", ".join([*prior, client_ip])))
        else:
            out.extend(("X-Forwarded-For", value) for value in prior)
        if request.body and not any(name.lower() == "content-length" for name, _ in out):
            out.append(("Content-Length", str(len(request.body))))
        return out