"""Interceptor middleware: request counting, access logging and routing."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional, Protocol
from urllib.parse import urlsplit

from kedahttp.handlers import Request, ResponseWriter, Static
from kedahttp.v1alpha1 import HTTPScaledObject

COMBINED_LOG_BLANK_VALUE = "-"

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_KUBE_PROBE_USER_AGENT = re.compile(r"(^|\s)kube-probe/")


class Handler(Protocol):
    def serve_http(self, writer: ResponseWriter, request: Request) -> None: ...


class QueueCounter(Protocol):
    def resize(self, host: str, delta: int) -> Any: ...


class RoutingTable(Protocol):
    def route(self, request: Request) -> Optional[HTTPScaledObject]: ...


def _key_for(httpso: Optional[HTTPScaledObject]) -> str:
    return httpso.namespaced_name() if httpso is not None else "/"


class LoggingResponseWriter:
    """Wraps a response writer and records the status code and bytes written."""

    def __init__(self, downstream: ResponseWriter) -> None:
        self.downstream = downstream
        self.bytes_written = 0
        self.status_code = 0

    @property
    def headers(self) -> Any:
        return self.downstream.headers

    def write(self, data: bytes) -> int:
        """Write downstream, flush if possible, and count the bytes written."""
        written = self.downstream.write(data)
        flush = getattr(self.downstream, "flush", None)
        if callable(flush):
            flush()
        self.bytes_written += written
        return written

    def write_header(self, status_code: int) -> None:
        """Write the status code downstream and remember it."""
        self.downstream.write_header(status_code)
        self.status_code = status_code


class Counting:
    """Keeps the pending-request count of the routed object up to date."""

    def __init__(self, queue_counter: QueueCounter, upstream_handler: Handler) -> None:
        self.queue_counter = queue_counter
        self.upstream_handler = upstream_handler

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Count the request as pending while the upstream handler serves it."""
        logger = request.logger.getChild("CountingMiddleware")
        request = replace(request, logger=logger)
        key = _key_for(request.httpso)
        counted = self._resize(logger, key, +1, "incrementing")
        try:
            self.upstream_handler.serve_http(writer, request)
        finally:
            if counted:
                self._resize(logger, key, -1, "decrementing")

    def _resize(self, logger: logging.Logger, key: str, delta: int, action: str) -> bool:
        try:
            self.queue_counter.resize(key, delta)
        except Exception:
            logger.exception("error %s queue counter (key %s)", action, key)
            return False
        return True


def format_combined_log(
    request: Request, status_code: int, bytes_written: int, started: datetime
) -> str:
    """Render one access-log line in the combined log format."""
    if started.tzinfo is None:
        started = started.astimezone()
    timestamp = (
        f"{started.day:02d}/{_MONTHS[started.month - 1]}/{started.year:04d}:"
        f"{started.hour:02d}:{started.minute:02d}:{started.second:02d} {started.strftime('%z')}"
    )
    referer = request.headers.get("Referer", "") or ""
    return (
        f"{request.remote_addr} {COMBINED_LOG_BLANK_VALUE} {COMBINED_LOG_BLANK_VALUE} "
        f'[{timestamp}] "{request.method} {request.path} {request.proto}" '
        f'{status_code} {bytes_written} "{referer}" "{request.user_agent()}"'
    )


class Logging:
    """Logs every request in the combined log format once it has been served."""

    def __init__(self, logger: logging.Logger, upstream_handler: Handler) -> None:
        self.logger = logger
        self.upstream_handler = upstream_handler

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Serve through the upstream handler and log the outcome."""
        logger = self.logger.getChild("LoggingMiddleware")
        request = replace(request, logger=logger)
        recorder = LoggingResponseWriter(writer)
        started = datetime.now().astimezone()
        try:
            self.upstream_handler.serve_http(recorder, request)
        finally:
            logger.info(
                "%s",
                format_combined_log(request, recorder.status_code, recorder.bytes_written, started),
            )


class Routing:
    """Routes requests to the upstream handler using the routing table."""

    def __init__(
        self,
        routing_table: RoutingTable,
        probe_handler: Optional[Handler],
        upstream_handler: Handler,
    ) -> None:
        self.routing_table = routing_table
        self.probe_handler = probe_handler
        self.upstream_handler = upstream_handler

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Attach the routed object and its stream, or answer probes and 404s."""
        request = replace(request, logger=request.logger.getChild("RoutingMiddleware"))
        httpso = self.routing_table.route(request)
        if httpso is None:
            if self.probe_handler is not None and self.is_kube_probe(request):
                self.probe_handler.serve_http(writer, request)
                return
            Static(404).serve_http(writer, request)
            return
        request = replace(request, httpso=httpso)
        try:
            stream = self.stream_from_httpso(httpso)
        except ValueError as err:
            Static(500, err).serve_http(writer, request)
            return
        self.upstream_handler.serve_http(writer, replace(request, stream=stream))

    def stream_from_httpso(self, httpso: HTTPScaledObject) -> str:
        """Return the URL of the service the object routes to; ValueError if invalid."""
        ref = httpso.spec.scale_target_ref
        url = f"http://{ref.service}.{httpso.namespace}:{ref.port}"
        parts = urlsplit(url)
        _ = parts.port
        return url

    def is_kube_probe(self, request: Request) -> bool:
        """Report whether the request comes from a Kubernetes probe."""
        return _KUBE_PROBE_USER_AGENT.search(request.user_agent()) is not None