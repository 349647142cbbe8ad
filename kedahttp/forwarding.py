"""Waiting for a deployment to be ready and forwarding requests to it."""

from __future__ import annotations

import logging
import queue
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from kedahttp.handlers import Request, ResponseWriter, Upstream
from kedahttp.interceptor_config import Timeouts

COLD_START_HEADER = "X-KEDA-HTTP-Cold-Start"


@dataclass
class Deployment:
    """The state of a deployment that matters for forwarding."""

    namespace: str = ""
    name: str = ""
    replicas: Optional[int] = None
    ready_replicas: int = 0


class WaitError(Exception):
    """Raised when waiting for a deployment to become ready fails."""


class DeploymentWatcher(Protocol):
    events: "queue.Queue[Any]"

    def stop(self) -> None: ...


class DeploymentCache(Protocol):
    def watch(self, namespace: str, name: str) -> DeploymentWatcher: ...

    def get(self, namespace: str, name: str) -> Deployment: ...


WaitFunc = Callable[[str, str, Optional[float]], int]


def deployment_can_serve(deployment: Deployment) -> bool:
    """Report whether the deployment has at least one ready replica."""
    return deployment.ready_replicas > 0


def new_deploy_replicas_wait_func(
    logger: logging.Logger, deploy_cache: DeploymentCache
) -> WaitFunc:
    """Return a function that waits until a deployment has a ready replica.

    The returned function gives the ready replica count when the deployment
    could serve at once, 0 when it became ready while waiting, and raises
    WaitError when the deployment is unknown or the timeout passes.
    """

    def wait(namespace: str, name: str, timeout: Optional[float] = None) -> int:
        # watch before reading the cache so no event is missed
        watcher = deploy_cache.watch(namespace, name)
        try:
            try:
                deployment = deploy_cache.get(namespace, name)
            except Exception as err:
                raise WaitError(
                    f"error getting state for deployment {namespace}/{name}: {err}"
                ) from err
            if deployment_can_serve(deployment):
                return deployment.ready_replicas

            deadline = None if timeout is None else time.monotonic() + timeout
            while True:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise WaitError(
                        f"context marked done while waiting for deployment {name} "
                        "to reach > 0 replicas: context deadline exceeded"
                    )
                try:
                    event = watcher.events.get(timeout=remaining)
                except queue.Empty:
                    continue
                if not isinstance(event, Deployment):
                    logger.info("Didn't get a deployment back in event")
                elif deployment_can_serve(event):
                    return 0
        finally:
            watcher.stop()

    return wait


@dataclass(frozen=True)
class ForwardingConfig:
    """Timeouts and connection settings used when forwarding."""

    wait_timeout: float
    resp_header_timeout: Optional[float] = None
    connect_timeout: Optional[float] = None
    force_attempt_http2: bool = False
    max_idle_conns: int = 0
    idle_conn_timeout: Optional[float] = None
    tls_handshake_timeout: Optional[float] = None
    expect_continue_timeout: Optional[float] = None

    @classmethod
    def from_timeouts(cls, timeouts: Timeouts) -> ForwardingConfig:
        """Build the forwarding settings from the interceptor timeouts."""
        return cls(
            wait_timeout=timeouts.deployment_replicas,
            resp_header_timeout=timeouts.response_header,
            connect_timeout=timeouts.connect,
            force_attempt_http2=timeouts.force_http2,
            max_idle_conns=timeouts.max_idle_conns,
            idle_conn_timeout=timeouts.idle_conn_timeout,
            tls_handshake_timeout=timeouts.tls_handshake_timeout,
            expect_continue_timeout=timeouts.expect_continue_timeout,
        )


class ForwardingHandler:
    """Waits for the routed deployment to be ready, then proxies the request to it."""

    def __init__(
        self, logger: logging.Logger, wait_func: WaitFunc, config: ForwardingConfig
    ) -> None:
        self.logger = logger
        self.wait_func = wait_func
        self.config = config
        self.upstream = Upstream(
            connect_timeout=config.connect_timeout,
            response_header_timeout=config.resp_header_timeout,
        )

    def serve_http(self, writer: ResponseWriter, request: Request) -> None:
        """Forward the request, or answer 502 when the deployment never became ready."""
        httpso = request.httpso
        namespace = httpso.namespace if httpso is not None else ""
        deployment = httpso.spec.scale_target_ref.deployment if httpso is not None else ""
        try:
            replicas = self.wait_func(namespace, deployment, self.config.wait_timeout)
        except Exception as err:
            self.logger.error("wait function failed, not forwarding request", exc_info=err)
            writer.write_header(502)
            try:
                writer.write(f"error on backend ({err})".encode())
            except OSError:
                self.logger.exception("could not write error response to client")
            return
        writer.headers.add_header(COLD_START_HEADER, "true" if replicas == 0 else "false")
        self.upstream.serve_http(writer, request)