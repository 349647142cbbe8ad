import logging
import queue
import socket
import threading
import time
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

import pytest

from kedahttp.forwarding import (
    Deployment,
    ForwardingConfig,
    ForwardingHandler,
    WaitError,
    deployment_can_serve,
    new_deploy_replicas_wait_func,
)
from kedahttp.handlers import Request, ResponseRecorder
from kedahttp.interceptor_config import Timeouts
from kedahttp.middleware import Routing
from kedahttp.v1alpha1 import HTTPScaledObject, HTTPScaledObjectSpec, ScaleTargetRef

LOGGER = logging.getLogger("kedahttp-test.forwarding")
NS = "testNS"
DEPLOY = "TestForwardingHandlerDeploy"


class FakeWatcher:
    def __init__(self):
        self.events = queue.Queue()
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeDeploymentCache:
    def __init__(self):
        self.deployments = {}
        self.watchers = {}

    def add(self, deployment):
        self.deployments[(deployment.namespace, deployment.name)] = deployment

    def watch(self, namespace, name):
        return self.watchers.setdefault((namespace, name), FakeWatcher())

    def get(self, namespace, name):
        return self.deployments[(namespace, name)]


class FakeTable:
    def __init__(self):
        self.memory = {}

    def route(self, request):
        return self.memory.get(request.host)


@contextmanager
def origin(respond):
    seen = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            seen.append(self.path)
            respond(self)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", seen
    finally:
        server.shutdown()
        server.server_close()


def reply(code, body=b""):
    def respond(handler):
        handler.send_response(code)
        handler.end_headers()
        handler.wfile.write(body)

    return respond


def target_from_url(url, deployment):
    parts = urlsplit(url)
    return HTTPScaledObject(
        namespace="@" + parts.hostname,
        spec=HTTPScaledObjectSpec(
            scale_target_ref=ScaleTargetRef(
                deployment=deployment, service=":" + parts.hostname, port=parts.port
            ),
            target_pending_requests=123,
        ),
    )


def config(wait_timeout=1.0, resp_header_timeout=0.5):
    return ForwardingConfig(
        wait_timeout=wait_timeout, resp_header_timeout=resp_header_timeout, connect_timeout=0.1
    )


def closed_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_deployment_can_serve():
    assert deployment_can_serve(Deployment(ready_replicas=1)) is True
    assert deployment_can_serve(Deployment(ready_replicas=0)) is False


def test_wait_func_one_replica():
    cache = FakeDeploymentCache()
    cache.add(Deployment(NS, DEPLOY, replicas=1, ready_replicas=1))
    wait = new_deploy_replicas_wait_func(LOGGER, cache)
    assert wait(NS, DEPLOY, 1.0) == 1
    assert cache.watchers[(NS, DEPLOY)].stopped is True


def test_wait_func_no_replicas_times_out():
    cache = FakeDeploymentCache()
    cache.add(Deployment(NS, DEPLOY, replicas=1, ready_replicas=0))
    wait = new_deploy_replicas_wait_func(LOGGER, cache)
    with pytest.raises(WaitError, match="context marked done"):
        wait(NS, DEPLOY, 0.2)


def test_wait_func_missing_deployment():
    wait = new_deploy_replicas_wait_func(LOGGER, FakeDeploymentCache())
    with pytest.raises(WaitError, match=f"error getting state for deployment {NS}/{DEPLOY}"):
        wait(NS, DEPLOY, 0.2)


def test_wait_func_waits_until_replicas():
    cache = FakeDeploymentCache()
    cache.add(Deployment(NS, DEPLOY, replicas=0, ready_replicas=0))
    watcher = cache.watch(NS, DEPLOY)
    wait = new_deploy_replicas_wait_func(LOGGER, cache)

    def modify():
        time.sleep(0.1)
        watcher.events.put("not a deployment")
        watcher.events.put(Deployment(NS, DEPLOY, replicas=1, ready_replicas=1))

    thread = threading.Thread(target=modify)
    thread.start()
    start = time.monotonic()
    assert wait(NS, DEPLOY, 1.0) == 0
    assert time.monotonic() - start >= 0.1
    thread.join()


def test_forwarding_config_from_timeouts():
    cfg = ForwardingConfig.from_timeouts(Timeouts())
    assert cfg.wait_timeout == 1.5
    assert cfg.resp_header_timeout == 0.5
    assert cfg.connect_timeout == 0.5
    assert cfg.max_idle_conns == 100
    assert cfg.idle_conn_timeout == 90.0
    assert cfg.force_attempt_http2 is False


def test_immediately_successful_proxy():
    with origin(reply(200, b"test response")) as (url, seen):
        handler = ForwardingHandler(LOGGER, lambda ns, name, timeout: 1, config())
        request = Request(path="/testfwd", host="proxy.testing", httpso=target_from_url(url, "testdepl"), stream=url)
        recorder = ResponseRecorder()
        handler.serve_http(recorder, request)
    assert recorder.headers.get("X-KEDA-HTTP-Cold-Start") == "false"
    assert recorder.code == 200
    assert recorder.text == "test response"
    assert seen == ["/testfwd"]


def test_cold_start_header_true_when_no_replicas_initially():
    with origin(reply(200, b"ok")) as (url, _seen):
        handler = ForwardingHandler(LOGGER, lambda ns, name, timeout: 0, config())
        recorder = ResponseRecorder()
        handler.serve_http(recorder, Request(path="/", httpso=target_from_url(url, "d"), stream=url))
    assert recorder.headers.get("X-KEDA-HTTP-Cold-Start") == "true"
    assert recorder.code == 200


def test_wait_failed_connection():
    handler = ForwardingHandler(LOGGER, lambda ns, name, timeout: 1, config())
    httpso = HTTPScaledObject(
        namespace="testns",
        spec=HTTPScaledObjectSpec(
            scale_target_ref=ScaleTargetRef(deployment="nosuchdepl", service="nosuchdepl", port=8081),
            target_pending_requests=1234,
        ),
    )
    request = Request(path="/testfwd", host="TestWaitFailedConnection.testing", httpso=httpso,
                      stream=f"http://127.0.0.1:{closed_port()}")
    recorder = ResponseRecorder()
    handler.serve_http(recorder, request)
    assert recorder.headers.get("X-KEDA-HTTP-Cold-Start") == "false"
    assert recorder.code == 502


def test_times_out_on_wait_func():
    called = threading.Event()
    finish = threading.Event()

    def wait_func(ns, name, timeout):
        called.set()
        if not finish.wait(timeout):
            raise WaitError("TEST FUNCTION CONTEXT ERROR: context deadline exceeded")
        return 0

    handler = ForwardingHandler(LOGGER, wait_func, config(wait_timeout=0.025, resp_header_timeout=0.025))
    httpso = HTTPScaledObject(
        namespace="testns",
        spec=HTTPScaledObjectSpec(scale_target_ref=ScaleTargetRef("nosuchdepl", "nosuchsvc", 9091)),
    )
    recorder = ResponseRecorder()
    start = time.monotonic()
    handler.serve_http(recorder, Request(path="/testfwd", httpso=httpso, stream="http://1.1.1.1"))
    elapsed = time.monotonic() - start
    assert elapsed >= 0.025
    assert elapsed <= 1.0
    assert recorder.code == 502
    assert recorder.text.startswith("error on backend (TEST FUNCTION CONTEXT ERROR")
    assert recorder.headers.get("X-KEDA-HTTP-Cold-Start") is None
    assert called.is_set()


def test_waits_for_wait_func():
    def wait_func(ns, name, timeout):
        time.sleep(0.1)
        return 0

    with origin(reply(201)) as (url, _seen):
        handler = ForwardingHandler(LOGGER, wait_func, config())
        recorder = ResponseRecorder()
        start = time.monotonic()
        handler.serve_http(recorder, Request(path="/testfwd", httpso=target_from_url(url, "nosuchdepl"), stream=url))
        elapsed = time.monotonic() - start
    assert elapsed >= 0.1
    assert elapsed < 0.4 + 1.0
    assert recorder.code == 201


def test_wait_header_timeout():
    release = threading.Event()

    def respond(handler):
        release.wait(5)
        reply(200, b"test response")(handler)

    with origin(respond) as (url, _seen):
        handler = ForwardingHandler(LOGGER, lambda ns, name, timeout: 1, config())
        recorder = ResponseRecorder()
        httpso = HTTPScaledObject(
            namespace="testns",
            spec=HTTPScaledObjectSpec(scale_target_ref=ScaleTargetRef("nosuchdepl", "testsvc", 9094)),
        )
        try:
            handler.serve_http(recorder, Request(path="/testfwd", httpso=httpso, stream=url))
        finally:
            release.set()
    assert recorder.headers.get("X-KEDA-HTTP-Cold-Start") == "false"
    assert recorder.code == 502


def test_routing_and_forwarding_happy_path():
    cache = FakeDeploymentCache()
    with origin(reply(200, b"hello!")) as (url, _seen):
        target = target_from_url(url, "testdeployment")
        cache.add(Deployment(target.namespace, "testdeployment", replicas=3, ready_replicas=3))
        table = FakeTable()
        table.memory["happy.integrationtest"] = target
        forwarder = ForwardingHandler(LOGGER, new_deploy_replicas_wait_func(LOGGER, cache), config(wait_timeout=0.2))
        recorder = ResponseRecorder()
        Routing(table, None, forwarder).serve_http(recorder, Request(path="/", host="happy.integrationtest"))
    assert recorder.code == 200
    assert recorder.text == "hello!"


def test_routing_and_forwarding_no_replicas():
    cache = FakeDeploymentCache()
    target = HTTPScaledObject(
        namespace="ns", spec=HTTPScaledObjectSpec(scale_target_ref=ScaleTargetRef("testdeployment", "svc", 80))
    )
    cache.add(Deployment("ns", "testdeployment", replicas=0, ready_replicas=0))
    table = FakeTable()
    table.memory["cold.integrationtest"] = target
    forwarder = ForwardingHandler(LOGGER, new_deploy_replicas_wait_func(LOGGER, cache), config(wait_timeout=0.1))
    recorder = ResponseRecorder()
    start = time.monotonic()
    Routing(table, None, forwarder).serve_http(recorder, Request(path="/", host="cold.integrationtest"))
    assert time.monotonic() - start >= 0.1
    assert recorder.code == 502
    assert recorder.text.startswith("error on backend")