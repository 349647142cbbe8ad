# kedahttp

Building blocks for an HTTP interceptor that sits in front of applications
that scale to zero. The pieces hold an incoming request until the target
deployment has a ready replica, count the requests in flight for each
target, and forward them to the backend service named by an
`HTTPScaledObject`.

The package uses only the standard library.

## Modules

- `kedahttp.v1alpha1`: the `HTTPScaledObject` resource with its spec
  (`ScaleTargetRef`, `ReplicaStruct`, `HTTPScaledObjectSpec`), its status
  (`HTTPScaledObjectStatus`, `HTTPScaledObjectCondition`) and the enums
  `CreationStatus`, `ConditionReason` and `ConditionStatus`.
  `HTTPScaledObject.to_dict` and `HTTPScaledObject.from_dict` convert to and
  from the resource's JSON form; `namespaced_name()` gives `"namespace/name"`.
  `resource(name)` qualifies a resource name with the `http.keda.sh` group
  (`GroupVersion`, `GroupResource`).
- `kedahttp.conditions`: `create_condition` (stamped with the current time in
  RFC 3339 form), `set_message`, `add_condition`, and `save_status`, which
  calls `update_status(httpso)` on the client you pass and logs any failure.
- `kedahttp.finalizer`: `ensure_finalizer` and `finalize_scaled_object` add or
  remove the `httpscaledobject.http.keda.sh` finalizer and call
  `update(httpso)` on the client you pass, re-raising its errors;
  `contains` and `remove` are the list helpers they use.
- `kedahttp.operator_config`: `Base`, `Interceptor` and `ExternalScaler`
  settings read from an environment mapping by `base_from_env`,
  `interceptor_from_env` and `external_scaler_from_env`; missing required
  values raise `ConfigError`. `ExternalScaler.host_name(namespace)` returns
  `"service.namespace:port"`.
- `kedahttp.interceptor_config`: `Serving` and `Timeouts` read by
  `parse_serving` and `parse_timeouts`, `validate` (the replicas wait timeout
  must not be shorter than the deployment cache poll interval),
  `parse_duration` / `format_duration` for durations such as `"1h30m"` or
  `"500ms"`, and `Backoff` from `Timeouts.backoff` and
  `Timeouts.default_backoff`.
- `kedahttp.handlers`: a `Request` and an in-memory `ResponseRecorder`, and
  the handlers `Probe` (200 or 503 from periodic health checks),
  `Static` (a fixed status code with its text, see `status_text`) and
  `Upstream` (reverse-proxies the request to its `stream` URL, answering
  500 when there is none and 502 when the backend cannot be reached).
- `kedahttp.middleware`: `Routing` (looks the request up in a routing table,
  sends Kubernetes probes to the probe handler and unknown hosts to a 404),
  `Counting` (resizes a queue counter by +1 and -1 around each request),
  `Logging` (one combined-log-format line per request, see
  `format_combined_log`) and `LoggingResponseWriter`.
- `kedahttp.forwarding`: `new_deploy_replicas_wait_func`, which waits on a
  deployment cache until a `Deployment` has a ready replica or raises
  `WaitError`, and `ForwardingHandler`, which runs that wait with the
  `ForwardingConfig` timeout, sets `X-KEDA-HTTP-Cold-Start`, and forwards the
  request upstream, or answers 502 if the wait failed.

Every handler and middleware has a `serve_http(writer, request)` method, so
they nest:

```python
import logging
from kedahttp.forwarding import ForwardingConfig, ForwardingHandler
from kedahttp.middleware import Counting, Logging, Routing

logger = logging.getLogger("interceptor")
forward = ForwardingHandler(logger, wait_func, ForwardingConfig(wait_timeout=1.5))
root = Logging(logger, Routing(routing_table, probe, Counting(counter, forward)))
```

Here `wait_func`, `routing_table` (with `route(request)`), `probe` and
`counter` (with `resize(key, delta)`) are supplied by you.

## Configuration example

```python
from kedahttp.operator_config import ExternalScaler
from kedahttp.interceptor_config import format_duration, parse_duration

scaler = ExternalScaler(service_name="scaler", port=9090)
print(scaler.host_name("keda"))                    # scaler.keda:9090
print(format_duration(parse_duration("1500ms")))   # 1.5s
```

Settings are read from any mapping of environment variables (the process
environment when none is given):

```python
from kedahttp.interceptor_config import parse_serving, parse_timeouts, validate

env = {
    "KEDA_HTTP_CURRENT_NAMESPACE": "keda",
    "KEDA_HTTP_PROXY_PORT": "8080",
    "KEDA_HTTP_ADMIN_PORT": "9090",
}
serving = parse_serving(env)
timeouts = parse_timeouts(env)
validate(serving, timeouts)
```

## What the package does not do

- It has no command and starts no server: it does not listen on a port, so
  wiring the handlers to a socket or a WSGI/ASGI server is up to you.
- It has no routing table, queue counter or deployment cache of its own, and
  no admin endpoint that reports queue sizes; these are passed in as objects
  with the methods named above.
- It does not talk to a Kubernetes API server. The status and finalizer
  helpers call whatever client object you give them, and no controller
  reconciles `HTTPScaledObject` resources or creates KEDA `ScaledObject`s.

## Running the tests

```
pip install -e .[test]
pytest
```