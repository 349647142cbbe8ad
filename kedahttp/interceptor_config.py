"""Interceptor configuration: serving settings, timeouts and their validation."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, TypeVar

from kedahttp.operator_config import ConfigError as _BaseConfigError

__all__ = [
    "Backoff",
    "ConfigError",
    "Serving",
    "Timeouts",
    "format_duration",
    "parse_duration",
    "parse_serving",
    "parse_timeouts",
    "validate",
]

_NS_PER_SECOND = 1_000_000_000
_NS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": _NS_PER_SECOND,
    "m": 60 * _NS_PER_SECOND,
    "h": 3600 * _NS_PER_SECOND,
}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")
_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})

T = TypeVar("T")


class ConfigError(_BaseConfigError):
    """Raised when the interceptor configuration is missing or invalid."""


def _duration_ns(text: str) -> int:
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ConfigError(f'time: invalid duration "{text}"')
    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None:
            raise ConfigError(f'time: invalid duration "{text}"')
        total += Decimal(match.group(1)) * _NS_PER_UNIT[match.group(2)]
        pos = match.end()
    nanoseconds = int(total)
    return -nanoseconds if negative else nanoseconds


def _seconds_to_ns(seconds: float) -> int:
    return round(seconds * _NS_PER_SECOND)


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "500ms" into seconds."""
    return _duration_ns(text) / _NS_PER_SECOND


def _fraction(value: int, unit: int) -> str:
    whole, part = divmod(value, unit)
    if not part:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{part:0{digits}d}".rstrip("0")


def format_duration(seconds: float) -> str:
    """Render seconds in the canonical duration form, e.g. "1m30s" or "250ms"."""
    nanoseconds = _seconds_to_ns(seconds)
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    value = abs(nanoseconds)
    if value < _NS_PER_SECOND:
        if value < 1_000:
            return f"{sign}{value}ns"
        if value < 1_000_000:
            return f"{sign}{_fraction(value, 1_000)}\u00b5s"
        return f"{sign}{_fraction(value, 1_000_000)}ms"
    hours, rem = divmod(value, 3600 * _NS_PER_SECOND)
    minutes, rem = divmod(rem, 60 * _NS_PER_SECOND)
    secs = f"{_fraction(rem, _NS_PER_SECOND)}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}"
    if minutes:
        return f"{sign}{minutes}m{secs}"
    return f"{sign}{secs}"


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff parameters for connection attempts."""

    duration: float
    factor: float
    jitter: float
    steps: int


@dataclass(frozen=True)
class Serving:
    """How the interceptor serves the proxy and admin servers."""

    current_namespace: str
    proxy_port: int
    admin_port: int
    watch_namespace: str = ""
    config_map_cache_rsync_period: float = 3600.0
    deployment_cache_poll_interval_ms: int = 250


@dataclass(frozen=True)
class Timeouts:
    """Connection and HTTP timeouts, in seconds."""

    connect: float = 0.5
    keep_alive: float = 1.0
    response_header: float = 0.5
    deployment_replicas: float = 1.5
    force_http2: bool = False
    max_idle_conns: int = 100
    idle_conn_timeout: float = 90.0
    tls_handshake_timeout: float = 10.0
    expect_continue_timeout: float = 1.0

    def backoff(self, factor: float, jitter: float, steps: int) -> Backoff:
        """Return a backoff starting from the connect timeout."""
        return Backoff(duration=self.connect, factor=factor, jitter=jitter, steps=steps)

    def default_backoff(self) -> Backoff:
        """Return the backoff with the standard factor, jitter and steps."""
        return self.backoff(2, 0.5, 5)


def _to_int(value: str) -> int:
    if value != value.strip():
        raise ValueError(f"invalid syntax: {value!r}")
    return int(value, 0)


def _to_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid syntax: {value!r}")


def _field(
    environ: Mapping[str, str],
    key: str,
    convert: Callable[[str], T],
    default: str = "",
    required: bool = False,
) -> Optional[T]:
    raw = environ.get(key)
    if raw is None:
        if default:
            raw = default
        elif required:
            raise ConfigError(f"required key {key} missing value")
        else:
            return None
    try:
        return convert(raw)
    except ValueError as exc:
        raise ConfigError(f"envconfig.Process: assigning {key}: converting {raw!r}: {exc}") from exc


def _env(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def parse_serving(environ: Optional[Mapping[str, str]] = None) -> Serving:
    """Read the serving configuration from the environment."""
    env = _env(environ)
    return Serving(
        current_namespace=_field(env, "KEDA_HTTP_CURRENT_NAMESPACE", str, required=True),
        watch_namespace=_field(env, "KEDA_HTTP_WATCH_NAMESPACE", str) or "",
        proxy_port=_field(env, "KEDA_HTTP_PROXY_PORT", _to_int, required=True),
        admin_port=_field(env, "KEDA_HTTP_ADMIN_PORT", _to_int, required=True),
        config_map_cache_rsync_period=_field(
            env, "KEDA_HTTP_SCALER_CONFIG_MAP_INFORMER_RSYNC_PERIOD", parse_duration, "60m"
        ),
        deployment_cache_poll_interval_ms=_field(
            env, "KEDA_HTTP_DEPLOYMENT_CACHE_POLLING_INTERVAL_MS", _to_int, "250"
        ),
    )


def parse_timeouts(environ: Optional[Mapping[str, str]] = None) -> Timeouts:
    """Read the timeout configuration from the environment."""
    env = _env(environ)
    return Timeouts(
        connect=_field(env, "KEDA_HTTP_CONNECT_TIMEOUT", parse_duration, "500ms"),
        keep_alive=_field(env, "KEDA_HTTP_KEEP_ALIVE", parse_duration, "1s"),
        response_header=_field(env, "KEDA_RESPONSE_HEADER_TIMEOUT", parse_duration, "500ms"),
        deployment_replicas=_field(env, "KEDA_CONDITION_WAIT_TIMEOUT", parse_duration, "1500ms"),
        force_http2=_field(env, "KEDA_HTTP_FORCE_HTTP2", _to_bool, "false"),
        max_idle_conns=_field(env, "KEDA_HTTP_MAX_IDLE_CONNS", _to_int, "100"),
        idle_conn_timeout=_field(env, "KEDA_HTTP_IDLE_CONN_TIMEOUT", parse_duration, "90s"),
        tls_handshake_timeout=_field(
            env, "KEDA_HTTP_TLS_HANDSHAKE_TIMEOUT", parse_duration, "10s"
        ),
        expect_continue_timeout=_field(
            env, "KEDA_HTTP_EXPECT_CONTINUE_TIMEOUT", parse_duration, "1s"
        ),
    )


def validate(serving: Serving, timeouts: Timeouts) -> None:
    """Raise ConfigError if the replicas timeout is shorter than the cache poll interval."""
    poll_ns = serving.deployment_cache_poll_interval_ms * 1_000_000
    if _seconds_to_ns(timeouts.deployment_replicas) < poll_ns:
        raise ConfigError(
            f"deployment replicas timeout ({format_duration(timeouts.deployment_replicas)}) "
            "should not be less than the Deployment Cache Poll Interval "
            f"({format_duration(poll_ns / _NS_PER_SECOND)})"
        )