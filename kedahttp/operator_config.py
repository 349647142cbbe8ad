"""Operator configuration read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_BASE_PREFIX = "KEDA_HTTP_OPERATOR"


class ConfigError(ValueError):
    """Raised when configuration is missing or malformed."""


@dataclass(frozen=True)
class Interceptor:
    """Static configuration of the interceptor."""

    service_name: str
    proxy_port: int
    admin_port: int

    def admin_port_string(self) -> str:
        """Return the admin port as a string."""
        return str(self.admin_port)


@dataclass(frozen=True)
class ExternalScaler:
    """Static configuration of the external scaler."""

    service_name: str
    port: int

    def host_name(self, namespace: str) -> str:
        """Return "service.namespace:port" for the scaler."""
        return f"{self.service_name}.{namespace}:{self.port}"


@dataclass(frozen=True)
class Base:
    """Base operator configuration."""

    target_pending_requests: int = 100
    current_namespace: str = ""
    watch_namespace: str = ""


def _env(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def _parse_int32(key: str, value: str) -> int:
    try:
        number = int(value.strip(), 0)
    except ValueError as exc:
        raise ConfigError(f"envconfig.Process: assigning {key}: invalid value {value!r}") from exc
    if not _INT32_MIN <= number <= _INT32_MAX:
        raise ConfigError(f"envconfig.Process: assigning {key}: value {value!r} out of range")
    return number


def _lookup(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(f"{_BASE_PREFIX}_{name}")
    if value is None:
        value = environ.get(name)
    return value


def base_from_env(environ: Optional[Mapping[str, str]] = None) -> Base:
    """Read the base configuration, with KEDA_HTTP_OPERATOR_ prefixed keys taking priority."""
    env = _env(environ)
    target = _lookup(env, "TARGET_PENDING_REQUESTS")
    return Base(
        target_pending_requests=(
            _parse_int32(f"{_BASE_PREFIX}_TARGET_PENDING_REQUESTS", target)
            if target is not None
            else Base.target_pending_requests
        ),
        current_namespace=_lookup(env, "NAMESPACE") or "",
        watch_namespace=_lookup(env, "WATCH_NAMESPACE") or "",
    )


def _int32_or(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None:
        return default
    try:
        return _parse_int32(name, value)
    except ConfigError:
        return default


def interceptor_from_env(environ: Optional[Mapping[str, str]] = None) -> Interceptor:
    """Read the interceptor configuration; the service name is required."""
    env = _env(environ)
    service_name = env.get("KEDAHTTP_INTERCEPTOR_SERVICE")
    if service_name is None:
        raise ConfigError("missing 'KEDAHTTP_INTERCEPTOR_SERVICE'")
    return Interceptor(
        service_name=service_name,
        admin_port=_int32_or(env, "KEDAHTTP_INTERCEPTOR_ADMIN_PORT", 8090),
        proxy_port=_int32_or(env, "KEDAHTTP_INTERCEPTOR_PROXY_PORT", 8091),
    )


def external_scaler_from_env(environ: Optional[Mapping[str, str]] = None) -> ExternalScaler:
    """Read the external scaler configuration; the service name is required."""
    env = _env(environ)
    service_name = env.get("KEDAHTTP_OPERATOR_EXTERNAL_SCALER_SERVICE")
    if service_name is None:
        raise ConfigError("missing KEDAHTTP_EXTERNAL_SCALER_SERVICE")
    return ExternalScaler(
        service_name=service_name,
        port=_int32_or(env, "KEDAHTTP_OPERATOR_EXTERNAL_SCALER_PORT", 8091),
    )