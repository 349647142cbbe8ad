"""Interceptor handlers, middleware, configuration and HTTPScaledObject types for scaling HTTP applications to and from zero."""

__version__ = "0.1.0"