"""Adding and removing the HTTPScaledObject finalizer."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol

from kedahttp.v1alpha1 import HTTPScaledObject

HTTP_SCALED_OBJECT_FINALIZER = "httpscaledobject.http.keda.sh"


class UpdateClient(Protocol):
    def update(self, httpso: HTTPScaledObject) -> Any: ...


def contains(items: Iterable[str], value: str) -> bool:
    """Report whether value is among items."""
    return value in items


def remove(items: Iterable[str], value: str) -> list[str]:
    """Return items without any occurrence of value."""
    return [item for item in items if item != value]


def ensure_finalizer(logger: logging.Logger, client: UpdateClient, httpso: HTTPScaledObject) -> None:
    """Add the finalizer to the object and update it, if it is not there yet."""
    if contains(httpso.finalizers, HTTP_SCALED_OBJECT_FINALIZER):
        return
    logger.info("Adding Finalizer for the ScaledObject")
    httpso.finalizers = [*httpso.finalizers, HTTP_SCALED_OBJECT_FINALIZER]
    try:
        client.update(httpso)
    except Exception:
        logger.exception(
            "Failed to update HTTPScaledObject with a finalizer (finalizer %s)",
            HTTP_SCALED_OBJECT_FINALIZER,
        )
        raise


def finalize_scaled_object(
    logger: logging.Logger, client: UpdateClient, httpso: HTTPScaledObject
) -> None:
    """Remove the finalizer from the object and update it, if it is present."""
    if contains(httpso.finalizers, HTTP_SCALED_OBJECT_FINALIZER):
        httpso.finalizers = remove(httpso.finalizers, HTTP_SCALED_OBJECT_FINALIZER)
        try:
            client.update(httpso)
        except Exception:
            logger.exception(
                "Failed to update ScaledObject after removing a finalizer (finalizer %s)",
                HTTP_SCALED_OBJECT_FINALIZER,
            )
            raise
    logger.info("Successfully finalized HTTPScaledObject")