"""Helpers for recording status conditions on HTTPScaledObjects."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Protocol

from kedahttp.v1alpha1 import (
    ConditionReason,
    ConditionStatus,
    CreationStatus,
    HTTPScaledObject,
    HTTPScaledObjectCondition,
)


class StatusClient(Protocol):
    def update_status(self, httpso: HTTPScaledObject) -> Any: ...


def _rfc3339(moment: datetime) -> str:
    text = moment.replace(microsecond=0).isoformat()
    if moment.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def save_status(logger: logging.Logger, client: StatusClient, httpso: HTTPScaledObject) -> None:
    """Persist the object's current status conditions; failures are logged."""
    logger.info(
        "Updating status on HTTPScaledObject (resource version %s)", httpso.resource_version
    )
    try:
        client.update_status(httpso)
    except Exception:
        logger.exception(
            "failed to update status on HTTPScaledObject %s", httpso.namespaced_name()
        )
    else:
        logger.info(
            "Updated status on HTTPScaledObject (resource version %s)", httpso.resource_version
        )


def add_condition(
    httpso: HTTPScaledObject, condition: HTTPScaledObjectCondition
) -> HTTPScaledObject:
    """Append a condition to the object's status and return the object."""
    httpso.status.conditions.append(condition)
    return httpso


def create_condition(
    cond_type: CreationStatus, status: ConditionStatus, reason: ConditionReason
) -> HTTPScaledObjectCondition:
    """Create a new condition stamped with the current local time."""
    return HTTPScaledObjectCondition(
        type=cond_type,
        status=status,
        reason=reason,
        timestamp=_rfc3339(datetime.now().astimezone()),
    )


def set_message(condition: HTTPScaledObjectCondition, message: str) -> HTTPScaledObjectCondition:
    """Set the condition's message and return the condition."""
    condition.message = message
    return condition