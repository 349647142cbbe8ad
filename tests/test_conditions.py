import logging
from datetime import datetime, timedelta

from kedahttp.conditions import add_condition, create_condition, save_status, set_message
from kedahttp.v1alpha1 import (
    ConditionReason,
    ConditionStatus,
    CreationStatus,
    HTTPScaledObject,
)

LOGGER = logging.getLogger("test_conditions")


class RecordingClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.updated = []

    def update_status(self, httpso):
        if self.fail:
            raise RuntimeError("update failed")
        self.updated.append(httpso)


def _parse(ts):
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def test_create_condition_fields_and_timestamp():
    before = datetime.now().astimezone() - timedelta(seconds=1)
    cond = create_condition(
        CreationStatus.CREATED, ConditionStatus.TRUE, ConditionReason.APP_SCALED_OBJECT_CREATED
    )
    after = datetime.now().astimezone() + timedelta(seconds=1)
    assert cond.type is CreationStatus.CREATED
    assert cond.status is ConditionStatus.TRUE
    assert cond.reason is ConditionReason.APP_SCALED_OBJECT_CREATED
    assert cond.message == ""
    stamp = _parse(cond.timestamp)
    assert stamp.tzinfo is not None
    assert before <= stamp <= after


def test_set_message_returns_same_condition():
    cond = create_condition(
        CreationStatus.PENDING, ConditionStatus.UNKNOWN, ConditionReason.PENDING_CREATION
    )
    result = set_message(cond, "Identified HTTPScaledObject creation signal")
    assert result is cond
    assert cond.message == "Identified HTTPScaledObject creation signal"


def test_add_condition_appends_in_order():
    httpso = HTTPScaledObject(name="app", namespace="ns")
    first = create_condition(
        CreationStatus.PENDING, ConditionStatus.UNKNOWN, ConditionReason.PENDING_CREATION
    )
    second = create_condition(
        CreationStatus.READY, ConditionStatus.TRUE, ConditionReason.HTTP_SCALED_OBJECT_IS_READY
    )
    assert add_condition(httpso, first) is httpso
    add_condition(httpso, second)
    assert httpso.status.conditions == [first, second]


def test_save_status_updates_through_client():
    client = RecordingClient()
    httpso = HTTPScaledObject(name="app", namespace="ns")
    save_status(LOGGER, client, httpso)
    assert client.updated == [httpso]


def test_save_status_logs_failure(caplog):
    client = RecordingClient(fail=True)
    httpso = HTTPScaledObject(name="app", namespace="ns")
    with caplog.at_level(logging.INFO, logger="test_conditions"):
        save_status(LOGGER, client, httpso)
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "failed to update status" in errors[0].getMessage()