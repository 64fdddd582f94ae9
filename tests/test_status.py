"""
Unit tests for status synchronization and the expiration guard.
"""
import os
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import NAMESPACE, NOW, REQUESTS, condition_map, request_object
from tollgate.core.errors import KubeNotFoundError, StatusConflictError
from tollgate.core.expiration import ExpirationGuard, is_past_deadline
from tollgate.core.status import StatusSynchronizer
from tollgate.models.request import AccessRequest, ConditionType, RequestKind

KIND = RequestKind.EXEC_ACCESS
NAME = "alice-x7k2p"


@pytest.fixture
def status(adapter, clock):
    return StatusSynchronizer(adapter, clock=clock)


@pytest.fixture
def guard(adapter, status, clock):
    return ExpirationGuard(adapter, status, clock=clock)


def _fresh(status):
    request = AccessRequest(kind=KIND, name=NAME, namespace=NAMESPACE, template_name="")
    return status.refetch(request)


class TestStatusSynchronizer:

    def test_refetch_fills_copy(self, status, custom_api):
        custom_api.add(REQUESTS, request_object(duration="1h"))

        request = _fresh(status)

        assert request.template_name == "web-shell"
        assert request.duration == "1h"
        assert request.creation_timestamp == NOW
        assert request.resource_version == custom_api.stored(REQUESTS, NAMESPACE, NAME)["metadata"]["resourceVersion"]

    def test_refetch_missing(self, status):
        with pytest.raises(KubeNotFoundError):
            _fresh(status)

    def test_consecutive_writes_adopt_new_version(self, status, custom_api):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(status)

        status.set_durations_valid(request, "Defaulted", "first")
        status.set_access_still_valid(request, "second")

        assert custom_api.status_writes == 2
        conds = condition_map(custom_api.stored(REQUESTS, NAMESPACE, NAME))
        assert conds["DurationsValid"]["message"] == "first"
        assert conds["AccessStillValid"]["reason"] == "WithinWindow"

    def test_stale_write_is_rejected_and_stored_status_kept(self, status, custom_api):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(status)
        custom_api.touch(REQUESTS, NAMESPACE, NAME)

        with pytest.raises(StatusConflictError):
            status.set_durations_valid(request, "Defaulted", "m")

        assert custom_api.status_writes == 0
        assert "status" not in custom_api.stored(REQUESTS, NAMESPACE, NAME)

    def test_unchanged_condition_keeps_transition_time(self, status, custom_api, clock):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(status)
        status.set_access_still_valid(request, "30m remaining")
        clock.advance(minutes=10)
        status.set_access_still_valid(request, "20m remaining")

        cond = condition_map(custom_api.stored(REQUESTS, NAMESPACE, NAME))["AccessStillValid"]
        assert cond["message"] == "20m remaining"
        assert cond["lastTransitionTime"] == "2026-10-17T12:00:00Z"


class TestExpirationGuard:

    def test_deadline_is_strict(self):
        request = AccessRequest(kind=KIND, name=NAME, namespace=NAMESPACE, template_name="", creation_timestamp=NOW)
        window = timedelta(minutes=30)
        assert not is_past_deadline(request, window, NOW + window)
        assert is_past_deadline(request, window, NOW + window + timedelta(seconds=1))

    def test_within_window_reports_remaining(self, guard, custom_api, clock):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(guard.status)
        clock.advance(minutes=10)

        assert guard.verify_still_valid(request, timedelta(minutes=30)) is True

        cond = condition_map(custom_api.stored(REQUESTS, NAMESPACE, NAME))["AccessStillValid"]
        assert cond["status"] == "True"
        assert "20m remaining" in cond["message"]

    def test_expired_is_marked_then_deleted(self, guard, custom_api, clock):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(guard.status)
        clock.advance(minutes=31)

        assert guard.verify_still_valid(request, timedelta(minutes=30)) is False

        snapshot = custom_api.deleted[(REQUESTS, NAMESPACE, NAME)]
        cond = condition_map(snapshot)["AccessStillValid"]
        assert cond["status"] == "False"
        assert "2026-10-17T12:30:00Z" in cond["message"]

    def test_missing_condition_is_not_expiry(self, guard, custom_api):
        custom_api.add(REQUESTS, request_object())
        assert guard.is_access_expired(_fresh(guard.status)) is False
        assert not custom_api.deleted

    def test_true_condition_is_not_expiry(self, guard, custom_api):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(guard.status)
        guard.status.set_access_still_valid(request, "ok")
        assert guard.is_access_expired(request) is False

    def test_false_condition_deletes(self, guard, custom_api):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(guard.status)
        guard.status.set_access_not_valid(request, "gone")

        assert guard.is_access_expired(request) is True
        assert (REQUESTS, NAMESPACE, NAME) in custom_api.deleted
        assert request.status.is_condition_false(ConditionType.ACCESS_STILL_VALID)

    def test_already_deleted_is_fine(self, guard, custom_api):
        custom_api.add(REQUESTS, request_object())
        request = _fresh(guard.status)
        guard.status.set_access_not_valid(request, "gone")
        del custom_api.objects[(REQUESTS, NAMESPACE, NAME)]

        assert guard.is_access_expired(request) is True
