import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import NAMESPACE, REQUESTS, TEMPLATES, request_object, template_object
from tollgate.janitor import run_expiry_sweep


@pytest.fixture
def seeded(custom_api):
    custom_api.add(TEMPLATES, template_object())
    custom_api.add(REQUESTS, request_object(name="fresh"))
    old = request_object(name="stale")
    old["metadata"]["creationTimestamp"] = "2026-10-17T10:00:00Z"
    custom_api.add(REQUESTS, old)
    custom_api.add(REQUESTS, request_object(name="orphan", template="gone"))
    return custom_api


def test_sweep_reconciles_everything(engine, adapter, seeded):
    result = run_expiry_sweep(engine, adapter, NAMESPACE)

    assert result == {"status": "partial_failure", "reconciled": 3, "deleted": 1, "errors": 1}
    assert (REQUESTS, NAMESPACE, "stale") in seeded.deleted
    assert (REQUESTS, NAMESPACE, "fresh") in seeded.objects


def test_sweep_all_namespaces(engine, adapter, custom_api, core_api):
    core_api.add_pod("web-0", namespace="team-b")
    custom_api.add(TEMPLATES, template_object(namespace="team-b"))
    custom_api.add(REQUESTS, request_object(namespace="team-b"))

    result = run_expiry_sweep(engine, adapter)

    assert result["status"] == "success"
    assert result["reconciled"] == 1


def test_dry_run_changes_nothing(engine, adapter, seeded):
    result = run_expiry_sweep(engine, adapter, NAMESPACE, dry_run=True)

    assert result == {"status": "partial_failure", "reconciled": 0, "deleted": 1, "errors": 1}
    assert not seeded.deleted
    assert seeded.status_writes == 0


def test_list_failure_is_counted(engine, adapter, custom_api):
    custom_api.fail_with = 403

    result = run_expiry_sweep(engine, adapter, NAMESPACE)

    assert result["status"] == "partial_failure"
    assert result["errors"] == 1
