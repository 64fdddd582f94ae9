"""
Shared fixtures: in-memory stand-ins for the Kubernetes API objects the
adapter wraps. They enforce the parts of API-server behaviour the engine
relies on: 404/409 responses, resourceVersion checks on status writes,
generateName, and label-selector filtering.
"""
import copy
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

# Add repo root to import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tollgate.adapters.kube import KubeAdapter
from tollgate.adapters.target_selector import PodTargetSelector
from tollgate.core.engine import ReconciliationEngine
from tollgate.models.request import RequestKind, format_timestamp

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)
NAMESPACE = "team-a"
REQUESTS = RequestKind.EXEC_ACCESS.plural
TEMPLATES = RequestKind.EXEC_ACCESS.template_plural


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeCustomObjectsApi:
    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.objects = {}
        self.deleted = {}
        self.status_writes = 0
        self.fail_with = None
        self._rv = 100
        self._serial = 0

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise ApiException(status=self.fail_with, reason="Injected")

    def add(self, plural: str, obj: dict) -> dict:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        self._serial += 1
        meta.setdefault("uid", f"uid-{self._serial}")
        meta.setdefault("creationTimestamp", format_timestamp(self.clock()))
        meta["resourceVersion"] = self._next_rv()
        self.objects[(plural, meta["namespace"], meta["name"])] = obj
        return copy.deepcopy(obj)

    def stored(self, plural: str, namespace: str, name: str) -> dict:
        return self.objects[(plural, namespace, name)]

    def touch(self, plural: str, namespace: str, name: str) -> None:
        """Simulates a concurrent writer bumping the object's version."""
        self.objects[(plural, namespace, name)]["metadata"]["resourceVersion"] = self._next_rv()

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        self._maybe_fail()
        key = (plural, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.objects[key])

    def list_namespaced_custom_object(self, group, version, namespace, plural):
        self._maybe_fail()
        items = [copy.deepcopy(o) for (p, ns, _), o in sorted(self.objects.items()) if p == plural and ns == namespace]
        return {"items": items}

    def list_cluster_custom_object(self, group, version, plural):
        self._maybe_fail()
        items = [copy.deepcopy(o) for (p, _, _), o in sorted(self.objects.items()) if p == plural]
        return {"items": items}

    def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        self._maybe_fail()
        body = copy.deepcopy(body)
        meta = body.setdefault("metadata", {})
        if not meta.get("name"):
            meta["name"] = f"{meta['generateName']}x{self._serial + 1:04d}"
        meta["namespace"] = namespace
        if (plural, namespace, meta["name"]) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        return self.add(plural, body)

    def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body):
        self._maybe_fail()
        key = (plural, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        stored = self.objects[key]
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        stored["status"] = copy.deepcopy(body.get("status", {}))
        stored["metadata"]["resourceVersion"] = self._next_rv()
        self.status_writes += 1
        return copy.deepcopy(stored)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        self._maybe_fail()
        key = (plural, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        self.deleted[key] = self.objects.pop(key)


class FakeRbacApi:
    def __init__(self):
        self.roles = {}
        self.bindings = {}
        self.create_calls = 0
        self.replace_calls = 0

    def create_namespaced_role(self, namespace, body):
        self.create_calls += 1
        key = (namespace, body.metadata.name)
        if key in self.roles:
            raise ApiException(status=409, reason="AlreadyExists")
        self.roles[key] = body
        return body

    def read_namespaced_role(self, name, namespace):
        if (namespace, name) not in self.roles:
            raise ApiException(status=404, reason="Not Found")
        return self.roles[(namespace, name)]

    def replace_namespaced_role(self, name, namespace, body):
        if (namespace, name) not in self.roles:
            raise ApiException(status=404, reason="Not Found")
        self.replace_calls += 1
        self.roles[(namespace, name)] = body
        return body

    def create_namespaced_role_binding(self, namespace, body):
        self.create_calls += 1
        key = (namespace, body.metadata.name)
        if key in self.bindings:
            raise ApiException(status=409, reason="AlreadyExists")
        self.bindings[key] = body
        return body

    def read_namespaced_role_binding(self, name, namespace):
        if (namespace, name) not in self.bindings:
            raise ApiException(status=404, reason="Not Found")
        return self.bindings[(namespace, name)]


class FakeCoreApi:
    def __init__(self):
        self.pods = {}

    def add_pod(self, name, labels=None, phase="Running", terminating=False, namespace=NAMESPACE):
        self.pods[(namespace, name)] = client.V1Pod(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels if labels is not None else {"app": "web"},
                deletion_timestamp=NOW if terminating else None,
            ),
            status=client.V1PodStatus(phase=phase),
        )

    def read_namespaced_pod(self, name, namespace):
        if (namespace, name) not in self.pods:
            raise ApiException(status=404, reason="Not Found")
        return self.pods[(namespace, name)]

    def list_namespaced_pod(self, namespace, label_selector=""):
        wanted = dict(part.split("=", 1) for part in label_selector.split(",") if part)
        items = [
            pod for (ns, _), pod in sorted(self.pods.items())
            if ns == namespace and all((pod.metadata.labels or {}).get(k) == v for k, v in wanted.items())
        ]
        return SimpleNamespace(items=items)


def template_object(
    name="web-shell",
    namespace=NAMESPACE,
    default="30m",
    maximum="2h",
    groups=("sre-oncall",),
    users=(),
    labels=None,
    command=None,
):
    access = {
        "allowedGroups": list(groups),
        "allowedUsers": list(users),
        "defaultDuration": default,
        "maxDuration": maximum,
    }
    if command is not None:
        access["accessCommand"] = command
    return {
        "apiVersion": "access.tollgate.io/v1alpha1",
        "kind": "ExecAccessTemplate",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "accessConfig": access,
            "targetSelector": {"matchLabels": labels if labels is not None else {"app": "web"}},
        },
    }


def request_object(name="alice-x7k2p", namespace=NAMESPACE, template="web-shell", duration="", target_pod="", status=None):
    spec = {"templateName": template}
    if duration:
        spec["duration"] = duration
    if target_pod:
        spec["targetPod"] = target_pod
    obj = {
        "apiVersion": "access.tollgate.io/v1alpha1",
        "kind": "ExecAccessRequest",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }
    if status is not None:
        obj["status"] = status
    return obj


def condition_map(obj: dict) -> dict:
    return {c["type"]: c for c in obj.get("status", {}).get("conditions", [])}


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def custom_api(clock):
    return FakeCustomObjectsApi(clock)


@pytest.fixture
def rbac_api():
    return FakeRbacApi()


@pytest.fixture
def core_api():
    core = FakeCoreApi()
    core.add_pod("web-0")
    return core


@pytest.fixture
def adapter(custom_api, rbac_api, core_api):
    return KubeAdapter(custom_api=custom_api, rbac_api=rbac_api, core_api=core_api)


@pytest.fixture
def selector(adapter):
    return PodTargetSelector(adapter, rng=random.Random(7))


@pytest.fixture
def engine(adapter, selector, clock):
    return ReconciliationEngine(adapter, selector=selector, clock=clock)
