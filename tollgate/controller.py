"""
kopf wiring for the reconciliation engine.

Run with `tollgate-operator` (or `kopf run -m tollgate.controller`).
Handlers are registered for every RequestKind at import time, using the
config from $TOLLGATE_CONFIG and TOLLGATE_* variables.
"""
import argparse
import logging
import threading
from typing import Dict, Optional, Tuple

import kopf

from tollgate.adapters.kube import KubeAdapter, load_kube_config
from tollgate.config import OperatorConfig, load_config
from tollgate.core.engine import VERSION, ReconcileResult, ReconciliationEngine
from tollgate.models.request import RequestKind

logger = logging.getLogger("tollgate.controller")

CONFIG: OperatorConfig = load_config()

_ObjectKey = Tuple[str, str, str]


class PassSerializer:
    """
    At most one pass per request at a time.

    kopf already serializes change handlers per object, but timers run next
    to them. Event passes wait their turn; a timer tick that finds a pass in
    flight is coalesced into it and skipped.
    """
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[_ObjectKey, threading.Lock] = {}

    def _lock_for(self, key: _ObjectKey) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def run(self, key: _ObjectKey, fn, wait: bool = True):
        lock = self._lock_for(key)
        if not lock.acquire(blocking=wait):
            logger.debug(f"[{key[1]}/{key[2]}] Pass already in flight, coalescing tick")
            return None
        try:
            return fn()
        finally:
            lock.release()

    def forget(self, key: _ObjectKey) -> None:
        with self._guard:
            self._locks.pop(key, None)


_serializer = PassSerializer()
_engine: Optional[ReconciliationEngine] = None


def get_engine() -> ReconciliationEngine:
    global _engine
    if _engine is None:
        load_kube_config(CONFIG.kubeconfig)
        adapter = KubeAdapter(api_group=CONFIG.api_group, api_version=CONFIG.api_version)
        _engine = ReconciliationEngine(
            adapter,
            requeue_after=CONFIG.requeue_interval_seconds,
            audit_dir=CONFIG.audit_dir,
        )
    return _engine


def _run_pass(kind: RequestKind, name: str, namespace: str, wait: bool) -> Optional[ReconcileResult]:
    key = (kind.value, namespace, name)
    result = _serializer.run(key, lambda: get_engine().reconcile(kind, name, namespace), wait=wait)
    if result is not None and result.deleted:
        # The request is gone; its lock would otherwise outlive it.
        _serializer.forget(key)
    return result


def reconcile_on_event(kind: RequestKind, name: str, namespace: str) -> Optional[ReconcileResult]:
    """
    Event-driven pass. A failed pass is handed back to kopf as a temporary
    error so it is retried after the requeue interval.
    """
    result = _run_pass(kind, name, namespace, wait=True)
    if result is not None and result.error and not result.deleted:
        raise kopf.TemporaryError(result.error, delay=CONFIG.requeue_interval_seconds)
    return result


def reconcile_on_timer(kind: RequestKind, name: str, namespace: str) -> Optional[ReconcileResult]:
    """
    Time-driven pass. Failures are already recorded as conditions and the
    next tick retries, so nothing is raised here.
    """
    return _run_pass(kind, name, namespace, wait=False)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    # Keep kopf's bookkeeping out of .status, which belongs to the engine.
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=CONFIG.api_group)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=CONFIG.api_group,
        key="last-handled-configuration",
    )
    settings.posting.level = logging.WARNING

    logger.info(
        f"Tollgate operator v{VERSION} starting: group={CONFIG.api_group}/{CONFIG.api_version} "
        f"namespace={CONFIG.namespace or '<cluster-wide>'} requeue={CONFIG.requeue_interval_seconds}s "
        f"config={CONFIG.fingerprint[:16] or '<defaults>'}"
    )
    get_engine()


def _register(kind: RequestKind) -> None:
    group, version, plural = CONFIG.api_group, CONFIG.api_version, kind.plural

    def on_event(name, namespace, **_):
        reconcile_on_event(kind, name, namespace)

    def on_tick(name, namespace, **_):
        reconcile_on_timer(kind, name, namespace)

    def on_delete(name, namespace, **_):
        _serializer.forget((kind.value, namespace, name))

    kopf.on.create(group, version, plural, id=f"{plural}-create")(on_event)
    kopf.on.update(group, version, plural, field="spec", id=f"{plural}-update")(on_event)
    kopf.on.resume(group, version, plural, id=f"{plural}-resume")(on_event)
    kopf.on.delete(group, version, plural, id=f"{plural}-delete", optional=True)(on_delete)
    kopf.timer(group, version, plural, id=f"{plural}-tick", interval=CONFIG.requeue_interval_seconds)(on_tick)


for _kind in RequestKind:
    _register(_kind)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Tollgate: access request operator")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    kopf.run(
        standalone=True,
        clusterwide=CONFIG.namespace is None,
        namespaces=[CONFIG.namespace] if CONFIG.namespace else (),
    )


if __name__ == "__main__":
    main()
