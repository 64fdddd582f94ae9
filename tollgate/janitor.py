import sys
import os
import argparse
import logging
from typing import Optional

# --- PATH FIX ---
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
# ----------------

from tollgate.adapters.kube import KubeAdapter, load_kube_config
from tollgate.config import load_config
from tollgate.core.engine import ReconciliationEngine
from tollgate.core.errors import TollgateError
from tollgate.models.request import AccessRequest, RequestKind

logger = logging.getLogger("tollgate.janitor")


def run_expiry_sweep(
    engine: ReconciliationEngine,
    adapter: KubeAdapter,
    namespace: Optional[str] = None,
    dry_run: bool = False,
) -> dict:
    """
    One pass over every request of every kind.

    The operator's timer normally does this continuously; the sweep exists for
    cron-style deployments and for catching up after operator downtime.
    """
    logger.info("🧹 Janitor starting up...")

    reconciled = 0
    deleted = 0
    error_count = 0

    for kind in RequestKind:
        # 1. Find requests
        try:
            items = adapter.list_requests(kind, namespace)
        except TollgateError as e:
            logger.error(f"Failed to list {kind.value} objects: {e}")
            error_count += 1
            continue

        logger.info(f"Found {len(items)} {kind.value} object(s) in {namespace or 'all namespaces'}")

        # 2. Reconcile each one
        for obj in items:
            request = AccessRequest.from_object(kind, obj)

            if dry_run:
                try:
                    if engine.would_expire(request):
                        logger.info(f"DRY RUN: [{request.ref}] would be deleted (expired)")
                        deleted += 1
                    else:
                        logger.info(f"DRY RUN: [{request.ref}] still within its window")
                except TollgateError as e:
                    logger.warning(f"DRY RUN: [{request.ref}] cannot be evaluated: {e}")
                    error_count += 1
                continue

            result = engine.reconcile(kind, request.name, request.namespace)
            reconciled += 1
            if result.deleted:
                logger.info(f"✅ [{request.ref}] deleted")
                deleted += 1
            if result.error:
                logger.error(f"❌ [{request.ref}] pass failed: {result.error}")
                error_count += 1

    logger.info(f"Janitor Run Complete. Reconciled: {reconciled}, Deleted: {deleted}, Errors: {error_count}")

    return {
        "status": "success" if error_count == 0 else "partial_failure",
        "reconciled": reconciled,
        "deleted": deleted,
        "errors": error_count,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Tollgate: The Janitor (one-shot expiry sweep)")
    parser.add_argument("--config", help="Path to the operator config YAML (defaults to $TOLLGATE_CONFIG)")
    parser.add_argument("--namespace", help="Only sweep this namespace (defaults to the config, else all)")
    parser.add_argument("--dry-run", action="store_true", help="Report only, do not write or delete")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    try:
        config = load_config(args.config)
        load_kube_config(config.kubeconfig)
        adapter = KubeAdapter(api_group=config.api_group, api_version=config.api_version)
        engine = ReconciliationEngine(
            adapter,
            requeue_after=config.requeue_interval_seconds,
            audit_dir=config.audit_dir,
        )
    except Exception as e:
        logger.error(f"Failed to initialize janitor: {e}")
        sys.exit(1)

    result = run_expiry_sweep(engine, adapter, args.namespace or config.namespace, args.dry_run)

    # Map result to exit code for CI/CD
    if result["errors"] > 0:
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
