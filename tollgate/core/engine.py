import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from tollgate.adapters.kube import KubeAdapter
from tollgate.adapters.target_selector import PodTargetSelector
from tollgate.builders.base import AccessBuilder, BuildContext, ReadyCheckingBuilder
from tollgate.builders.registry import BUILDERS
from tollgate.core import durations
from tollgate.core.errors import (
    InvalidDurationError,
    KubeNotFoundError,
    StatusConflictError,
    TargetNotFoundError,
    TargetNotReadyError,
    TemplateNotFoundError,
    TollgateError,
)
from tollgate.core.expiration import ExpirationGuard, is_past_deadline
from tollgate.core.status import (
    REASON_ALREADY_ASSIGNED,
    REASON_NO_READINESS_CHECK,
    REASON_PROVISIONING_FAILED,
    REASON_TARGET_NOT_FOUND,
    REASON_TARGET_NOT_READY,
    REASON_VERIFICATION_FAILED,
    StatusSynchronizer,
)
from tollgate.models.request import AccessRequest, ConditionType, RequestKind, utcnow
from tollgate.models.template import AccessTemplate
from tollgate.ui.json_logger import log_audit_event

# Engine Version (Semantic Versioning)
VERSION = "0.1.0"

# Expiry is time-driven, so every request is revisited at least this often
# even when nothing about it changes.
DEFAULT_REQUEUE_SECONDS = 60.0

logger = logging.getLogger("tollgate.engine")


@dataclass
class ReconcileResult:
    """
    The outcome of one reconciliation pass.
    A pass never raises for a per-request failure; it reports it here.
    """
    kind: RequestKind
    name: str
    namespace: str
    deleted: bool = False
    requeue_after: Optional[float] = None
    error: Optional[str] = None
    phase: str = ""
    duration: Optional[timedelta] = None
    engine_version: str = VERSION

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ReconciliationEngine:
    """
    Drives one request through a fixed, ordered pipeline per pass:

      1. refetch         (direct API read)
      2. expiry pre-check (already marked invalid? delete)
      3. durations       (DurationsValid)
      4. expiry check    (AccessStillValid; expired -> delete)
      5. provision       (ResourcesCreated)
      6. readiness       (ResourcesReady)

    The first failing step records its condition and ends the pass.
    """
    def __init__(
        self,
        adapter: KubeAdapter,
        selector: Optional[PodTargetSelector] = None,
        builders: Optional[Dict[RequestKind, AccessBuilder]] = None,
        requeue_after: float = DEFAULT_REQUEUE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        audit_dir: Optional[str] = None,
    ):
        self.adapter = adapter
        self.selector = selector or PodTargetSelector(adapter)
        self.builders = builders if builders is not None else BUILDERS
        self.requeue_after = requeue_after
        self.clock = clock or utcnow
        self.audit_dir = audit_dir
        self.status = StatusSynchronizer(adapter, clock=self.clock)
        self.guard = ExpirationGuard(adapter, self.status, clock=self.clock, audit_dir=audit_dir)

    # --- Entry point ---

    def reconcile(self, kind: RequestKind, name: str, namespace: str) -> ReconcileResult:
        result = ReconcileResult(kind=kind, name=name, namespace=namespace)
        ref = f"{namespace}/{name}"
        logger.info(f"[{ref}] Beginning reconciliation pass ({kind.value})")

        # 1. Refetch from the API server, not from whatever triggered us
        request = AccessRequest(kind=kind, name=name, namespace=namespace, template_name="")
        try:
            self.status.refetch(request)
        except KubeNotFoundError:
            logger.info(f"[{ref}] Request no longer exists, nothing to do")
            result.deleted = True
            return result
        except Exception as e:
            logger.error(f"[{ref}] Failed to read request: {e}")
            result.error = str(e)
            result.requeue_after = self.requeue_after
            return result

        try:
            self._run_pipeline(request, result)
        except StatusConflictError as e:
            result.error = str(e)
        except TollgateError as e:
            logger.warning(f"[{ref}] Pass aborted: {type(e).__name__}: {e}")
            result.error = str(e)
        except Exception as e:
            logger.error(f"[{ref}] Unexpected failure during reconciliation: {type(e).__name__}", exc_info=True)
            result.error = f"{type(e).__name__}: {e}"

        result.phase = request.phase
        if not result.deleted:
            result.requeue_after = self.requeue_after
        logger.info(
            f"[{ref}] Pass complete: phase={result.phase} deleted={result.deleted} "
            f"error={result.error or '-'}"
        )
        return result

    # --- Pipeline ---

    def _run_pipeline(self, request: AccessRequest, result: ReconcileResult) -> None:
        builder = self.builders[request.kind]

        # 2. Already marked invalid by an earlier pass?
        if self.guard.is_access_expired(request):
            result.deleted = True
            return

        # 3. Durations
        template = self._fetch_template(request)
        duration = self._verify_durations(request, template)
        result.duration = duration

        # 4. Window
        if not self.guard.verify_still_valid(request, duration):
            result.deleted = True
            return

        # 5. Provisioning
        ctx = BuildContext(adapter=self.adapter, status=self.status, selector=self.selector)
        self._verify_resources_built(builder, ctx, request, template)

        # 6. Readiness
        self._verify_resources_ready(builder, ctx, request)

    def _fetch_template(self, request: AccessRequest) -> AccessTemplate:
        try:
            obj = self.adapter.get_template(request.kind, request.namespace, request.template_name)
        except KubeNotFoundError as e:
            message = f"{request.kind.template_kind} {request.namespace}/{request.template_name} not found"
            self._record_failure(
                self.status.set_durations_not_valid, request, durations.REASON_TEMPLATE_NOT_FOUND, message
            )
            raise TemplateNotFoundError(message) from e
        return AccessTemplate.from_object(obj)

    def _verify_durations(self, request: AccessRequest, template: AccessTemplate) -> timedelta:
        logger.info(f"[{request.ref}] Beginning access request duration verification")
        try:
            decision = durations.resolve_request_duration(request, template)
        except InvalidDurationError as e:
            self._record_failure(
                self.status.set_durations_not_valid, request, durations.REASON_INVALID, str(e)
            )
            log_audit_event(
                request, "durations.invalid",
                detail={"field": e.field_name, "value": e.value},
                output_dir=self.audit_dir,
            )
            raise

        logger.info(f"[{request.ref}] {decision.message}")
        self.status.set_durations_valid(request, decision.reason, decision.message)
        return decision.duration

    def _verify_resources_built(
        self, builder: AccessBuilder, ctx: BuildContext, request: AccessRequest, template: AccessTemplate
    ) -> None:
        logger.info(f"[{request.ref}] Verifying that access resources are built")
        try:
            outcome = builder.create_access_resources(ctx, request, template)
        except StatusConflictError:
            raise
        except TargetNotFoundError as e:
            self._record_failure(self.status.set_resources_not_created, request, REASON_TARGET_NOT_FOUND, str(e))
            raise
        except Exception as e:
            self._record_failure(
                self.status.set_resources_not_created, request, REASON_PROVISIONING_FAILED, str(e)
            )
            raise

        self.status.set_resources_created(request, outcome.reason, outcome.message)
        if outcome.reason != REASON_ALREADY_ASSIGNED:
            log_audit_event(
                request, "access.provisioned",
                detail={"pod": request.status.pod_name, "message": outcome.message},
                output_dir=self.audit_dir,
            )

    def _verify_resources_ready(self, builder: AccessBuilder, ctx: BuildContext, request: AccessRequest) -> None:
        if not isinstance(builder, ReadyCheckingBuilder):
            self.status.set_resources_ready(
                request, REASON_NO_READINESS_CHECK, "Access resources are ready once created"
            )
            return

        logger.info(f"[{request.ref}] Verifying that access resources are ready")
        try:
            outcome = builder.verify_access_resources(ctx, request)
        except StatusConflictError:
            raise
        except TargetNotReadyError as e:
            self._record_failure(self.status.set_resources_not_ready, request, REASON_TARGET_NOT_READY, str(e))
            raise
        except Exception as e:
            self._record_failure(
                self.status.set_resources_not_ready, request, REASON_VERIFICATION_FAILED, str(e)
            )
            raise

        self.status.set_resources_ready(request, outcome.reason, outcome.message)

    def _record_failure(self, setter, request: AccessRequest, reason: str, message: str) -> None:
        """
        Records a failure condition. The original error is what ends the pass,
        so a failure to write this condition is only logged.
        """
        try:
            setter(request, reason, message)
        except Exception as e:
            logger.warning(f"[{request.ref}] Could not record failure condition ({reason}): {e}")

    # --- Read-only evaluation ---

    def would_expire(self, request: AccessRequest) -> bool:
        """
        Answers "would a pass delete this request right now?" without writing
        anything. Used by the janitor's dry-run mode.

        Raises:
            TollgateError: If the template is missing or the durations are invalid
        """
        if request.status.is_condition_false(ConditionType.ACCESS_STILL_VALID):
            return True
        try:
            obj = self.adapter.get_template(request.kind, request.namespace, request.template_name)
        except KubeNotFoundError as e:
            raise TemplateNotFoundError(
                f"{request.kind.template_kind} {request.namespace}/{request.template_name} not found"
            ) from e
        decision = durations.resolve_request_duration(request, AccessTemplate.from_object(obj))
        return is_past_deadline(request, decision.duration, self.clock())
