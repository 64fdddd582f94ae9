import logging
from datetime import datetime
from typing import Callable, Optional

from tollgate.adapters.kube import KubeAdapter
from tollgate.core.errors import KubeConflictError, StatusConflictError
from tollgate.models.request import (
    AccessRequest,
    ConditionStatus,
    ConditionType,
    utcnow,
)

logger = logging.getLogger("tollgate.status")

REASON_WITHIN_WINDOW = "WithinWindow"
REASON_EXPIRED = "Expired"
REASON_CREATED = "Created"
REASON_ALREADY_ASSIGNED = "AlreadyAssigned"
REASON_TARGET_NOT_FOUND = "TargetNotFound"
REASON_PROVISIONING_FAILED = "ProvisioningFailed"
REASON_READY = "Ready"
REASON_NO_READINESS_CHECK = "NoReadinessCheck"
REASON_TARGET_NOT_READY = "TargetNotReady"
REASON_VERIFICATION_FAILED = "VerificationFailed"


class StatusSynchronizer:
    """
    Keeps the in-memory copy of a request and the stored object in step.

    Writes are pinned to the copy's resourceVersion. A conflicting write is
    never retried or merged here: the caller abandons the pass and the next
    pass starts again from a fresh read.
    """
    def __init__(self, adapter: KubeAdapter, clock: Optional[Callable[[], datetime]] = None):
        self.adapter = adapter
        self.clock = clock or utcnow

    def refetch(self, request: AccessRequest) -> AccessRequest:
        """Re-reads the request from the API server into the caller's copy."""
        obj = self.adapter.get_request(request.kind, request.namespace, request.name)
        request.update_from(AccessRequest.from_object(request.kind, obj))
        logger.debug(f"[{request.ref}] Refetched at resourceVersion {request.resource_version}")
        return request

    def update_status(self, request: AccessRequest) -> None:
        """
        Writes the status subresource and adopts the server's new
        resourceVersion, so later writes in the same pass do not conflict
        with our own earlier ones.

        Raises:
            StatusConflictError: If the stored object moved on since our read
        """
        try:
            stored = self.adapter.replace_request_status(
                request.kind, request.namespace, request.name, request.status_body()
            )
        except KubeConflictError as e:
            logger.warning(
                f"[{request.ref}] Status write conflict at resourceVersion {request.resource_version}, "
                f"abandoning this pass"
            )
            raise StatusConflictError(f"{request.ref}: {e}") from e

        request.resource_version = stored.get("metadata", {}).get("resourceVersion", request.resource_version)

    def set_condition(
        self,
        request: AccessRequest,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> None:
        request.status.set_condition(condition_type, status, reason, message, now=self.clock())
        logger.info(f"[{request.ref}] {condition_type.value}={status.value} ({reason}): {message}")
        self.update_status(request)

    # --- Pipeline step helpers ---

    def set_durations_valid(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.DURATIONS_VALID, ConditionStatus.TRUE, reason, message)

    def set_durations_not_valid(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.DURATIONS_VALID, ConditionStatus.FALSE, reason, message)

    def set_access_still_valid(self, request: AccessRequest, message: str) -> None:
        self.set_condition(
            request, ConditionType.ACCESS_STILL_VALID, ConditionStatus.TRUE, REASON_WITHIN_WINDOW, message
        )

    def set_access_not_valid(self, request: AccessRequest, message: str) -> None:
        self.set_condition(
            request, ConditionType.ACCESS_STILL_VALID, ConditionStatus.FALSE, REASON_EXPIRED, message
        )

    def set_resources_created(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.RESOURCES_CREATED, ConditionStatus.TRUE, reason, message)

    def set_resources_not_created(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.RESOURCES_CREATED, ConditionStatus.FALSE, reason, message)

    def set_resources_ready(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.RESOURCES_READY, ConditionStatus.TRUE, reason, message)

    def set_resources_not_ready(self, request: AccessRequest, reason: str, message: str) -> None:
        self.set_condition(request, ConditionType.RESOURCES_READY, ConditionStatus.FALSE, reason, message)
