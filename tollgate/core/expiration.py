import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from tollgate.adapters.kube import KubeAdapter
from tollgate.core.status import StatusSynchronizer
from tollgate.models.request import AccessRequest, ConditionType, format_timestamp, utcnow
from tollgate.ui.json_logger import log_audit_event
from tollgate.validators import format_duration

logger = logging.getLogger("tollgate.expiration")


def is_past_deadline(request: AccessRequest, duration: timedelta, now: datetime) -> bool:
    """Strictly older than the granted duration. Exactly at the boundary is still valid."""
    return request.uptime(now) > duration


class ExpirationGuard:
    """
    Enforces the access window. Deletion here is immediate and unconditional;
    the request's Role and RoleBinding go with it through owner references.
    """
    def __init__(
        self,
        adapter: KubeAdapter,
        status: StatusSynchronizer,
        clock: Optional[Callable[[], datetime]] = None,
        audit_dir: Optional[str] = None,
    ):
        self.adapter = adapter
        self.status = status
        self.clock = clock or utcnow
        self.audit_dir = audit_dir

    def is_access_expired(self, request: AccessRequest) -> bool:
        """
        Safety net for requests a previous pass (or a previous operator
        process) already marked invalid: delete them and report True.
        A missing AccessStillValid condition is not expiry.
        """
        cond = request.status.get_condition(ConditionType.ACCESS_STILL_VALID)
        if cond is None:
            logger.debug(f"[{request.ref}] No {ConditionType.ACCESS_STILL_VALID.value} condition yet, skipping deletion")
            return False

        if request.status.is_condition_false(ConditionType.ACCESS_STILL_VALID):
            logger.info(f"[{request.ref}] {ConditionType.ACCESS_STILL_VALID.value} is False, terminating request")
            self.delete_request(request)
            return True

        return False

    def verify_still_valid(self, request: AccessRequest, duration: timedelta) -> bool:
        """
        Compares the request's age against its resolved duration.

        Returns:
            True if access is still valid (the pipeline continues),
            False if the request expired and has now been deleted.
        """
        now = self.clock()
        expires_at = request.creation_timestamp + duration

        if is_past_deadline(request, duration, now):
            # Mark first so the expiry is observable even if the delete fails.
            self.status.set_access_not_valid(
                request,
                f"Access expired at {format_timestamp(expires_at)} after {format_duration(duration)}",
            )
            self.delete_request(request)
            log_audit_event(
                request, "request.expired",
                detail={"duration": format_duration(duration), "expired_at": format_timestamp(expires_at)},
                output_dir=self.audit_dir,
            )
            return False

        remaining = timedelta(seconds=int((expires_at - now).total_seconds()))
        self.status.set_access_still_valid(
            request,
            f"Access still valid, {format_duration(remaining)} remaining (expires at {format_timestamp(expires_at)})",
        )
        return True

    def delete_request(self, request: AccessRequest) -> None:
        deleted = self.adapter.delete_request(request.kind, request.namespace, request.name)
        if deleted:
            log_audit_event(request, "request.deleted", output_dir=self.audit_dir)
