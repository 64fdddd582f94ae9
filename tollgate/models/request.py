from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Kubernetes timestamps are RFC 3339 with a trailing 'Z'."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class RequestKind(str, Enum):
    """
    The closed set of request kinds the operator understands.
    Each kind is served by exactly one builder (see builders/registry.py).
    """
    EXEC_ACCESS = "ExecAccessRequest"

    @property
    def plural(self) -> str:
        return self.value.lower() + "s"

    @property
    def template_kind(self) -> str:
        return self.value.replace("Request", "Template")

    @property
    def template_plural(self) -> str:
        return self.template_kind.lower() + "s"


class ConditionType(str, Enum):
    # Declaration order is the serialization order.
    DURATIONS_VALID = "DurationsValid"
    ACCESS_STILL_VALID = "AccessStillValid"
    RESOURCES_CREATED = "ResourcesCreated"
    RESOURCES_READY = "ResourcesReady"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition:
    """A typed, timestamped health indicator on a request."""
    type: ConditionType
    status: ConditionStatus
    reason: str
    message: str = ""
    last_transition_time: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_timestamp(self.last_transition_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=ConditionType(data["type"]),
            status=ConditionStatus(data.get("status", "Unknown")),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=parse_timestamp(data.get("lastTransitionTime")) or utcnow(),
        )


@dataclass
class RequestStatus:
    """
    The status block of a request.

    Attributes:
        conditions: One record per condition type.
        pod_name: The target identity. Set once, never reassigned.
        access_message: Human-usable instruction for using the grant.
    """
    conditions: Dict[ConditionType, Condition] = field(default_factory=dict)
    pod_name: str = ""
    access_message: str = ""

    def get_condition(self, condition_type: ConditionType) -> Optional[Condition]:
        return self.conditions.get(condition_type)

    def is_condition_true(self, condition_type: ConditionType) -> bool:
        cond = self.conditions.get(condition_type)
        return cond is not None and cond.status == ConditionStatus.TRUE

    def is_condition_false(self, condition_type: ConditionType) -> bool:
        cond = self.conditions.get(condition_type)
        return cond is not None and cond.status == ConditionStatus.FALSE

    def set_condition(
        self,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str,
        message: str,
        now: Optional[datetime] = None,
    ) -> Condition:
        """
        Inserts or updates a condition. The transition time only moves when the
        status or the reason actually changes; message-only rewrites keep it.
        """
        now = now or utcnow()
        existing = self.conditions.get(condition_type)

        if existing is None:
            cond = Condition(condition_type, status, reason, message, now)
            self.conditions[condition_type] = cond
            return cond

        if existing.status != status or existing.reason != reason:
            existing.last_transition_time = now
        existing.status = status
        existing.reason = reason
        existing.message = message
        return existing

    def set_pod_name(self, pod_name: str) -> bool:
        """
        Records the target identity.
        Returns False (and changes nothing) when a target is already assigned.
        """
        if self.pod_name:
            return False
        self.pod_name = pod_name
        return True

    def is_ready(self) -> bool:
        return self.is_condition_true(ConditionType.RESOURCES_READY)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "conditions": [
                self.conditions[ctype].to_dict() for ctype in ConditionType if ctype in self.conditions
            ],
        }
        if self.pod_name:
            data["podName"] = self.pod_name
        if self.access_message:
            data["accessMessage"] = self.access_message
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RequestStatus":
        data = data or {}
        conditions: Dict[ConditionType, Condition] = {}
        known = {ctype.value for ctype in ConditionType}
        for raw in data.get("conditions") or []:
            # Conditions written by other tools are left to them.
            if raw.get("type") in known:
                cond = Condition.from_dict(raw)
                conditions[cond.type] = cond
        return cls(
            conditions=conditions,
            pod_name=data.get("podName", "") or "",
            access_message=data.get("accessMessage", "") or "",
        )


@dataclass
class AccessRequest:
    """
    In-memory copy of a request custom resource.

    Attributes:
        kind: Which request kind this is; selects the builder.
        name: metadata.name
        namespace: metadata.namespace
        uid: metadata.uid, used for owner references.
        resource_version: The optimistic-concurrency marker of this copy.
        creation_timestamp: Start of the access window.
        template_name: spec.templateName
        duration: spec.duration, raw string, may be empty.
        target_pod: spec.targetPod, optional explicit target override.
        status: The status block.
    """
    kind: RequestKind
    name: str
    namespace: str
    template_name: str
    uid: str = ""
    resource_version: str = ""
    api_version: str = ""
    creation_timestamp: datetime = field(default_factory=utcnow)
    duration: str = ""
    target_pod: str = ""
    status: RequestStatus = field(default_factory=RequestStatus)

    @classmethod
    def from_object(cls, kind: RequestKind, obj: Dict[str, Any]) -> "AccessRequest":
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {}) or {}
        return cls(
            kind=kind,
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            resource_version=metadata.get("resourceVersion", ""),
            api_version=obj.get("apiVersion", ""),
            creation_timestamp=parse_timestamp(metadata.get("creationTimestamp")) or utcnow(),
            template_name=spec.get("templateName", ""),
            duration=str(spec.get("duration", "") or ""),
            target_pod=spec.get("targetPod", "") or "",
            status=RequestStatus.from_dict(obj.get("status")),
        )

    def update_from(self, fresh: "AccessRequest") -> None:
        """Replaces this copy's state with a freshly read one."""
        self.uid = fresh.uid
        self.resource_version = fresh.resource_version
        self.api_version = fresh.api_version or self.api_version
        self.creation_timestamp = fresh.creation_timestamp
        self.template_name = fresh.template_name
        self.duration = fresh.duration
        self.target_pod = fresh.target_pod
        self.status = fresh.status

    def status_body(self) -> Dict[str, Any]:
        """The body for a status-subresource write, pinned to our resourceVersion."""
        return {
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "resourceVersion": self.resource_version,
            },
            "status": self.status.to_dict(),
        }

    def uptime(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.creation_timestamp

    @property
    def phase(self) -> str:
        """
        Derived from the condition set. There is no stored phase field, so the
        phase can never disagree with the conditions.
        """
        status = self.status
        if status.is_condition_false(ConditionType.ACCESS_STILL_VALID):
            return "Expired"
        if status.is_condition_false(ConditionType.DURATIONS_VALID):
            return "Invalid"
        if status.is_condition_true(ConditionType.RESOURCES_READY):
            return "Ready"
        if ConditionType.RESOURCES_CREATED in status.conditions:
            return "Provisioning"
        return "Pending"

    @property
    def ref(self) -> str:
        return f"{self.namespace}/{self.name}"
