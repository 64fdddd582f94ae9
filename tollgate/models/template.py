from dataclasses import dataclass, field
from typing import Any, Dict, List

DEFAULT_ACCESS_COMMAND = "kubectl exec -ti -n {namespace} {pod_name} -- /bin/sh"


def format_label_selector(labels: Dict[str, str]) -> str:
    """Renders matchLabels as a Kubernetes label selector string."""
    return ",".join(f"{k}={labels[k]}" for k in sorted(labels))


@dataclass
class AccessTemplate:
    """
    Administrator-owned policy a request is evaluated against.
    Read-only to the operator; referenced by name from the request.

    Durations are kept as the raw strings so that a malformed value is
    reported against the right field when the request is reconciled.
    """
    name: str
    namespace: str
    default_duration: str = ""
    max_duration: str = ""
    access_command: str = DEFAULT_ACCESS_COMMAND

    # RoleBinding subjects
    allowed_groups: List[str] = field(default_factory=list)
    allowed_users: List[str] = field(default_factory=list)

    # Target-selection rule: pods must carry all of these labels.
    match_labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "AccessTemplate":
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {}) or {}
        access = spec.get("accessConfig", {}) or {}
        selector = spec.get("targetSelector", {}) or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            default_duration=str(access.get("defaultDuration", "") or ""),
            max_duration=str(access.get("maxDuration", "") or ""),
            access_command=access.get("accessCommand") or DEFAULT_ACCESS_COMMAND,
            allowed_groups=list(access.get("allowedGroups") or []),
            allowed_users=list(access.get("allowedUsers") or []),
            match_labels=dict(selector.get("matchLabels") or {}),
        )
