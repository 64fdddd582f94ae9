"""
RBAC object bodies for access requests.

Role and RoleBinding are both named after the owning request and carry an
owner reference to it, so there is exactly one of each per request and
deleting the request revokes the grant.
"""
import re
from typing import Dict, List

from kubernetes import client

from tollgate.core.errors import AccessCommandError
from tollgate.models.request import AccessRequest
from tollgate.models.template import AccessTemplate

RBAC_API_GROUP = "rbac.authorization.k8s.io"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
REQUEST_LABEL = "access.tollgate.io/request"

_PLACEHOLDER = re.compile(r'\{([a-z_]+)\}')


def access_resource_name(request: AccessRequest) -> str:
    return request.name


def owner_reference(request: AccessRequest) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version=request.api_version,
        kind=request.kind.value,
        name=request.name,
        uid=request.uid,
        controller=True,
        block_owner_deletion=True,
    )


def _metadata(request: AccessRequest) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=access_resource_name(request),
        namespace=request.namespace,
        labels={MANAGED_BY_LABEL: "tollgate", REQUEST_LABEL: request.name},
        owner_references=[owner_reference(request)],
    )


def exec_policy_rules(pod_name: str) -> List[client.V1PolicyRule]:
    """
    Read access to exactly one pod, plus the verbs needed to open an exec
    session on it. Always a single resourceName, never a wildcard.
    """
    return [
        client.V1PolicyRule(
            api_groups=[""],
            resources=["pods"],
            resource_names=[pod_name],
            verbs=["get", "list", "watch"],
        ),
        client.V1PolicyRule(
            api_groups=[""],
            resources=["pods/exec"],
            resource_names=[pod_name],
            verbs=["create", "update", "delete", "get", "list"],
        ),
    ]


def build_role(request: AccessRequest, rules: List[client.V1PolicyRule]) -> client.V1Role:
    return client.V1Role(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="Role",
        metadata=_metadata(request),
        rules=rules,
    )


def build_role_binding(
    request: AccessRequest, template: AccessTemplate, role_name: str
) -> client.V1RoleBinding:
    subjects = [
        client.RbacV1Subject(kind="Group", name=group, api_group=RBAC_API_GROUP)
        for group in template.allowed_groups
    ] + [
        client.RbacV1Subject(kind="User", name=user, api_group=RBAC_API_GROUP)
        for user in template.allowed_users
    ]
    return client.V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="RoleBinding",
        metadata=_metadata(request),
        role_ref=client.V1RoleRef(api_group=RBAC_API_GROUP, kind="Role", name=role_name),
        subjects=subjects,
    )


def render_access_command(pattern: str, values: Dict[str, str]) -> str:
    """
    Substitutes {placeholder} tokens from values.

    Raises:
        AccessCommandError: If the pattern references an unknown placeholder
    """
    def replace(match):
        key = match.group(1)
        if key not in values:
            raise AccessCommandError(
                f"Template accessCommand references unknown placeholder {{{key}}}; "
                f"known: {', '.join(sorted(values))}"
            )
        return values[key]

    return _PLACEHOLDER.sub(replace, pattern)
