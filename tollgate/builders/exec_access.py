import logging

from tollgate.builders.base import BuildContext, BuildResult, ReadyCheckingBuilder
from tollgate.builders.rbac import (
    build_role,
    build_role_binding,
    exec_policy_rules,
    render_access_command,
)
from tollgate.core.errors import KubeNotFoundError, TargetNotReadyError
from tollgate.core.status import REASON_ALREADY_ASSIGNED, REASON_CREATED, REASON_READY
from tollgate.models.request import AccessRequest
from tollgate.models.template import AccessTemplate

logger = logging.getLogger("tollgate.builders.exec")


class ExecAccessBuilder(ReadyCheckingBuilder):
    """
    Grants `kubectl exec` into one pod.

    The pod is picked once. After status.podName is written, every later pass
    (and every retry of this one) respects it, even if the selector would now
    pick a different pod.
    """

    def create_access_resources(
        self, ctx: BuildContext, request: AccessRequest, template: AccessTemplate
    ) -> BuildResult:
        if request.status.pod_name:
            return BuildResult(
                f"Pod already assigned - {request.status.pod_name}", REASON_ALREADY_ASSIGNED
            )

        # 1. Pick the target (raises TargetNotFoundError)
        pod_name = ctx.selector.select(request.namespace, template.match_labels, request.target_pod)
        logger.info(f"[{request.ref}] Target pod resolved: {pod_name}")

        # 2. Create (or realign) the Role, get-or-create its binding
        role = ctx.adapter.create_or_update_role(
            request.namespace, build_role(request, exec_policy_rules(pod_name))
        )
        role_name = role.metadata.name
        binding = ctx.adapter.get_or_create_role_binding(
            request.namespace, build_role_binding(request, template, role_name)
        )

        # 3. Tell the user how to use it
        access_message = render_access_command(
            template.access_command,
            {"pod_name": pod_name, "namespace": request.namespace, "request_name": request.name},
        )
        request.status.access_message = access_message

        if not request.status.set_pod_name(pod_name):
            return BuildResult(
                f"Pod already assigned - {request.status.pod_name}", REASON_ALREADY_ASSIGNED
            )

        # 4. Persist podName + accessMessage in one write (raises StatusConflictError)
        ctx.status.update_status(request)

        return BuildResult(
            f"Success. Role {role_name}, RoleBinding {binding.metadata.name} created", REASON_CREATED
        )

    def verify_access_resources(self, ctx: BuildContext, request: AccessRequest) -> BuildResult:
        """The assigned pod must still exist and be Running."""
        pod_name = request.status.pod_name
        if not pod_name:
            raise TargetNotReadyError("No target pod assigned yet")

        try:
            pod = ctx.adapter.read_pod(request.namespace, pod_name)
        except KubeNotFoundError:
            raise TargetNotReadyError(f"Target pod {pod_name} no longer exists")

        if pod.metadata.deletion_timestamp is not None:
            raise TargetNotReadyError(f"Target pod {pod_name} is terminating")

        phase = pod.status.phase if pod.status else None
        if phase != "Running":
            raise TargetNotReadyError(f"Target pod {pod_name} is in phase {phase or 'Unknown'}, not Running")

        return BuildResult(f"Pod {pod_name} is Running", REASON_READY)
