"""
Builder capabilities.

Every request kind provisions access resources. Kinds whose target has to be
up and usable before the grant means anything also verify readiness. The
engine only ever asks "does this builder verify readiness?", never "which
kind of request is this?".
"""
from dataclasses import dataclass

from tollgate.adapters.kube import KubeAdapter
from tollgate.adapters.target_selector import PodTargetSelector
from tollgate.core.status import REASON_CREATED, REASON_READY, StatusSynchronizer
from tollgate.models.request import AccessRequest
from tollgate.models.template import AccessTemplate


@dataclass
class BuildContext:
    """What a builder may touch during one pass."""
    adapter: KubeAdapter
    status: StatusSynchronizer
    selector: PodTargetSelector


@dataclass(frozen=True)
class BuildResult:
    message: str
    reason: str = REASON_CREATED


class AccessBuilder:
    """Provisioning capability. Builders hold no state between passes."""

    def create_access_resources(
        self, ctx: BuildContext, request: AccessRequest, template: AccessTemplate
    ) -> BuildResult:
        """
        Creates (or finds) everything the grant needs.

        Raises:
            BuilderError: On any provisioning failure
        """
        raise NotImplementedError


class ReadyCheckingBuilder(AccessBuilder):
    """Provisioning plus readiness capability."""

    def verify_access_resources(self, ctx: BuildContext, request: AccessRequest) -> BuildResult:
        """
        Confirms the provisioned resources are usable right now.

        Raises:
            BuilderError: If they are not
        """
        return BuildResult("Access resources ready", REASON_READY)
