import logging
import random
from typing import Dict, Optional

from tollgate.adapters.kube import KubeAdapter
from tollgate.core.errors import KubeNotFoundError, TargetNotFoundError
from tollgate.models.template import format_label_selector

logger = logging.getLogger(__name__)


def _is_terminating(pod) -> bool:
    return pod.metadata.deletion_timestamp is not None


def _is_running(pod) -> bool:
    return pod.status is not None and pod.status.phase == "Running"


class PodTargetSelector:
    """
    Resolves the target identity (a Pod name) for an exec-style request.
    The only thing the engine needs from it is select().
    """
    def __init__(self, adapter: KubeAdapter, rng: Optional[random.Random] = None):
        self.adapter = adapter
        self.rng = rng or random.Random()

    def select(self, namespace: str, match_labels: Dict[str, str], override: str = "") -> str:
        """
        Returns one pod name.

        An explicit override must exist, not be terminating, and carry the
        template's labels. Otherwise a random running pod matching the labels
        is chosen.

        Raises:
            TargetNotFoundError: If no acceptable pod exists
        """
        if override:
            return self._check_override(namespace, match_labels, override)

        selector = format_label_selector(match_labels)
        candidates = [
            pod.metadata.name
            for pod in self.adapter.list_pods(namespace, label_selector=selector)
            if _is_running(pod) and not _is_terminating(pod)
        ]
        if not candidates:
            raise TargetNotFoundError(
                f"No running pods in {namespace} match selector '{selector or '<all>'}'"
            )

        chosen = self.rng.choice(sorted(candidates))
        logger.debug(f"Selected pod {chosen} out of {len(candidates)} candidate(s)")
        return chosen

    def _check_override(self, namespace: str, match_labels: Dict[str, str], name: str) -> str:
        try:
            pod = self.adapter.read_pod(namespace, name)
        except KubeNotFoundError:
            raise TargetNotFoundError(f"Requested target pod {namespace}/{name} does not exist")

        if _is_terminating(pod):
            raise TargetNotFoundError(f"Requested target pod {namespace}/{name} is terminating")

        labels = pod.metadata.labels or {}
        mismatched = sorted(k for k, v in match_labels.items() if labels.get(k) != v)
        if mismatched:
            raise TargetNotFoundError(
                f"Requested target pod {namespace}/{name} does not match the template selector "
                f"(labels: {', '.join(mismatched)})"
            )
        return name
