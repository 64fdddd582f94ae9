import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from tollgate.core.errors import KubeAPIError, KubeConflictError, KubeNotFoundError
from tollgate.models.request import RequestKind

DEFAULT_API_GROUP = "access.tollgate.io"
DEFAULT_API_VERSION = "v1alpha1"


def load_kube_config(kubeconfig: Optional[str] = None) -> None:
    """
    Loads client credentials. Inside a pod the service account wins;
    otherwise fall back to the local kubeconfig (or the explicit path).
    """
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        return
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def current_namespace(kubeconfig: Optional[str] = None) -> str:
    """The namespace of the active kubeconfig context, or 'default'."""
    try:
        _, active = config.list_kube_config_contexts(config_file=kubeconfig)
    except config.ConfigException:
        return "default"
    return (active or {}).get("context", {}).get("namespace") or "default"


def _translate(e: ApiException, action: str) -> KubeAPIError:
    message = f"{action} failed: HTTP {e.status} {e.reason}"
    if e.status == 404:
        return KubeNotFoundError(message, status=e.status)
    if e.status == 409:
        return KubeConflictError(message, status=e.status)
    return KubeAPIError(message, status=e.status)


class KubeAdapter:
    """
    The 'Hands' of the operator.
    Translates raw Kubernetes API calls into the plain objects the engine
    works with, and ApiException into the operator's own error types.
    Handles both Reading (requests, templates, pods) and Writing (status, RBAC).
    """
    def __init__(
        self,
        custom_api=None,
        rbac_api=None,
        core_api=None,
        api_group: str = DEFAULT_API_GROUP,
        api_version: str = DEFAULT_API_VERSION,
    ):
        # Dependency Injection allows us to pass fake API objects during testing
        self.custom = custom_api or client.CustomObjectsApi()
        self.rbac = rbac_api or client.RbacAuthorizationV1Api()
        self.core = core_api or client.CoreV1Api()
        self.api_group = api_group
        self.api_version = api_version
        self.logger = logging.getLogger("tollgate.adapter")

    @property
    def group_version(self) -> str:
        return f"{self.api_group}/{self.api_version}"

    # --- READ METHODS ---
    # These always hit the API server directly. There is no informer cache
    # between the engine and the cluster, so every read is strongly consistent.

    def get_request(self, kind: RequestKind, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self.custom.get_namespaced_custom_object(
                group=self.api_group,
                version=self.api_version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
            )
        except ApiException as e:
            raise _translate(e, f"get {kind.value} {namespace}/{name}") from e

    def list_requests(self, kind: RequestKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Lists requests in one namespace, or cluster-wide when namespace is None."""
        try:
            if namespace:
                resp = self.custom.list_namespaced_custom_object(
                    group=self.api_group,
                    version=self.api_version,
                    namespace=namespace,
                    plural=kind.plural,
                )
            else:
                resp = self.custom.list_cluster_custom_object(
                    group=self.api_group,
                    version=self.api_version,
                    plural=kind.plural,
                )
        except ApiException as e:
            raise _translate(e, f"list {kind.value}") from e
        return resp.get("items", [])

    def get_template(self, kind: RequestKind, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self.custom.get_namespaced_custom_object(
                group=self.api_group,
                version=self.api_version,
                namespace=namespace,
                plural=kind.template_plural,
                name=name,
            )
        except ApiException as e:
            raise _translate(e, f"get {kind.template_kind} {namespace}/{name}") from e

    def read_pod(self, namespace: str, name: str):
        try:
            return self.core.read_namespaced_pod(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, f"get Pod {namespace}/{name}") from e

    def list_pods(self, namespace: str, label_selector: str = "") -> list:
        try:
            resp = self.core.list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        except ApiException as e:
            raise _translate(e, f"list Pods in {namespace}") from e
        return list(resp.items or [])

    # --- WRITE METHODS ---

    def create_request(self, kind: RequestKind, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(body)
        body.setdefault("apiVersion", self.group_version)
        body.setdefault("kind", kind.value)
        try:
            return self.custom.create_namespaced_custom_object(
                group=self.api_group,
                version=self.api_version,
                namespace=namespace,
                plural=kind.plural,
                body=body,
            )
        except ApiException as e:
            raise _translate(e, f"create {kind.value} in {namespace}") from e

    def replace_request_status(
        self, kind: RequestKind, namespace: str, name: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Writes the status subresource. The body carries metadata.resourceVersion,
        so the API server rejects the write with 409 if anyone got there first.
        """
        body = dict(body)
        body.setdefault("apiVersion", self.group_version)
        body.setdefault("kind", kind.value)
        try:
            return self.custom.replace_namespaced_custom_object_status(
                group=self.api_group,
                version=self.api_version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
                body=body,
            )
        except ApiException as e:
            raise _translate(e, f"update status of {kind.value} {namespace}/{name}") from e

    def delete_request(self, kind: RequestKind, namespace: str, name: str) -> bool:
        """
        Deletes a request. Returns False if it was already gone.
        """
        try:
            self.custom.delete_namespaced_custom_object(
                group=self.api_group,
                version=self.api_version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
            )
            self.logger.info(f"Kubernetes API: Deleted {kind.value} {namespace}/{name}")
            return True
        except ApiException as e:
            # If it's already gone, we don't crash.
            if e.status == 404:
                self.logger.warning(f"{kind.value} {namespace}/{name} already deleted. Continuing...")
                return False
            raise _translate(e, f"delete {kind.value} {namespace}/{name}") from e

    def create_or_update_role(self, namespace: str, body: client.V1Role):
        """
        Creates the Role, or brings the existing one of the same name in line
        with body.rules. Names are derived from the owning request, so an
        existing Role is ours, possibly left behind by a pass that picked a
        different target before its status write was lost.
        """
        name = body.metadata.name
        try:
            role = self.rbac.create_namespaced_role(namespace=namespace, body=body)
            self.logger.info(f"Kubernetes API: Created Role {namespace}/{name}")
            return role
        except ApiException as e:
            if e.status != 409:
                raise _translate(e, f"create Role {namespace}/{name}") from e
        try:
            existing = self.rbac.read_namespaced_role(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, f"get Role {namespace}/{name}") from e

        if existing.rules == body.rules:
            self.logger.info(f"Role {namespace}/{name} already exists. Continuing...")
            return existing

        existing.rules = body.rules
        try:
            role = self.rbac.replace_namespaced_role(name=name, namespace=namespace, body=existing)
        except ApiException as e:
            raise _translate(e, f"update Role {namespace}/{name}") from e
        self.logger.info(f"Kubernetes API: Updated rules of existing Role {namespace}/{name}")
        return role

    def get_or_create_role_binding(self, namespace: str, body: client.V1RoleBinding):
        name = body.metadata.name
        try:
            binding = self.rbac.create_namespaced_role_binding(namespace=namespace, body=body)
            self.logger.info(f"Kubernetes API: Created RoleBinding {namespace}/{name}")
            return binding
        except ApiException as e:
            if e.status != 409:
                raise _translate(e, f"create RoleBinding {namespace}/{name}") from e
        self.logger.info(f"RoleBinding {namespace}/{name} already exists. Continuing...")
        try:
            return self.rbac.read_namespaced_role_binding(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, f"get RoleBinding {namespace}/{name}") from e
