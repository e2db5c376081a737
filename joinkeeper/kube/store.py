"""Object store backed by the Kubernetes API server."""
import base64
import logging
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..models import (
    API_VERSION,
    CAPI_GROUP,
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_LABEL,
    CONTROLPLANE_GROUP,
    K0SMOTRON_GROUP,
    Cluster,
    ControlPlane,
    JoinTokenRequest,
    MemberRecord,
    TokenSecret,
)

logger = logging.getLogger("joinkeeper.kube.store")

JOIN_TOKEN_REQUESTS = "jointokenrequests"
CLUSTERS = "clusters"
CONTROL_PLANES = "k0scontrolplanes"
MACHINES = "machines"

MERGE_PATCH = "application/merge-patch+json"
APPLY_PATCH = "application/apply-patch+yaml"


class NotFoundError(LookupError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


def control_plane_selector(cluster_name: str) -> str:
    """Label selector matching the control plane machines of a cluster."""
    return f"{CLUSTER_NAME_LABEL}={cluster_name},{CONTROL_PLANE_LABEL}"


def _fetch(kind: str, namespace: str, name: str, fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except ApiException as e:
        if e.status == 404:
            raise NotFoundError(kind, namespace, name) from e
        raise


class KubeObjectStore:
    """Reads and writes the objects the controllers work on."""

    def __init__(self, api_client: Optional[client.ApiClient] = None, field_manager: str = "joinkeeper"):
        self.custom = client.CustomObjectsApi(api_client)
        self.core = client.CoreV1Api(api_client)
        self.field_manager = field_manager

    # JoinTokenRequest

    def get_join_token_request(self, namespace: str, name: str) -> JoinTokenRequest:
        obj = _fetch("JoinTokenRequest", namespace, name, lambda: self.custom.get_namespaced_custom_object(
            group=K0SMOTRON_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=JOIN_TOKEN_REQUESTS,
            name=name,
        ))
        return JoinTokenRequest.from_dict(obj)

    def update_join_token_request_status(self, jtr: JoinTokenRequest) -> None:
        _fetch("JoinTokenRequest", jtr.namespace, jtr.name, lambda: self.custom.patch_namespaced_custom_object_status(
            group=K0SMOTRON_GROUP,
            version=API_VERSION,
            namespace=jtr.namespace,
            plural=JOIN_TOKEN_REQUESTS,
            name=jtr.name,
            body={"status": jtr.status.to_dict()},
            _content_type=MERGE_PATCH,
        ))

    # Cluster

    def get_cluster(self, namespace: str, name: str) -> Cluster:
        obj = _fetch("Cluster", namespace, name, lambda: self.custom.get_namespaced_custom_object(
            group=K0SMOTRON_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=CLUSTERS,
            name=name,
        ))
        return Cluster.from_dict(obj)

    # Secret

    def apply_secret(self, manifest: Dict[str, Any]) -> None:
        """Create or update a Secret with server-side apply."""
        metadata = manifest["metadata"]
        self.core.patch_namespaced_secret(
            name=metadata["name"],
            namespace=metadata["namespace"],
            body=manifest,
            field_manager=self.field_manager,
            force=True,
            _content_type=APPLY_PATCH,
        )

    def read_token_secret(self, namespace: str, name: str) -> Optional[TokenSecret]:
        """Read back a token Secret, or None if it does not exist."""
        try:
            secret = self.core.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

        encoded = (secret.data or {}).get("token") or ""
        owners = secret.metadata.owner_references or []
        return TokenSecret(
            name=name,
            namespace=namespace,
            token=base64.b64decode(encoded).decode("utf-8") if encoded else "",
            owner_uids=[ref.uid for ref in owners],
        )

    # K0sControlPlane

    def get_control_plane(self, namespace: str, name: str) -> ControlPlane:
        obj = _fetch("K0sControlPlane", namespace, name, lambda: self.custom.get_namespaced_custom_object(
            group=CONTROLPLANE_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=CONTROL_PLANES,
            name=name,
        ))
        return ControlPlane.from_dict(obj)

    def update_control_plane_status(self, cp: ControlPlane) -> None:
        _fetch("K0sControlPlane", cp.namespace, cp.name, lambda: self.custom.patch_namespaced_custom_object_status(
            group=CONTROLPLANE_GROUP,
            version=API_VERSION,
            namespace=cp.namespace,
            plural=CONTROL_PLANES,
            name=cp.name,
            body={"status": cp.status.to_dict()},
            _content_type=MERGE_PATCH,
        ))

    def list_control_plane_machines(self, namespace: str, cluster_name: str) -> List[MemberRecord]:
        result = self.custom.list_namespaced_custom_object(
            group=CAPI_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=MACHINES,
            label_selector=control_plane_selector(cluster_name),
        )
        return [MemberRecord.from_dict(item) for item in result.get("items", [])]
