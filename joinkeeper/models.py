"""
Data models for join token requests and control plane status.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

K0SMOTRON_GROUP = "k0smotron.io"
CONTROLPLANE_GROUP = "controlplane.cluster.x-k8s.io"
CAPI_GROUP = "cluster.x-k8s.io"
API_VERSION = "v1beta1"

DEFAULT_API_PORT = 30443
DEFAULT_EXPIRY = "0s"
DEFAULT_RETRY_DELAY = 60.0

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"


class ObjectKey(NamedTuple):
    """Namespace/name identity of a namespaced object."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class TokenRole(str, Enum):
    """Roles a join token can be issued for.

    Unknown values resolve to UNSUPPORTED instead of raising, so a request
    carrying a future role still parses and fails later with a typed error.
    """
    CONTROLLER = 'controller'
    WORKER = 'worker'
    UNSUPPORTED = 'unsupported'

    @classmethod
    def _missing_(cls, value):
        return cls.UNSUPPORTED


class MachinePhase(str, Enum):
    """Cluster API machine phases."""
    PENDING = 'Pending'
    PROVISIONING = 'Provisioning'
    PROVISIONED = 'Provisioned'
    RUNNING = 'Running'
    DELETING = 'Deleting'
    DELETED = 'Deleted'
    FAILED = 'Failed'
    UNKNOWN = 'Unknown'


@dataclass
class ClusterRef:
    name: str
    namespace: str


@dataclass
class JoinTokenRequestSpec:
    role: str
    cluster_ref: ClusterRef
    expiry: str = DEFAULT_EXPIRY

    @property
    def token_role(self) -> TokenRole:
        return TokenRole(self.role)


@dataclass
class JoinTokenRequestStatus:
    token_id: str = ''
    cluster_uid: str = ''
    reconciliation_status: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {
            'tokenID': self.token_id,
            'clusterUID': self.cluster_uid,
            'reconciliationStatus': self.reconciliation_status,
        }


@dataclass
class JoinTokenRequest:
    """A declared request for a cluster join token."""
    name: str
    namespace: str
    spec: JoinTokenRequestSpec
    status: JoinTokenRequestStatus = field(default_factory=JoinTokenRequestStatus)
    uid: str = ''
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    deletion_timestamp: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def being_deleted(self) -> bool:
        return bool(self.deletion_timestamp)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'JoinTokenRequest':
        """Build a request from a custom object as returned by the API server."""
        metadata = obj.get('metadata', {})
        spec = obj.get('spec', {})
        status = obj.get('status') or {}
        ref = spec.get('clusterRef', {})
        namespace = metadata.get('namespace', '')

        return cls(
            name=metadata['name'],
            namespace=namespace,
            uid=metadata.get('uid', ''),
            labels=dict(metadata.get('labels') or {}),
            annotations=dict(metadata.get('annotations') or {}),
            deletion_timestamp=metadata.get('deletionTimestamp'),
            spec=JoinTokenRequestSpec(
                role=spec.get('role', ''),
                expiry=spec.get('expiry') or DEFAULT_EXPIRY,
                cluster_ref=ClusterRef(
                    name=ref.get('name', ''),
                    namespace=ref.get('namespace') or namespace,
                ),
            ),
            status=JoinTokenRequestStatus(
                token_id=status.get('tokenID', ''),
                cluster_uid=status.get('clusterUID', ''),
                reconciliation_status=status.get('reconciliationStatus', ''),
            ),
        )


@dataclass
class Cluster:
    """A hosted k0s control plane, read only from this controller's side."""
    name: str
    namespace: str
    uid: str = ''
    api_port: int = DEFAULT_API_PORT

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'Cluster':
        metadata = obj.get('metadata', {})
        service = obj.get('spec', {}).get('service') or {}
        return cls(
            name=metadata['name'],
            namespace=metadata.get('namespace', ''),
            uid=metadata.get('uid', ''),
            api_port=int(service.get('apiPort') or DEFAULT_API_PORT),
        )


@dataclass
class PodRef:
    name: str
    namespace: str


@dataclass
class TokenSecret:
    """The Secret a token was projected into, as read back from the API server."""
    name: str
    namespace: str
    token: str = ''
    owner_uids: List[str] = field(default_factory=list)

    def owned_by(self, uid: str) -> bool:
        return bool(uid) and uid in self.owner_uids


@dataclass
class MemberRecord:
    """One control plane member as seen through its Machine object."""
    name: str
    phase: str = MachinePhase.PENDING.value
    version: str = ''

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'MemberRecord':
        return cls(
            name=obj.get('metadata', {}).get('name', ''),
            phase=(obj.get('status') or {}).get('phase', ''),
            version=obj.get('spec', {}).get('version') or '',
        )


@dataclass
class ControlPlaneSpec:
    version: str = ''
    args: List[str] = field(default_factory=list)


@dataclass
class Condition:
    """A named boolean-with-reason status entry."""
    type: str
    status: str
    severity: str = ''
    reason: str = ''
    message: str = ''
    last_transition_time: str = ''

    def to_dict(self) -> Dict[str, str]:
        data = {
            'type': self.type,
            'status': self.status,
            'lastTransitionTime': self.last_transition_time,
        }
        if self.severity:
            data['severity'] = self.severity
        if self.reason:
            data['reason'] = self.reason
        if self.message:
            data['message'] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Condition':
        return cls(
            type=data['type'],
            status=data.get('status', 'Unknown'),
            severity=data.get('severity', ''),
            reason=data.get('reason', ''),
            message=data.get('message', ''),
            last_transition_time=data.get('lastTransitionTime', ''),
        )


@dataclass
class ControlPlaneStatus:
    replicas: int = 0
    ready_replicas: int = 0
    updated_replicas: int = 0
    unavailable_replicas: int = 0
    version: str = ''
    external_managed_control_plane: bool = False
    ready: bool = False
    control_plane_ready: bool = False
    initialized: bool = False
    selector: str = ''
    conditions: List[Condition] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition: Condition) -> None:
        """Insert or replace a condition, keeping the transition time when status is unchanged."""
        existing = self.get_condition(condition.type)
        if existing is not None and existing.status == condition.status:
            condition = replace(condition, last_transition_time=existing.last_transition_time)
        elif not condition.last_transition_time:
            now = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
            condition = replace(condition, last_transition_time=now)

        others = [c for c in self.conditions if c.type != condition.type]
        self.conditions = sorted(others + [condition], key=lambda c: c.type)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'replicas': self.replicas,
            'readyReplicas': self.ready_replicas,
            'updatedReplicas': self.updated_replicas,
            'unavailableReplicas': self.unavailable_replicas,
            'externalManagedControlPlane': self.external_managed_control_plane,
            'ready': self.ready,
            'controlPlaneReady': self.control_plane_ready,
            'initialized': self.initialized,
            'conditions': [c.to_dict() for c in self.conditions],
        }
        if self.version:
            data['version'] = self.version
        if self.selector:
            data['selector'] = self.selector
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ControlPlaneStatus':
        data = data or {}
        return cls(
            replicas=data.get('replicas', 0),
            ready_replicas=data.get('readyReplicas', 0),
            updated_replicas=data.get('updatedReplicas', 0),
            unavailable_replicas=data.get('unavailableReplicas', 0),
            version=data.get('version', ''),
            external_managed_control_plane=data.get('externalManagedControlPlane', False),
            ready=data.get('ready', False),
            control_plane_ready=data.get('controlPlaneReady', False),
            initialized=data.get('initialized', False),
            selector=data.get('selector', ''),
            conditions=[Condition.from_dict(c) for c in data.get('conditions') or []],
        )


@dataclass
class ControlPlane:
    """A K0sControlPlane object."""
    name: str
    namespace: str
    spec: ControlPlaneSpec = field(default_factory=ControlPlaneSpec)
    status: ControlPlaneStatus = field(default_factory=ControlPlaneStatus)
    labels: Dict[str, str] = field(default_factory=dict)
    owner_references: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def cluster_name(self) -> Optional[str]:
        """Name of the owning Cluster API cluster, from its label or owner reference."""
        if self.labels.get(CLUSTER_NAME_LABEL):
            return self.labels[CLUSTER_NAME_LABEL]
        for ref in self.owner_references:
            if ref.get('kind') == 'Cluster' and ref.get('apiVersion', '').startswith(CAPI_GROUP + '/'):
                return ref.get('name')
        return None

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'ControlPlane':
        metadata = obj.get('metadata', {})
        spec = obj.get('spec', {})
        k0s_config = spec.get('k0sConfigSpec') or {}
        return cls(
            name=metadata['name'],
            namespace=metadata.get('namespace', ''),
            labels=dict(metadata.get('labels') or {}),
            owner_references=list(metadata.get('ownerReferences') or []),
            spec=ControlPlaneSpec(
                version=spec.get('version', ''),
                args=list(k0s_config.get('args') or []),
            ),
            status=ControlPlaneStatus.from_dict(obj.get('status')),
        )
