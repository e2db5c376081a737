import copy

import pytest
import yaml

from joinkeeper.kube.exec import ExecError, PodNotFoundError
from joinkeeper.kube.store import NotFoundError
from joinkeeper.models import (
    Cluster,
    ClusterRef,
    JoinTokenRequest,
    JoinTokenRequestSpec,
    PodRef,
    TokenSecret,
)
from joinkeeper.tokens import codec

CONTROLLER_TOKEN = "abcdef.0123456789abcdef"
WORKER_TOKEN = "uvwxyz.fedcba9876543210"


def make_kubeconfig(server="https://172.17.0.2:30443", cluster_name="k0s"):
    document = {
        "apiVersion": "v1",
        "clusters": [{
            "name": cluster_name,
            "cluster": {
                "server": server,
                "certificate-authority-data": "Y2EtZGF0YQ==",
            },
        }],
        "contexts": [{
            "name": "k0s",
            "context": {"cluster": cluster_name, "user": "kubelet-bootstrap"},
        }],
        "current-context": "k0s",
        "kind": "Config",
        "preferences": {},
        "users": [
            {"name": "kubelet-bootstrap", "user": {"token": WORKER_TOKEN}},
            {"name": "controller-bootstrap", "user": {"token": CONTROLLER_TOKEN}},
        ],
    }
    return yaml.safe_dump(document, sort_keys=False).encode("utf-8")


class FakeStore:
    """In-memory object store; every read returns a fresh copy."""

    def __init__(self):
        self.requests = {}
        self.clusters = {}
        self.secrets = {}
        self.control_planes = {}
        self.machines = {}
        self.status_updates = []
        self.fail_cluster_get = None
        self.fail_secret_apply = None
        self.fail_status_update = None
        self.fail_machine_list = None

    def add_request(self, jtr):
        self.requests[jtr.key] = copy.deepcopy(jtr)

    def get_join_token_request(self, namespace, name):
        try:
            return copy.deepcopy(self.requests[(namespace, name)])
        except KeyError:
            raise NotFoundError("JoinTokenRequest", namespace, name)

    def update_join_token_request_status(self, jtr):
        if self.fail_status_update:
            raise self.fail_status_update
        self.status_updates.append(copy.deepcopy(jtr.status))
        self.requests[jtr.key].status = copy.deepcopy(jtr.status)

    def get_cluster(self, namespace, name):
        if self.fail_cluster_get:
            raise self.fail_cluster_get
        try:
            return copy.deepcopy(self.clusters[(namespace, name)])
        except KeyError:
            raise NotFoundError("Cluster", namespace, name)

    def apply_secret(self, manifest):
        if self.fail_secret_apply:
            raise self.fail_secret_apply
        metadata = manifest["metadata"]
        self.secrets[(metadata["namespace"], metadata["name"])] = copy.deepcopy(manifest)

    def read_token_secret(self, namespace, name):
        manifest = self.secrets.get((namespace, name))
        if manifest is None:
            return None
        return TokenSecret(
            name=name,
            namespace=namespace,
            token=manifest.get("stringData", {}).get("token", ""),
            owner_uids=[ref["uid"] for ref in manifest["metadata"].get("ownerReferences", [])],
        )

    def get_control_plane(self, namespace, name):
        try:
            return copy.deepcopy(self.control_planes[(namespace, name)])
        except KeyError:
            raise NotFoundError("K0sControlPlane", namespace, name)

    def update_control_plane_status(self, cp):
        self.control_planes[cp.key].status = copy.deepcopy(cp.status)

    def list_control_plane_machines(self, namespace, cluster_name):
        if self.fail_machine_list:
            raise self.fail_machine_list
        return copy.deepcopy(self.machines.get((namespace, cluster_name), []))


class FakePodLocator:
    def __init__(self):
        self.pods = {}
        self.lookups = []

    def find_pod(self, namespace, name):
        self.lookups.append((namespace, name))
        try:
            return self.pods[(namespace, name)]
        except KeyError:
            raise PodNotFoundError(f"no running pods in StatefulSet {namespace}/{name}")


class FakeExecutor:
    """Answers `k0s token create` with a prepared token and records every command."""

    def __init__(self, token):
        self.token = token
        self.commands = []
        self.fail_with = None

    def exec(self, pod, command):
        self.commands.append((pod.name, command))
        if self.fail_with:
            raise self.fail_with
        if command.startswith("k0s token create"):
            return self.token + "\n"
        return ""


class FakeRemote:
    def __init__(self, error=None):
        self.error = error
        self.reads = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    def read_namespace(self, name, timeout):
        self.reads.append((name, timeout))
        if self.error:
            raise self.error


class FakeConnector:
    def __init__(self, remote=None, error=None):
        self.remote = remote or FakeRemote()
        self.error = error
        self.connected = []

    def connect(self, cluster):
        self.connected.append(cluster)
        if self.error:
            raise self.error
        return self.remote


@pytest.fixture
def kubeconfig():
    return make_kubeconfig()


@pytest.fixture
def issued_token(kubeconfig):
    """A token as printed by `k0s token create`."""
    return codec.encode(kubeconfig)


@pytest.fixture
def store():
    store = FakeStore()
    store.clusters[("default", "hosted")] = Cluster(
        name="hosted", namespace="default", uid="cluster-uid-1", api_port=6443
    )
    return store


@pytest.fixture
def pod_locator():
    locator = FakePodLocator()
    locator.pods[("default", "kmc-hosted")] = PodRef(name="kmc-hosted-0", namespace="default")
    return locator


@pytest.fixture
def executor(issued_token):
    return FakeExecutor(issued_token)


@pytest.fixture
def make_request():
    def _make(name="join-worker", role="worker", expiry="1h", **kwargs):
        return JoinTokenRequest(
            name=name,
            namespace="default",
            uid=f"{name}-uid",
            spec=JoinTokenRequestSpec(
                role=role,
                expiry=expiry,
                cluster_ref=ClusterRef(name="hosted", namespace="default"),
            ),
            **kwargs,
        )
    return _make


@pytest.fixture
def exec_error():
    return ExecError("command k0s exited with 1: boom", stderr="boom", exit_code=1)
