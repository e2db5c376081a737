import base64
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from joinkeeper.kube.client import load_kubeconfig
from joinkeeper.kube.exec import PodNotFoundError, StatefulSetPodLocator, statefulset_name
from joinkeeper.kube.remote import RemoteClusterConnector
from joinkeeper.kube.store import KubeObjectStore, NotFoundError
from joinkeeper.models import ObjectKey

JTR_OBJECT = {
    "metadata": {
        "name": "join-worker",
        "namespace": "default",
        "uid": "jtr-uid",
        "labels": {"team": "a"},
    },
    "spec": {"role": "worker", "clusterRef": {"name": "hosted"}},
}


@pytest.fixture
def kube_store():
    store = KubeObjectStore(field_manager="test")
    store.custom = MagicMock()
    store.core = MagicMock()
    return store


def test_get_join_token_request_parses_object(kube_store):
    kube_store.custom.get_namespaced_custom_object.return_value = JTR_OBJECT

    jtr = kube_store.get_join_token_request("default", "join-worker")

    assert jtr.spec.cluster_ref.namespace == "default"
    assert jtr.spec.expiry == "0s"
    assert jtr.uid == "jtr-uid"
    assert jtr.labels == {"team": "a"}
    assert jtr.status.token_id == ""


def test_missing_objects_raise_not_found(kube_store):
    kube_store.custom.get_namespaced_custom_object.side_effect = ApiException(status=404)
    with pytest.raises(NotFoundError):
        kube_store.get_cluster("default", "hosted")


def test_other_api_errors_propagate(kube_store):
    kube_store.custom.get_namespaced_custom_object.side_effect = ApiException(status=500)
    with pytest.raises(ApiException):
        kube_store.get_join_token_request("default", "join-worker")


def test_status_update_patches_status_subresource(kube_store):
    kube_store.custom.get_namespaced_custom_object.return_value = JTR_OBJECT
    jtr = kube_store.get_join_token_request("default", "join-worker")
    jtr.status.token_id = "abcdef"

    kube_store.update_join_token_request_status(jtr)

    kwargs = kube_store.custom.patch_namespaced_custom_object_status.call_args.kwargs
    assert kwargs["body"]["status"]["tokenID"] == "abcdef"
    assert kwargs["_content_type"] == "application/merge-patch+json"


def test_apply_secret_uses_server_side_apply(kube_store):
    kube_store.apply_secret({"metadata": {"name": "s", "namespace": "default"}})

    kwargs = kube_store.core.patch_namespaced_secret.call_args.kwargs
    assert kwargs["field_manager"] == "test"
    assert kwargs["force"] is True
    assert kwargs["_content_type"] == "application/apply-patch+yaml"


def test_read_token_secret(kube_store):
    kube_store.core.read_namespaced_secret.return_value = SimpleNamespace(
        data={"token": base64.b64encode(b"encoded-token").decode()},
        metadata=SimpleNamespace(owner_references=[SimpleNamespace(uid="jtr-uid")]),
    )

    secret = kube_store.read_token_secret("default", "s")

    assert secret.token == "encoded-token"
    assert secret.owned_by("jtr-uid")
    assert not secret.owned_by("other-uid")
    assert not secret.owned_by("")


def test_read_token_secret_without_data(kube_store):
    kube_store.core.read_namespaced_secret.return_value = SimpleNamespace(
        data=None, metadata=SimpleNamespace(owner_references=None),
    )

    secret = kube_store.read_token_secret("default", "s")

    assert secret.token == ""
    assert secret.owner_uids == []


def test_read_missing_token_secret(kube_store):
    kube_store.core.read_namespaced_secret.side_effect = ApiException(status=404)
    assert kube_store.read_token_secret("default", "s") is None

    kube_store.core.read_namespaced_secret.side_effect = ApiException(status=403)
    with pytest.raises(ApiException):
        kube_store.read_token_secret("default", "s")


def test_list_control_plane_machines(kube_store):
    kube_store.custom.list_namespaced_custom_object.return_value = {"items": [
        {"metadata": {"name": "m0"}, "spec": {"version": "v1.2.3+k0s.0"}, "status": {"phase": "Running"}},
        {"metadata": {"name": "m1"}, "spec": {}},
    ]}

    members = kube_store.list_control_plane_machines("default", "hosted")

    assert [(m.name, m.phase, m.version) for m in members] == [("m0", "Running", "v1.2.3+k0s.0"), ("m1", "", "")]
    kwargs = kube_store.custom.list_namespaced_custom_object.call_args.kwargs
    assert kwargs["label_selector"] == "cluster.x-k8s.io/cluster-name=hosted,cluster.x-k8s.io/control-plane"


def pod(name, phase="Running", deleting=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, deletion_timestamp=deleting),
        status=SimpleNamespace(phase=phase),
    )


def make_locator(pods):
    locator = StatefulSetPodLocator()
    locator.apps = MagicMock()
    locator.core = MagicMock()
    locator.apps.read_namespaced_stateful_set.return_value = SimpleNamespace(
        spec=SimpleNamespace(selector=SimpleNamespace(match_labels={"app": "k0smotron", "cluster": "hosted"}))
    )
    locator.core.list_namespaced_pod.return_value = SimpleNamespace(items=pods)
    return locator


def test_statefulset_name():
    assert statefulset_name("hosted") == "kmc-hosted"


def test_locator_picks_first_running_pod():
    locator = make_locator([pod("kmc-hosted-2"), pod("kmc-hosted-0", deleting="now"), pod("kmc-hosted-1")])

    assert locator.find_pod("default", "kmc-hosted").name == "kmc-hosted-1"
    kwargs = locator.core.list_namespaced_pod.call_args.kwargs
    assert kwargs["label_selector"] == "app=k0smotron,cluster=hosted"


def test_locator_without_running_pods():
    with pytest.raises(PodNotFoundError):
        make_locator([pod("kmc-hosted-0", phase="Pending")]).find_pod("default", "kmc-hosted")


def test_locator_without_statefulset():
    locator = make_locator([])
    locator.apps.read_namespaced_stateful_set.side_effect = ApiException(status=404)
    with pytest.raises(PodNotFoundError):
        locator.find_pod("default", "kmc-hosted")


def test_connector_requires_kubeconfig_value():
    connector = RemoteClusterConnector()
    connector.core = MagicMock()
    connector.core.read_namespaced_secret.return_value = SimpleNamespace(data={"other": "eA=="})

    with pytest.raises(ValueError):
        connector.connect(ObjectKey("default", "hosted"))
    assert connector.core.read_namespaced_secret.call_args.kwargs == {"name": "hosted-kubeconfig", "namespace": "default"}


def test_connector_builds_client_from_secret():
    kubeconfig = b"""
apiVersion: v1
kind: Config
clusters:
- name: hosted
  cluster: {server: "https://10.0.0.1:6443"}
users:
- name: admin
  user: {token: secret}
contexts:
- name: admin@hosted
  context: {cluster: hosted, user: admin}
current-context: admin@hosted
"""
    connector = RemoteClusterConnector()
    connector.core = MagicMock()
    connector.core.read_namespaced_secret.return_value = SimpleNamespace(
        data={"value": base64.b64encode(kubeconfig).decode()}
    )

    with connector.connect(ObjectKey("default", "hosted")) as remote:
        assert remote.api_client.configuration.host == "https://10.0.0.1:6443"


def test_load_kubeconfig_missing_path(monkeypatch, tmp_path):
    monkeypatch.delenv("KUBECONFIG_CONTENT", raising=False)
    with pytest.raises(FileNotFoundError):
        load_kubeconfig(str(tmp_path / "absent"))
