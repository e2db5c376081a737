"""Clients for workload clusters, built from their Cluster API kubeconfig secrets."""
import base64
import logging
from typing import Optional

import yaml
from kubernetes import client, config

from ..models import ObjectKey

logger = logging.getLogger("joinkeeper.kube.remote")

KUBECONFIG_SECRET_SUFFIX = "-kubeconfig"
KUBECONFIG_SECRET_KEY = "value"


class RemoteClusterClient:
    """Minimal read access to a workload cluster."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def read_namespace(self, name: str, timeout: float) -> None:
        self.core.read_namespace(name=name, _request_timeout=timeout)

    def close(self) -> None:
        self.api_client.close()


class RemoteClusterConnector:
    """Builds a RemoteClusterClient for a cluster from its kubeconfig secret."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.core = client.CoreV1Api(api_client)

    def connect(self, cluster: ObjectKey) -> RemoteClusterClient:
        secret_name = f"{cluster.name}{KUBECONFIG_SECRET_SUFFIX}"
        secret = self.core.read_namespaced_secret(name=secret_name, namespace=cluster.namespace)

        encoded = (secret.data or {}).get(KUBECONFIG_SECRET_KEY)
        if not encoded:
            raise ValueError(f"secret {cluster.namespace}/{secret_name} has no {KUBECONFIG_SECRET_KEY!r} key")

        kubeconfig = yaml.safe_load(base64.b64decode(encoded))
        api_client = config.new_client_from_config_dict(kubeconfig, persist_config=False)
        return RemoteClusterClient(api_client)
