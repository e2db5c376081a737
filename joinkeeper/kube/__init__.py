"""Kubernetes-backed implementations of the controllers' collaborators."""

from .client import load_kubeconfig
from .exec import ExecError, PodExecutor, PodNotFoundError, StatefulSetPodLocator, statefulset_name
from .remote import RemoteClusterClient, RemoteClusterConnector
from .store import KubeObjectStore, NotFoundError, control_plane_selector

__all__ = [
    'ExecError',
    'KubeObjectStore',
    'NotFoundError',
    'PodExecutor',
    'PodNotFoundError',
    'RemoteClusterClient',
    'RemoteClusterConnector',
    'StatefulSetPodLocator',
    'control_plane_selector',
    'load_kubeconfig',
    'statefulset_name',
]
