"""Running commands inside control plane pods."""
import logging
import shlex
from typing import List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from ..models import PodRef

logger = logging.getLogger("joinkeeper.kube.exec")

STATEFULSET_PREFIX = "kmc-"


class PodNotFoundError(LookupError):
    """No pod is available to run commands in."""
    pass


class ExecError(RuntimeError):
    """A command run inside a pod failed."""

    def __init__(self, message: str, stderr: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.exit_code = exit_code


def statefulset_name(cluster_name: str) -> str:
    """Name of the StatefulSet running a hosted cluster's controllers."""
    return f"{STATEFULSET_PREFIX}{cluster_name}"


class StatefulSetPodLocator:
    """Finds a running pod belonging to a StatefulSet."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.apps = client.AppsV1Api(api_client)
        self.core = client.CoreV1Api(api_client)

    def find_pod(self, namespace: str, name: str) -> PodRef:
        try:
            sts = self.apps.read_namespaced_stateful_set(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                raise PodNotFoundError(f"StatefulSet {namespace}/{name} not found") from e
            raise

        match_labels = (sts.spec.selector.match_labels or {}) if sts.spec.selector else {}
        selector = ",".join(f"{k}={v}" for k, v in sorted(match_labels.items()))
        pods = self.core.list_namespaced_pod(namespace=namespace, label_selector=selector).items

        for pod in sorted(pods, key=lambda p: p.metadata.name):
            if pod.status and pod.status.phase == "Running" and not pod.metadata.deletion_timestamp:
                return PodRef(name=pod.metadata.name, namespace=namespace)

        raise PodNotFoundError(f"no running pods in StatefulSet {namespace}/{name}")


class PodExecutor:
    """Runs a command in a pod and returns its stdout."""

    def __init__(self, api_client: Optional[client.ApiClient] = None, timeout: int = 120):
        self.core = client.CoreV1Api(api_client)
        self.timeout = timeout

    def exec(self, pod: PodRef, command: str) -> str:
        """Run ``command`` in ``pod``.

        Raises:
            ExecError: If the stream fails or the command exits non-zero
        """
        argv: List[str] = shlex.split(command)
        logger.debug("Executing in %s/%s: %s", pod.namespace, pod.name, argv[:3])

        try:
            resp = stream(
                self.core.connect_get_namespaced_pod_exec,
                pod.name,
                pod.namespace,
                command=argv,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except ApiException as e:
            raise ExecError(f"exec in {pod.namespace}/{pod.name} failed: {e.reason}") from e

        stdout: List[str] = []
        stderr: List[str] = []
        try:
            resp.run_forever(timeout=self.timeout)
            if resp.is_open():
                raise ExecError(f"command {argv[0]} timed out after {self.timeout}s")
            stdout.append(resp.read_stdout())
            stderr.append(resp.read_stderr())
            exit_code = resp.returncode
        finally:
            resp.close()

        if exit_code:
            err = "".join(stderr).strip()
            raise ExecError(f"command {argv[0]} exited with {exit_code}: {err}",
                            stderr=err, exit_code=exit_code)

        return "".join(stdout)
