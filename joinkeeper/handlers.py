"""kopf wiring for the two controllers.

JoinTokenRequests are handled on resume, create and update, and finalized by
a delete handler. kopf's own finalizer is renamed to the k0smotron one, so it
is attached before the first issuance and only released once the delete
handler has invalidated the token. K0sControlPlanes are refreshed by a timer.
"""
import logging
import threading
from typing import Any, Callable, Optional

import kopf
from kubernetes import client

from .config import ControllerConfig, OperatorConfig
from .controllers.controlplane import ControlPlaneStatusReconciler
from .controllers.jointoken import FINALIZER, JoinTokenRequestReconciler
from .kube.exec import PodExecutor, StatefulSetPodLocator
from .kube.remote import RemoteClusterConnector
from .kube.store import CONTROL_PLANES, JOIN_TOKEN_REQUESTS, KubeObjectStore
from .models import API_VERSION, CONTROLPLANE_GROUP, K0SMOTRON_GROUP, ObjectKey

logger = logging.getLogger("joinkeeper.handlers")

ANNOTATION_PREFIX = "joinkeeper.k0smotron.io"


class OperatorState:
    """Flags shared between the kopf loop and the health endpoints."""

    def __init__(self):
        self.ready_flag = threading.Event()
        self.stop_flag = threading.Event()
        self.running = threading.Event()

    def healthy(self) -> bool:
        return self.running.is_set()

    def ready(self) -> bool:
        return self.running.is_set() and self.ready_flag.is_set() and not self.stop_flag.is_set()


def join_token_handler(reconciler: JoinTokenRequestReconciler) -> Callable[..., None]:
    def handle(name: str, namespace: str, **_: Any) -> None:
        reconciler.reconcile(ObjectKey(namespace, name))
    return handle


def join_token_finalizer(reconciler: JoinTokenRequestReconciler) -> Callable[..., None]:
    def handle(name: str, namespace: str, **_: Any) -> None:
        reconciler.finalize(ObjectKey(namespace, name))
    return handle


def control_plane_handler(reconciler: ControlPlaneStatusReconciler) -> Callable[..., None]:
    def handle(name: str, namespace: str, **_: Any) -> None:
        reconciler.reconcile(ObjectKey(namespace, name))
    return handle


def login_from_client_config(**_: Any) -> kopf.ConnectionInfo:
    """Hand kopf the credentials already loaded into the kubernetes client.

    kopf's stock login reloads the default kubeconfig, which would ignore an
    explicit path or KUBECONFIG_CONTENT.
    """
    config = client.Configuration.get_default_copy()
    header = config.api_key.get("authorization") or config.api_key.get("BearerToken")
    if header and config.api_key_prefix.get("authorization"):
        header = f"{config.api_key_prefix['authorization']} {header}"
    parts = header.split(" ", 1) if header else []
    scheme, token = (parts[0], parts[1]) if len(parts) == 2 else (None, parts[0] if parts else None)

    return kopf.ConnectionInfo(
        server=config.host,
        ca_path=config.ssl_ca_cert,
        insecure=not config.verify_ssl,
        username=config.username or None,
        password=config.password or None,
        scheme=scheme,
        token=token,
        certificate_path=config.cert_file,
        private_key_path=config.key_file,
    )


def configure_settings(settings: kopf.OperatorSettings, operator: OperatorConfig) -> kopf.OperatorSettings:
    settings.persistence.finalizer = FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=ANNOTATION_PREFIX)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=ANNOTATION_PREFIX)
    settings.execution.max_workers = operator.max_workers
    settings.watching.server_timeout = operator.resync_period
    settings.posting.level = logging.WARNING
    return settings


def build_registry(config: ControllerConfig, api_client: Optional[client.ApiClient] = None) -> kopf.OperatorRegistry:
    """Register both controllers' handlers against the management cluster."""
    operator = config.operator
    registry = kopf.OperatorRegistry()
    store = KubeObjectStore(api_client, field_manager=operator.field_manager)

    join_tokens = JoinTokenRequestReconciler(
        store,
        StatefulSetPodLocator(api_client),
        PodExecutor(api_client),
        retry_delay=operator.retry_delay,
    )
    control_planes = ControlPlaneStatusReconciler(
        store,
        RemoteClusterConnector(api_client),
        probe_timeout=operator.probe_timeout,
    )

    jtr = (K0SMOTRON_GROUP, API_VERSION, JOIN_TOKEN_REQUESTS)
    reconcile = join_token_handler(join_tokens)
    kopf.on.resume(*jtr, id="issue-on-resume", registry=registry, backoff=operator.retry_delay)(reconcile)
    kopf.on.create(*jtr, id="issue", registry=registry, backoff=operator.retry_delay)(reconcile)
    kopf.on.update(*jtr, id="issue-on-update", registry=registry, backoff=operator.retry_delay)(reconcile)
    kopf.on.delete(*jtr, id="invalidate", registry=registry, backoff=operator.retry_delay)(
        join_token_finalizer(join_tokens))

    kopf.timer(
        CONTROLPLANE_GROUP, API_VERSION, CONTROL_PLANES,
        id="refresh-status",
        registry=registry,
        interval=operator.retry_delay,
        backoff=operator.retry_delay,
    )(control_plane_handler(control_planes))

    kopf.on.login(registry=registry)(login_from_client_config)
    return registry


def run_operator(config: ControllerConfig, state: OperatorState, health_server=None) -> None:
    """Run kopf in the calling thread until it is stopped or signalled."""
    operator = config.operator
    registry = build_registry(config)
    settings = configure_settings(kopf.OperatorSettings(), operator)

    health_thread = None
    if health_server is not None:
        health_thread = threading.Thread(target=health_server.run, name="health", daemon=True)
        health_thread.start()

    logger.info(f"Watching {operator.namespace or 'all namespaces'}")
    state.running.set()
    try:
        kopf.run(
            registry=registry,
            settings=settings,
            standalone=True,
            clusterwide=not operator.namespace,
            namespaces=[operator.namespace] if operator.namespace else [],
            ready_flag=state.ready_flag,
            stop_flag=state.stop_flag,
        )
    finally:
        state.running.clear()
        if health_server is not None:
            health_server.should_exit = True
            health_thread.join(timeout=5)
        logger.info("Operator stopped")
