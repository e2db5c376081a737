"""JoinTokenRequest reconciliation.

A request moves through four states:

- Pending: no token issued yet. A token is created inside one of the hosted
  cluster's controller pods, its API port is rewritten to the externally
  reachable one, and it is projected into a Secret owned by the request.
- Issued: status.tokenID is set. Nothing is re-issued.
- Deleting: the request is being deleted and still carries the finalizer.
  The token is invalidated; the finalizer is released only after that
  succeeds.
- Gone: the finalizer is released and the API server removes the object.

The finalizer itself is owned by the operator runtime (see
joinkeeper.handlers), which adds it before the first issuance and removes it
once ``finalize`` returns without raising.
"""
import logging
import shlex
from typing import Any, Dict, NoReturn, Optional

import kopf
from kubernetes.client.rest import ApiException

from ..kube.exec import ExecError, PodNotFoundError, statefulset_name
from ..kube.store import NotFoundError
from ..models import (
    API_VERSION,
    DEFAULT_RETRY_DELAY,
    K0SMOTRON_GROUP,
    JoinTokenRequest,
    JoinTokenRequestSpec,
    ObjectKey,
    PodRef,
)
from ..tokens.codec import (
    ClientConfig,
    ConfigurationError,
    TokenCodecError,
    bootstrap_user,
    decode,
    extract_token_id,
    replace_token_port,
)

logger = logging.getLogger("joinkeeper.jointoken")

FINALIZER = "jointokenrequests.k0smotron.io/finalizer"

CLUSTER_LABEL = "k0smotron.io/cluster"
CLUSTER_UID_LABEL = "k0smotron.io/cluster-uid"
ROLE_LABEL = "k0smotron.io/role"
TOKEN_REQUEST_LABEL = "k0smotron.io/token-request"

STATUS_SUCCESS = "Reconciliation successful"
STATUS_CLUSTER_FAILED = "Failed getting cluster"
STATUS_POD_FAILED = "Failed finding pods in statefulset"
STATUS_TOKEN_FAILED = "Failed getting token"
STATUS_URL_FAILED = "Failed update token URL"
STATUS_SECRET_FAILED = "Failed creating secret"
STATUS_TOKEN_ID_FAILED = "Failed getting token id"
STATUS_INVALIDATE_FAILED = "Failed invalidating token"
STATUS_SECRET_MISSING = "Token secret missing"


def create_command(spec: JoinTokenRequestSpec) -> str:
    return f"k0s token create --role={shlex.quote(spec.role)} --expiry={shlex.quote(spec.expiry)}"


def invalidate_command(token_id: str) -> str:
    return f"k0s token invalidate {shlex.quote(token_id)}"


def generate_secret(jtr: JoinTokenRequest, token: str) -> Dict[str, Any]:
    """Build the Secret manifest that carries an issued token.

    User labels are copied first so the fixed labels always win.
    """
    labels = dict(jtr.labels)
    labels.update({
        CLUSTER_LABEL: jtr.spec.cluster_ref.name,
        CLUSTER_UID_LABEL: jtr.status.cluster_uid,
        ROLE_LABEL: jtr.spec.role,
        TOKEN_REQUEST_LABEL: jtr.name,
    })

    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": jtr.name,
            "namespace": jtr.namespace,
            "labels": labels,
            "annotations": dict(jtr.annotations),
            "ownerReferences": [{
                "apiVersion": f"{K0SMOTRON_GROUP}/{API_VERSION}",
                "kind": "JoinTokenRequest",
                "name": jtr.name,
                "uid": jtr.uid,
                "controller": True,
                "blockOwnerDeletion": True,
            }],
        },
        "type": "Opaque",
        "stringData": {
            "token": token,
        },
    }


class JoinTokenRequestReconciler:
    """Drives JoinTokenRequest objects through token issuance and invalidation.

    Soft failures raise ``kopf.TemporaryError`` with ``retry_delay``; failures
    that retrying cannot fix raise ``kopf.PermanentError``.

    Args:
        store: Object store (see joinkeeper.kube.store.KubeObjectStore)
        pod_locator: Finds a pod of the hosted cluster's StatefulSet
        executor: Runs k0s commands inside that pod
        retry_delay: Seconds before a soft failure is retried
    """

    def __init__(self, store, pod_locator, executor, retry_delay: float = DEFAULT_RETRY_DELAY):
        self.store = store
        self.pod_locator = pod_locator
        self.executor = executor
        self.retry_delay = retry_delay

    def reconcile(self, key: ObjectKey) -> None:
        jtr = self._get(key)
        if jtr is None or jtr.being_deleted:
            return

        if jtr.status.token_id:
            logger.debug(f"JoinTokenRequest {key} already reconciled")
            self._check_secret(jtr)
            return

        self._issue(jtr)

    def finalize(self, key: ObjectKey) -> None:
        """Invalidate the issued token.

        Raising keeps the finalizer in place, so the request stays around
        until a retry succeeds.
        """
        jtr = self._get(key)
        if jtr is None or not jtr.status.token_id:
            return

        if self._cluster_gone(jtr):
            logger.info(f"Cluster of {jtr.key} is gone, token {jtr.status.token_id} went with it")
            return

        pod = self._find_pod(jtr)
        try:
            self.executor.exec(pod, invalidate_command(jtr.status.token_id))
        except (ExecError, ApiException) as e:
            self._fail(jtr, STATUS_INVALIDATE_FAILED, e)
        logger.info(f"Invalidated token {jtr.status.token_id} for {jtr.key}")

    def _get(self, key: ObjectKey) -> Optional[JoinTokenRequest]:
        try:
            return self.store.get_join_token_request(key.namespace, key.name)
        except NotFoundError:
            logger.debug(f"JoinTokenRequest {key} not found, ignoring")
            return None

    def _issue(self, jtr: JoinTokenRequest) -> None:
        logger.info(f"Reconciling JoinTokenRequest {jtr.key}")
        ref = jtr.spec.cluster_ref

        try:
            cluster = self.store.get_cluster(ref.namespace, ref.name)
        except (NotFoundError, ApiException) as e:
            self._fail(jtr, STATUS_CLUSTER_FAILED, e)
        jtr.status.cluster_uid = cluster.uid

        role = jtr.spec.token_role
        try:
            bootstrap_user(role)
        except ConfigurationError as e:
            self._fail_permanently(jtr, f"Unsupported role: {jtr.spec.role}", e)

        token_id = self._recover_token_id(jtr)
        if token_id:
            logger.info(f"Recovered token {token_id} for {jtr.key} from its secret")
            self._record_issued(jtr, token_id)
            return

        pod = self._find_pod(jtr)

        try:
            token = self.executor.exec(pod, create_command(jtr.spec))
        except (ExecError, ApiException) as e:
            self._fail(jtr, STATUS_TOKEN_FAILED, e)

        try:
            new_token, kubeconfig = replace_token_port(token, cluster)
        except TokenCodecError as e:
            self._fail_permanently(jtr, STATUS_URL_FAILED, e)

        try:
            self.store.apply_secret(generate_secret(jtr, new_token))
        except ApiException as e:
            self._fail(jtr, STATUS_SECRET_FAILED, e)

        try:
            token_id = extract_token_id(kubeconfig, role)
        except TokenCodecError as e:
            self._fail_permanently(jtr, STATUS_TOKEN_ID_FAILED, e)

        self._record_issued(jtr, token_id)
        logger.info(f"Issued {jtr.spec.role} token {token_id} for {jtr.key}")

    def _recover_token_id(self, jtr: JoinTokenRequest) -> Optional[str]:
        """Token id of a Secret this request already owns, if any.

        A token whose id never reached the status still lives in the Secret;
        reading it back keeps a retry from issuing a second token.
        """
        try:
            secret = self.store.read_token_secret(jtr.namespace, jtr.name)
        except ApiException as e:
            self._fail(jtr, STATUS_SECRET_FAILED, e)

        if secret is None or not secret.token or not secret.owned_by(jtr.uid):
            return None

        try:
            config = ClientConfig.from_yaml(decode(secret.token))
            return extract_token_id(config, jtr.spec.token_role)
        except TokenCodecError as e:
            logger.warning(f"Ignoring unreadable token secret of {jtr.key}: {e}")
            return None

    def _record_issued(self, jtr: JoinTokenRequest, token_id: str) -> None:
        # Unlike failure statuses this write must land, otherwise the next
        # pass cannot tell that a token exists
        jtr.status.token_id = token_id
        jtr.status.reconciliation_status = STATUS_SUCCESS
        try:
            self.store.update_join_token_request_status(jtr)
        except (NotFoundError, ApiException) as e:
            logger.error(f"Unable to record token {token_id} for {jtr.key}: {e}")
            raise kopf.TemporaryError(f"Failed saving token id: {e}", delay=self.retry_delay) from e

    def _cluster_gone(self, jtr: JoinTokenRequest) -> bool:
        ref = jtr.spec.cluster_ref
        try:
            self.store.get_cluster(ref.namespace, ref.name)
        except NotFoundError:
            return True
        except ApiException as e:
            self._fail(jtr, STATUS_CLUSTER_FAILED, e)
        return False

    def _find_pod(self, jtr: JoinTokenRequest) -> PodRef:
        ref = jtr.spec.cluster_ref
        try:
            return self.pod_locator.find_pod(ref.namespace, statefulset_name(ref.name))
        except (PodNotFoundError, ApiException) as e:
            self._fail(jtr, STATUS_POD_FAILED, e)

    def _check_secret(self, jtr: JoinTokenRequest) -> None:
        if self.store.read_token_secret(jtr.namespace, jtr.name) is not None:
            return
        logger.warning(f"Token secret for {jtr.key} is missing; delete and recreate the request to get a new token")
        if jtr.status.reconciliation_status != STATUS_SECRET_MISSING:
            self._update_status(jtr, STATUS_SECRET_MISSING)

    def _fail(self, jtr: JoinTokenRequest, message: str, cause: Exception) -> NoReturn:
        logger.error(f"{message} for {jtr.key}: {cause}")
        self._update_status(jtr, message)
        raise kopf.TemporaryError(f"{message}: {cause}", delay=self.retry_delay) from cause

    def _fail_permanently(self, jtr: JoinTokenRequest, message: str, cause: Exception) -> NoReturn:
        logger.error(f"{message} for {jtr.key}, not retrying: {cause}")
        self._update_status(jtr, message)
        raise kopf.PermanentError(f"{message}: {cause}") from cause

    def _update_status(self, jtr: JoinTokenRequest, message: str) -> None:
        """Best-effort status write for failure paths; the failure itself is what gets raised."""
        jtr.status.reconciliation_status = message
        try:
            self.store.update_join_token_request_status(jtr)
        except (NotFoundError, ApiException) as e:
            logger.error(f"Unable to update status to {message!r} for {jtr.key}: {e}")
