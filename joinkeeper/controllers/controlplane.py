"""K0sControlPlane status aggregation.

Status is computed in two steps. ``compute_status`` is a pure function of the
control plane machines and the control plane spec. ``probe_readiness`` then
talks to the workload cluster's API server and records the outcome as a
condition; it never raises, so an unreachable cluster shows up as a false
``ControlPlaneReady`` condition instead of a reconcile failure.
"""
import functools
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

import semver

from ..kube.store import NotFoundError, control_plane_selector
from ..models import (
    Condition,
    ControlPlane,
    ControlPlaneSpec,
    ControlPlaneStatus,
    MachinePhase,
    MemberRecord,
    ObjectKey,
)

logger = logging.getLogger("joinkeeper.controlplane")

DEFAULT_BUILD_SUFFIX = "+k0s.0"
ENABLE_WORKER_FLAG = "--enable-worker"

CONTROL_PLANE_READY_CONDITION = "ControlPlaneReady"
UNABLE_TO_CONNECT_REASON = "Unable to connect to the workload cluster API"
SEVERITY_WARNING = "Warning"

PROBE_NAMESPACE = "kube-system"
DEFAULT_PROBE_TIMEOUT = 10.0

_INACTIVE_PHASES = {MachinePhase.DELETING.value, MachinePhase.DELETED.value}


def parse_version(raw: str) -> semver.Version:
    """Parse a k0s version such as ``v1.27.2+k0s.0``.

    Raises:
        ValueError: If the version is not a semantic version
    """
    return semver.Version.parse(raw[1:] if raw.startswith("v") else raw)


def _build_number(version: semver.Version) -> int:
    """The N of a ``k0s.N`` build tag; 0 when there is none."""
    if not version.build:
        return 0
    last = version.build.rsplit(".", 1)[-1]
    return int(last) if last.isdigit() else 0


def compare_versions(a: semver.Version, b: semver.Version) -> int:
    """Semantic version order, ties broken by the k0s build number."""
    result = a.compare(b)
    if result:
        return result
    return (_build_number(a) > _build_number(b)) - (_build_number(a) < _build_number(b))


def _with_build_suffix(version: str) -> str:
    return version if "+" in version else version + DEFAULT_BUILD_SUFFIX


def version_matches(member_version: Optional[str], target_version: str) -> bool:
    """Check whether a member runs the target version.

    A bare release version is treated as that release with the default k0s
    build tag, so ``1.2.3`` matches ``1.2.3+k0s.0``. Versions that are not
    semantic versions never match.
    """
    if not member_version:
        return False

    try:
        member = parse_version(_with_build_suffix(member_version))
        target = parse_version(_with_build_suffix(target_version))
    except ValueError:
        logger.debug(f"Cannot compare versions {member_version!r} and {target_version!r}")
        return False
    return member.compare(target) == 0 and member.build == target.build


def lowest_version(versions: Iterable[str]) -> Optional[str]:
    """Return the lowest parsable version, as written, or None if none parse."""
    parsed: List[Tuple[semver.Version, str]] = []
    for raw in versions:
        try:
            parsed.append((parse_version(raw), raw))
        except ValueError:
            logger.warning(f"Skipping unparsable member version {raw!r}")

    if not parsed:
        return None
    parsed.sort(key=functools.cmp_to_key(lambda x, y: compare_versions(x[0], y[0])))
    return parsed[0][1]


def compute_status(
    members: Iterable[MemberRecord],
    spec: ControlPlaneSpec,
    previous: Optional[ControlPlaneStatus] = None,
) -> ControlPlaneStatus:
    """Derive replica counters and versions from the control plane machines.

    Args:
        members: Snapshot of control plane machines
        spec: Control plane spec (target version and k0s arguments)
        previous: Last reported status; its version is kept when no member
            version parses

    Returns:
        A new ControlPlaneStatus; ``previous`` is left untouched
    """
    members = list(members)
    status = replace(previous, conditions=list(previous.conditions)) if previous else ControlPlaneStatus()

    status.replicas = len(members)
    status.ready_replicas = sum(1 for m in members if m.phase == MachinePhase.RUNNING.value)
    status.unavailable_replicas = sum(
        1 for m in members
        if m.phase != MachinePhase.RUNNING.value and m.phase not in _INACTIVE_PHASES
    )
    status.updated_replicas = sum(1 for m in members if version_matches(m.version, spec.version))

    lowest = lowest_version(m.version for m in members if m.version)
    if lowest is not None:
        status.version = lowest

    # Without workers there are no Node objects for the machines, so Cluster
    # API must not wait for them
    status.external_managed_control_plane = ENABLE_WORKER_FLAG not in spec.args

    status.ready = False
    return status


def probe_readiness(
    status: ControlPlaneStatus,
    cluster: ObjectKey,
    connector,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> ControlPlaneStatus:
    """Check that the workload cluster API answers and record it as a condition.

    Args:
        status: Status to update in place
        cluster: Cluster API cluster the control plane belongs to
        connector: Builds a client for the workload cluster
        timeout: Seconds allowed for the probe request

    Returns:
        The same status object
    """
    try:
        remote = connector.connect(cluster)
    except Exception as e:
        logger.info(f"Failed to create cluster client for {cluster}: {e}")
        _mark_unreachable(status, f"Failed to create cluster client: {e}")
        return status

    # If we can read kube-system, the API server is up and serving
    try:
        with remote:
            remote.read_namespace(PROBE_NAMESPACE, timeout=timeout)
    except Exception as e:
        logger.info(f"Workload cluster {cluster} did not answer: {e}")
        _mark_unreachable(status, f"Failed to get namespace: {e}")
        return status

    status.set_condition(Condition(type=CONTROL_PLANE_READY_CONDITION, status="True"))
    status.ready = True
    status.control_plane_ready = True
    status.initialized = True
    return status


def _mark_unreachable(status: ControlPlaneStatus, message: str) -> None:
    status.set_condition(Condition(
        type=CONTROL_PLANE_READY_CONDITION,
        status="False",
        severity=SEVERITY_WARNING,
        reason=UNABLE_TO_CONNECT_REASON,
        message=message,
    ))


class ControlPlaneStatusReconciler:
    """Keeps K0sControlPlane status in line with its machines and workload cluster."""

    def __init__(self, store, connector, probe_timeout: float = DEFAULT_PROBE_TIMEOUT):
        self.store = store
        self.connector = connector
        self.probe_timeout = probe_timeout

    def update_status(self, cp: ControlPlane, cluster_name: str) -> ControlPlaneStatus:
        """Collect machines, compute status and probe the workload cluster.

        Failures to list machines propagate; probe failures only show up in
        the returned status.
        """
        members = self.store.list_control_plane_machines(cp.namespace, cluster_name)

        status = compute_status(members, cp.spec, cp.status)
        status.selector = control_plane_selector(cluster_name)
        logger.info(
            f"Computed status for {cp.key}: replicas={status.replicas} ready={status.ready_replicas} "
            f"updated={status.updated_replicas} unavailable={status.unavailable_replicas} version={status.version}"
        )

        logger.debug(f"Pinging the workload cluster API of {cp.namespace}/{cluster_name}")
        return probe_readiness(status, ObjectKey(cp.namespace, cluster_name), self.connector, self.probe_timeout)

    def reconcile(self, key: ObjectKey) -> Optional[ControlPlaneStatus]:
        """Refresh and persist the status of one control plane.

        Runs on a fixed interval, which also re-probes control planes that
        are not ready yet. Returns the persisted status, or None when there
        was nothing to do.
        """
        try:
            cp = self.store.get_control_plane(key.namespace, key.name)
        except NotFoundError:
            logger.debug(f"K0sControlPlane {key} not found, ignoring")
            return None

        cluster_name = cp.cluster_name
        if not cluster_name:
            logger.info(f"K0sControlPlane {key} has no owning cluster yet")
            return None

        cp.status = self.update_status(cp, cluster_name)
        self.store.update_control_plane_status(cp)

        return cp.status
