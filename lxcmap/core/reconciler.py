"""Desired-state reconciliation planning.

Planning is pure: it reads a validated ContainerMap and the HostSnapshots
probed for this run and returns an ActionPlan. Nothing here touches a host.
"""
from typing import Dict, Mapping

from lxcmap.core.errors import PolicyError
from lxcmap.core.logger import get_logger
from lxcmap.core.security import check_host, resolve
from lxcmap.models.container import ContainerMap, ContainerSpec
from lxcmap.models.host import HostSnapshot
from lxcmap.models.plan import ActionKind, ActionPlan

logger = get_logger(__name__)


class SkipReason:
    """Reasons recorded on Skip actions."""

    HOST_UNREACHABLE = "host-unreachable"
    STORAGE_MISSING = "storage-missing"
    MOUNT_PATH_MISSING = "mount-path-missing"
    ALREADY_ABSENT = "already-absent"


class ReconciliationEngine:
    """Turns desired containers plus host snapshots into an ordered plan."""

    def __init__(self, container_map: ContainerMap, snapshots: Mapping[str, HostSnapshot]):
        self.container_map = container_map
        self.snapshots: Dict[str, HostSnapshot] = dict(snapshots)

    def build_plan(self) -> ActionPlan:
        plan = ActionPlan()
        for spec in self.container_map.containers:
            self._plan_container(plan, spec)

        logger.debug(f"Planned {len(plan)} action(s): {plan.summary()}")
        return plan

    def _plan_container(self, plan: ActionPlan, spec: ContainerSpec) -> None:
        snapshot = self.snapshots.get(spec.host)

        if snapshot is None or not snapshot.ok:
            detail = snapshot.error if snapshot is not None else "not probed"
            plan.add(ActionKind.SKIP, spec, f"{SkipReason.HOST_UNREACHABLE}: {detail}")
            return

        if spec.rootfs.storage not in snapshot.storage_ids:
            plan.add(
                ActionKind.SKIP, spec,
                f"{SkipReason.STORAGE_MISSING}: '{spec.rootfs.storage}' is not available on {spec.host}",
            )
            return

        missing = [m.host_path for m in spec.mounts if m.host_path not in snapshot.present_paths]
        if missing:
            plan.add(
                ActionKind.SKIP, spec,
                f"{SkipReason.MOUNT_PATH_MISSING}: {', '.join(missing)} not found on {spec.host}",
            )
            return

        try:
            policy = resolve(spec.provision_type, self.container_map.gpu_driver_version)
            check_host(policy, snapshot)
        except PolicyError as e:
            plan.add(ActionKind.SKIP, spec, str(e))
            return

        if spec.id in snapshot.container_ids:
            plan.add(ActionKind.CONFIGURE, spec, "exists", policy=policy)
            return

        plan.add(ActionKind.CREATE, spec, "missing", policy=policy)
        plan.add(ActionKind.START, spec, "new container")


def plan(container_map: ContainerMap, snapshots: Mapping[str, HostSnapshot]) -> ActionPlan:
    """Compute the provisioning plan for a map against probed hosts."""
    return ReconciliationEngine(container_map, snapshots).build_plan()
