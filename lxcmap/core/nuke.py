"""Destruction planning: the inverse of reconciliation.

Only containers declared in the map are ever touched, whatever else the
hosts run.
"""
from typing import Mapping

from lxcmap.core.logger import get_logger
from lxcmap.core.reconciler import SkipReason
from lxcmap.models.container import ContainerMap
from lxcmap.models.host import HostSnapshot
from lxcmap.models.plan import ActionKind, ActionPlan

logger = get_logger(__name__)


def plan_destroy(container_map: ContainerMap, snapshots: Mapping[str, HostSnapshot]) -> ActionPlan:
    """Stop+Destroy for declared containers that exist; Skip for the rest."""
    plan = ActionPlan()

    for spec in container_map.containers:
        snapshot = snapshots.get(spec.host)

        if snapshot is None or not snapshot.ok:
            detail = snapshot.error if snapshot is not None else "not probed"
            plan.add(ActionKind.SKIP, spec, f"{SkipReason.HOST_UNREACHABLE}: {detail}")
            continue

        if spec.id not in snapshot.container_ids:
            plan.add(ActionKind.SKIP, spec, SkipReason.ALREADY_ABSENT)
            continue

        plan.add(ActionKind.STOP, spec, "running" if spec.id in snapshot.running_ids else "")
        plan.add(ActionKind.DESTROY, spec, "declared in map")

    logger.debug(f"Planned {len(plan)} destroy action(s): {plan.summary()}")
    return plan
