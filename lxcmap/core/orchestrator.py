"""End-to-end provisioning and teardown of one deployment."""
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from lxcmap.config.inventory import Inventory, load_inventory
from lxcmap.config.loader import MapLoader
from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.executor import ActionExecutor
from lxcmap.core.lock import run_lock
from lxcmap.core.logger import get_logger
from lxcmap.core.nuke import plan_destroy
from lxcmap.core.reconciler import SkipReason
from lxcmap.core.reconciler import plan as plan_provision
from lxcmap.core.report import exit_code, summarize
from lxcmap.models.container import ContainerMap
from lxcmap.models.host import HostSnapshot
from lxcmap.models.plan import ActionKind, ActionPlan, ActionResult, ContainerOutcome, Outcome
from lxcmap.scaffold.core import ScaffoldManager
from lxcmap.scaffold.keys import KeyManager
from lxcmap.services.proxmox.prober import HostStateProber

logger = get_logger(__name__)


@dataclass
class RunReport:
    """What a provision or nuke run did."""
    deployment: str
    plan: ActionPlan
    results: List[ActionResult] = field(default_factory=list)
    outcomes: List[ContainerOutcome] = field(default_factory=list)
    artifact_dir: Optional[Path] = None
    cancelled: bool = False
    executed: bool = True

    @property
    def exit_code(self) -> int:
        return exit_code(self.outcomes, cancelled=self.cancelled)

    @property
    def failed(self) -> List[ContainerOutcome]:
        return [o for o in self.outcomes if o.outcome == Outcome.FAILED]


class DeploymentOrchestrator:
    """Load, probe, plan, execute and report for one container map."""

    def __init__(
        self,
        map_path: str,
        inventory_path: Optional[str] = None,
        mock: bool = False,
        config: Optional[LxcmapConfig] = None,
        harden: bool = True,
        inventory: Optional[Inventory] = None,
        prober: Optional[HostStateProber] = None,
        executor_factory: Optional[Callable[..., ActionExecutor]] = None,
        keys: Optional[KeyManager] = None,
        scaffold: Optional[ScaffoldManager] = None,
    ):
        self.map_path = map_path
        self.inventory_path = inventory_path
        self.mock = mock
        self.config = config or get_config()
        self.harden = harden
        self._inventory = inventory
        self._prober = prober
        self._executor_factory = executor_factory or ActionExecutor
        self.keys = keys or KeyManager(mock=mock)
        self.scaffold = scaffold or ScaffoldManager(Path(self.config.output_dir))

    @property
    def inventory(self) -> Inventory:
        if self._inventory is None:
            self._inventory = load_inventory(self.inventory_path)
        return self._inventory

    @property
    def prober(self) -> HostStateProber:
        if self._prober is None:
            self._prober = HostStateProber(self.inventory, mock=self.mock, config=self.config)
        return self._prober

    def load(self) -> ContainerMap:
        """Validate the map against the inventory. Raises before any host is contacted."""
        container_map = MapLoader(self.map_path, known_hosts=self.inventory.names()).load()
        logger.info(
            f"Loaded deployment '{container_map.deployment}': "
            f"{len(container_map.containers)} container(s) on {len(container_map.hosts)} host(s)"
        )
        return container_map

    def probe(self, container_map: ContainerMap) -> Dict[str, HostSnapshot]:
        return self.prober.probe_all(container_map)

    def plan(self) -> Tuple[ContainerMap, ActionPlan]:
        container_map = self.load()
        return container_map, plan_provision(container_map, self.probe(container_map))

    def plan_nuke(self) -> Tuple[ContainerMap, ActionPlan]:
        container_map = self.load()
        return container_map, plan_destroy(container_map, self.probe(container_map))

    # ==================== Runs ====================

    def provision(self, dry_run: bool = False,
                  cancel_event: Optional[threading.Event] = None) -> RunReport:
        """Bring every declared container to its desired state.

        Raises:
            MapValidationError, InventoryError: Before any host is touched
            LockError: Another run of this deployment is active
        """
        container_map = self.load()

        with run_lock(container_map.deployment, lock_dir=Path(self.config.lock_dir)):
            plan = plan_provision(container_map, self.probe(container_map))
            if dry_run:
                return RunReport(container_map.deployment, plan, executed=False)

            artifact_dir = self.scaffold.artifact_dir(container_map.deployment)
            public_key = None
            if self.harden and any(a.kind == ActionKind.CREATE for a in plan):
                public_key = self.keys.ensure_keypair(artifact_dir, comment=f"lxcmap-{container_map.deployment}")

            executor = self._executor_factory(
                self.inventory,
                mock=self.mock,
                config=self.config,
                public_key=public_key,
                harden=self.harden,
            )
            results = executor.run(plan, cancel_event=cancel_event)

        report = RunReport(
            container_map.deployment,
            plan,
            results=results,
            outcomes=summarize(plan, results),
            cancelled=executor.cancelled,
        )

        if report.cancelled:
            logger.warning("Run cancelled; deployment artifacts not written")
        elif report.failed:
            logger.warning(f"{len(report.failed)} container(s) failed; deployment artifacts not written")
        else:
            present = [
                o.target for o in report.outcomes
                if o.outcome in (Outcome.CREATED, Outcome.CONFIGURED, Outcome.STARTED)
            ]
            report.artifact_dir = self.scaffold.emit(container_map.deployment, present)

        return report

    def nuke(self, keep_artifacts: bool = False,
             cancel_event: Optional[threading.Event] = None) -> RunReport:
        """Stop and destroy exactly the containers the map declares."""
        container_map = self.load()

        with run_lock(container_map.deployment, lock_dir=Path(self.config.lock_dir)):
            plan = plan_destroy(container_map, self.probe(container_map))
            executor = self._executor_factory(
                self.inventory,
                mock=self.mock,
                config=self.config,
                harden=False,
            )
            results = executor.run(plan, cancel_event=cancel_event)

        report = RunReport(
            container_map.deployment,
            plan,
            results=results,
            outcomes=summarize(plan, results),
            cancelled=executor.cancelled,
        )

        unreachable = [
            o for o in report.outcomes
            if o.outcome == Outcome.SKIPPED and o.reason.startswith(SkipReason.HOST_UNREACHABLE)
        ]
        if not keep_artifacts and not report.cancelled and not report.failed and not unreachable:
            self.scaffold.remove(container_map.deployment)

        return report
