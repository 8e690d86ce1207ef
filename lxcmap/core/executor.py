"""Action execution against Proxmox nodes.

Actions for one host run strictly in plan order on a single worker thread;
different hosts run in parallel. Every action ends in an ActionResult, even
when the run is cancelled part-way.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Set, Tuple

from lxcmap.config.inventory import Inventory
from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure, LxcmapError, TransientActionError
from lxcmap.core.logger import get_logger
from lxcmap.core.retry import retry
from lxcmap.models.plan import Action, ActionKind, ActionPlan, ActionResult
from lxcmap.services.bootstrap import BootstrapManager, ContainerRef
from lxcmap.services.proxmox.lifecycle import ContainerLifecycle
from lxcmap.services.proxmox.shell import HostShell
from lxcmap.services.proxmox.templates import TemplateManager

logger = get_logger(__name__)

BLOCKED = "blocked by earlier failure"
CANCELLED = "cancelled"


class ActionExecutor:
    """Applies planned actions and reports their outcome."""

    def __init__(
        self,
        inventory: Inventory,
        mock: bool = False,
        config: Optional[LxcmapConfig] = None,
        templates: Optional[TemplateManager] = None,
        bootstrap: Optional[BootstrapManager] = None,
        public_key: Optional[str] = None,
        harden: bool = True,
        lifecycle_factory: Optional[Callable[[str], ContainerLifecycle]] = None,
    ):
        self.inventory = inventory
        self.mock = mock
        self.config = config or get_config()
        self.templates = templates or TemplateManager(mock=mock, config=self.config)
        self.bootstrap = bootstrap or BootstrapManager(mock=mock, config=self.config)
        self.public_key = public_key
        self.harden_enabled = harden
        self.cancelled = False
        self._lifecycle_factory = lifecycle_factory or self._default_lifecycle
        self._lifecycles: Dict[str, ContainerLifecycle] = {}
        self._lifecycles_lock = threading.Lock()
        self._created: Set[int] = set()

    def _default_lifecycle(self, host: str) -> ContainerLifecycle:
        return ContainerLifecycle(HostShell(self.inventory.get(host)), mock=self.mock, config=self.config)

    def lifecycle(self, host: str) -> ContainerLifecycle:
        with self._lifecycles_lock:
            if host not in self._lifecycles:
                self._lifecycles[host] = self._lifecycle_factory(host)
            return self._lifecycles[host]

    # ==================== Single action ====================

    def execute(self, action: Action) -> ActionResult:
        """Apply one action with bounded retries on transient failures."""
        if action.kind == ActionKind.SKIP:
            logger.info(f"Skipping container {action.target.label}: {action.reason}")
            return ActionResult(action, success=True, message=action.reason, changed=False, attempts=0)

        attempts = 0

        def _apply() -> bool:
            nonlocal attempts
            attempts += 1
            return self._dispatch(action)

        _apply.__name__ = str(action)
        guarded = retry(
            max_attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
            backoff=self.config.retry_backoff,
            exceptions=(TransientActionError,),
        )(_apply)

        try:
            changed = guarded()
        except TransientActionError as e:
            logger.error(f"✗ {action} on {action.host} gave up after {attempts} attempt(s)")
            return ActionResult(action, success=False, message=f"retries exhausted: {e}",
                                attempts=attempts)
        except LxcmapError as e:
            logger.error(f"✗ {action} on {action.host} failed: {e}")
            return ActionResult(action, success=False, message=str(e), attempts=attempts)

        result = ActionResult(
            action,
            success=True,
            message="applied" if changed else "already in desired state",
            changed=bool(changed),
            attempts=attempts,
        )

        if action.kind == ActionKind.START and action.target.id in self._created:
            self._harden(action, result)

        return result

    def _dispatch(self, action: Action) -> bool:
        spec = action.target
        lifecycle = self.lifecycle(spec.host)

        if action.kind == ActionKind.CREATE:
            if action.policy is None:
                raise ActionFailure(f"no isolation policy resolved for container {spec.id}")
            image_ref = self.templates.ensure_image(lifecycle.shell, spec.template)
            changed = lifecycle.create(spec, action.policy, image_ref)
            if changed:
                self._created.add(spec.id)
            return changed

        if action.kind == ActionKind.CONFIGURE:
            if action.policy is None:
                raise ActionFailure(f"no isolation policy resolved for container {spec.id}")
            return lifecycle.configure(spec, action.policy)

        if action.kind == ActionKind.START:
            return lifecycle.start(spec.id)

        if action.kind == ActionKind.STOP:
            return lifecycle.stop(spec.id)

        if action.kind == ActionKind.DESTROY:
            return lifecycle.destroy(spec.id)

        raise ActionFailure(f"unsupported action kind {action.kind.value}")

    def _harden(self, action: Action, result: ActionResult) -> None:
        if not self.harden_enabled:
            result.annotations.append("bootstrap skipped (--no-harden)")
            return

        ref = ContainerRef(
            spec=action.target,
            lifecycle=self.lifecycle(action.host),
            public_key=self.public_key,
        )
        try:
            self.bootstrap.harden(ref)
        except LxcmapError as e:
            logger.error(f"✗ Bootstrap of {action.target.label} failed: {e}")
            result.success = False
            result.message = f"bootstrap: {e}"
            result.annotations.append(f"bootstrap: {e}")
        else:
            result.annotations.append("hardened")

    # ==================== Whole plan ====================

    def run(self, plan: ActionPlan, cancel_event: Optional[threading.Event] = None) -> List[ActionResult]:
        """Execute a plan; results come back in plan order.

        Ctrl-C stops dispatching new actions, waits for in-flight ones, and
        marks the rest cancelled.
        """
        cancel_event = cancel_event or threading.Event()
        results: List[Optional[ActionResult]] = [None] * len(plan.actions)

        grouped: Dict[str, List[Tuple[int, Action]]] = {}
        for index, action in enumerate(plan.actions):
            grouped.setdefault(action.host, []).append((index, action))

        if not grouped:
            return []

        workers = max(1, min(self.config.max_parallel_hosts, len(grouped)))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host")
        futures = [
            pool.submit(self._run_host, host_actions, results, cancel_event)
            for host_actions in grouped.values()
        ]

        try:
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            logger.warning("Cancellation requested - waiting for in-flight actions to finish")
            cancel_event.set()
            self.cancelled = True
            wait(futures)
        finally:
            pool.shutdown(wait=True)

        if cancel_event.is_set():
            self.cancelled = True

        return [r for r in results if r is not None]

    def _run_host(
        self,
        host_actions: List[Tuple[int, Action]],
        results: List[Optional[ActionResult]],
        cancel_event: threading.Event,
    ) -> None:
        failed_ids: Set[int] = set()

        for index, action in host_actions:
            if cancel_event.is_set():
                results[index] = ActionResult(
                    action, success=True, message=CANCELLED, changed=False,
                    attempts=0, cancelled=True,
                )
                continue

            if action.target.id in failed_ids:
                results[index] = ActionResult(action, success=False, message=BLOCKED,
                                              changed=False, attempts=0)
                continue

            result = self.execute(action)
            if not result.success:
                failed_ids.add(action.target.id)
            results[index] = result
