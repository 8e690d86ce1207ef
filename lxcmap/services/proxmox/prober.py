"""Read-only host state probing."""
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from lxcmap.config.inventory import Inventory
from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure, InventoryError, ProbeError, TransientActionError
from lxcmap.core.logger import get_logger
from lxcmap.core.retry import retry
from lxcmap.models.container import ContainerMap
from lxcmap.models.host import HostSnapshot
from lxcmap.services.proxmox.shell import HostShell

logger = get_logger(__name__)

PATH_CHECK_SCRIPT = 'for p in "$@"; do [ -e "$p" ] && printf "%s\\n" "$p"; done; true'


def parse_pct_list(output: str) -> Tuple[FrozenSet[int], FrozenSet[int]]:
    """Parse `pct list` into (all ids, running ids)."""
    ids = set()
    running = set()
    for line in output.strip().splitlines()[1:]:
        parts = line.split()
        if len(parts) < 2 or not parts[0].isdigit():
            continue
        vmid = int(parts[0])
        ids.add(vmid)
        if parts[1] == 'running':
            running.add(vmid)
    return frozenset(ids), frozenset(running)


def parse_pvesm_status(output: str) -> FrozenSet[str]:
    """Parse `pvesm status` into the ids of active storages."""
    active = set()
    for line in output.strip().splitlines()[1:]:
        parts = line.split()
        if len(parts) >= 3 and parts[2] == 'active':
            active.add(parts[0])
    return frozenset(active)


def parse_nvidia_smi(output: str) -> Optional[str]:
    """First driver version reported by nvidia-smi, if any."""
    for line in output.strip().splitlines():
        version = line.strip()
        if version and version[0].isdigit():
            return version
    return None


class HostStateProber:
    """Builds HostSnapshots for the hosts a container map references."""

    def __init__(
        self,
        inventory: Inventory,
        mock: bool = False,
        config: Optional[LxcmapConfig] = None,
        shell_factory: Optional[Callable] = None,
    ):
        self.inventory = inventory
        self.mock = mock
        self.config = config or get_config()
        self.shell_factory = shell_factory or HostShell

    def probe(self, host: str, mount_paths: Iterable[str] = ()) -> HostSnapshot:
        """Query one host.

        Raises:
            ProbeError: If container, storage or path queries fail
        """
        paths = list(mount_paths)

        if self.mock:
            logger.info(f"MOCK: Would probe host {host}")
            return HostSnapshot(
                host=host,
                storage_ids=frozenset({'local', 'local-lvm'}),
                present_paths=frozenset(paths),
            )

        try:
            shell = self.shell_factory(self.inventory.get(host))
        except InventoryError as e:
            raise ProbeError(host, str(e)) from e

        try:
            ids, running = parse_pct_list(self._query(shell, ['pct', 'list']))
            storages = parse_pvesm_status(
                self._query(shell, ['pvesm', 'status', '--content', 'rootdir'])
            )
            present = self._present_paths(shell, paths)
        except (TransientActionError, ActionFailure) as e:
            raise ProbeError(host, str(e)) from e

        snapshot = HostSnapshot(
            host=host,
            container_ids=ids,
            running_ids=running,
            storage_ids=storages,
            present_paths=present,
            gpu_driver_version=self._gpu_driver(shell),
        )
        logger.info(
            f"Probed {host}: {len(ids)} container(s), storage [{', '.join(sorted(storages))}], "
            f"GPU driver {snapshot.gpu_driver_version or 'none'}"
        )
        return snapshot

    def probe_all(self, container_map: ContainerMap) -> Dict[str, HostSnapshot]:
        """Probe every host the map references, in parallel.

        A failing host yields a failed snapshot; other hosts are unaffected.
        """
        hosts = container_map.hosts
        if not hosts:
            return {}

        def _probe_one(host: str) -> HostSnapshot:
            try:
                return self.probe(host, container_map.mount_paths(host))
            except ProbeError as e:
                logger.error(f"✗ Probe failed for {host}: {e}")
                return HostSnapshot.failed(host, str(e))

        workers = max(1, min(self.config.max_parallel_hosts, len(hosts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as pool:
            snapshots = list(pool.map(_probe_one, hosts))

        return {snapshot.host: snapshot for snapshot in snapshots}

    def _query(self, shell: HostShell, cmd: List[str]) -> str:
        @retry(
            max_attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
            backoff=self.config.retry_backoff,
            exceptions=(TransientActionError,),
        )
        def _run() -> str:
            return shell.run(cmd, timeout=self.config.probe_timeout, check=True).stdout

        return _run()

    def _present_paths(self, shell: HostShell, paths: List[str]) -> FrozenSet[str]:
        if not paths:
            return frozenset()
        output = self._query(shell, ['sh', '-c', PATH_CHECK_SCRIPT, 'sh', *paths])
        return frozenset(line.strip() for line in output.splitlines() if line.strip())

    def _gpu_driver(self, shell: HostShell) -> Optional[str]:
        """Missing nvidia-smi or a non-zero exit means no usable GPU, not a probe failure."""
        try:
            result = shell.run(
                ['nvidia-smi', '--query-gpu=driver_version', '--format=csv,noheader'],
                timeout=self.config.probe_timeout,
            )
        except (TransientActionError, ActionFailure) as e:
            logger.warning(f"[{shell.name}] GPU detection failed: {e}")
            return None

        if result.returncode != 0:
            return None
        return parse_nvidia_smi(result.stdout)
