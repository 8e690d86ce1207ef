"""Host inventory and probed host state."""
from dataclasses import dataclass
from typing import FrozenSet, List, Optional


@dataclass(frozen=True)
class InventoryHost:
    """Connection parameters for one Proxmox node."""
    name: str
    address: Optional[str] = None
    user: str = "root"
    port: int = 22
    identity_file: Optional[str] = None
    local: bool = False

    def ssh_prefix(self, connect_timeout: int = 10) -> List[str]:
        """SSH command prefix for remote execution (empty for local hosts)."""
        if self.local:
            return []

        cmd = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={connect_timeout}",
        ]
        if self.identity_file:
            cmd.extend(["-i", self.identity_file])
        if self.port != 22:
            cmd.extend(["-p", str(self.port)])
        cmd.append(f"{self.user}@{self.address or self.name}")
        return cmd


@dataclass(frozen=True)
class HostSnapshot:
    """Point-in-time read of one host. Never reused across runs."""
    host: str
    container_ids: FrozenSet[int] = frozenset()
    running_ids: FrozenSet[int] = frozenset()
    storage_ids: FrozenSet[str] = frozenset()
    present_paths: FrozenSet[str] = frozenset()
    gpu_driver_version: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_gpu(self) -> bool:
        return bool(self.gpu_driver_version)

    @classmethod
    def failed(cls, host: str, error: str) -> "HostSnapshot":
        return cls(host=host, error=error)

