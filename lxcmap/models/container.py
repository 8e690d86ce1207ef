"""Container map models."""
import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ProvisionType(Enum):
    """Isolation posture of a container."""
    UNPRIVILEGED = "unprivileged"
    PRIVILEGED = "privileged"
    NVIDIA_GPU = "nvidia_gpu"


@dataclass(frozen=True)
class BindMount:
    """Host directory bind-mounted into a container."""
    host_path: str
    container_path: str
    read_only: bool = False

    def to_pct(self) -> str:
        """Render as a pct mpN value: /host,mp=/ct[,ro=1]"""
        value = f"{self.host_path},mp={self.container_path}"
        if self.read_only:
            value += ",ro=1"
        return value


@dataclass(frozen=True)
class RootFs:
    """Root filesystem placement: storage backend id and size in GiB."""
    storage: str
    size_gb: int

    def to_pct(self) -> str:
        return f"{self.storage}:{self.size_gb}"


@dataclass(frozen=True)
class ContainerSpec:
    """One desired container, after defaults have been merged in."""
    id: int
    host: str
    hostname: str
    ip_cidr: str
    rootfs: RootFs
    provision_type: ProvisionType = ProvisionType.UNPRIVILEGED
    memory_mb: int = 2048
    cores: int = 2
    swap_mb: int = 512
    bridge: str = "vmbr0"
    vlan_tag: int = 0  # 0 = untagged
    gateway: Optional[str] = None
    dns: Optional[str] = None
    mounts: Tuple[BindMount, ...] = ()
    template: str = "24.04"
    onboot: bool = True
    nesting: bool = True
    description: Optional[str] = None

    @property
    def address(self) -> str:
        """IP address without prefix length."""
        return str(ipaddress.ip_interface(self.ip_cidr).ip)

    @property
    def label(self) -> str:
        return f"{self.id} ({self.hostname}@{self.host})"

    def net0(self) -> str:
        """Render the pct net0 value."""
        value = f"name=eth0,bridge={self.bridge},ip={self.ip_cidr}"
        if self.gateway:
            value += f",gw={self.gateway}"
        if self.vlan_tag:
            value += f",tag={self.vlan_tag}"
        return value

    def to_dict(self) -> Dict:
        """Plain representation used by the scaffold and reports."""
        return {
            'id': self.id,
            'host': self.host,
            'hostname': self.hostname,
            'ip_cidr': self.ip_cidr,
            'address': self.address,
            'provision_type': self.provision_type.value,
            'rootfs': {'storage': self.rootfs.storage, 'size_gb': self.rootfs.size_gb},
            'memory_mb': self.memory_mb,
            'cores': self.cores,
            'bridge': self.bridge,
            'vlan_tag': self.vlan_tag,
            'gateway': self.gateway,
            'dns': self.dns,
            'mounts': [
                {'host_path': m.host_path, 'container_path': m.container_path,
                 'read_only': m.read_only}
                for m in self.mounts
            ],
        }


@dataclass
class ContainerMap:
    """Validated desired-state document."""
    deployment: str
    containers: List[ContainerSpec] = field(default_factory=list)
    gpu_driver_version: Optional[str] = None
    source: Optional[str] = None

    @property
    def hosts(self) -> List[str]:
        """Hosts referenced by the map, in first-seen order."""
        seen: Dict[str, None] = {}
        for spec in self.containers:
            seen.setdefault(spec.host, None)
        return list(seen)

    def for_host(self, host: str) -> List[ContainerSpec]:
        return [spec for spec in self.containers if spec.host == host]

    def mount_paths(self, host: str) -> List[str]:
        """Distinct bind-mount host paths declared for a host."""
        paths: Dict[str, None] = {}
        for spec in self.for_host(host):
            for mount in spec.mounts:
                paths.setdefault(mount.host_path, None)
        return list(paths)
