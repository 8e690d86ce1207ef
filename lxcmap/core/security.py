"""Security profile resolution.

Each provision type maps to one IsolationPolicy value. Resolution is a pure
lookup; the host precondition check is separate so planning can turn a
missing GPU into a Skip instead of an error.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from lxcmap.core.errors import PolicyError
from lxcmap.models.container import ProvisionType
from lxcmap.models.host import HostSnapshot

NVIDIA_DEVICES = (
    "/dev/nvidia0",
    "/dev/nvidiactl",
    "/dev/nvidia-uvm",
    "/dev/nvidia-uvm-tools",
    "/dev/nvidia-modeset",
)

NVIDIA_LIBRARY_DIR = "/usr/lib/x86_64-linux-gnu"
NVIDIA_LIBRARIES = (
    "libcuda.so",
    "libnvidia-ml.so",
    "libnvidia-ptxjitcompiler.so",
)
NVIDIA_BINARIES = ("/usr/bin/nvidia-smi",)

FULL_DEVICE_ACCESS = (
    "lxc.cgroup2.devices.allow: a",
    "lxc.cap.drop:",
    "lxc.apparmor.profile: unconfined",
)


@dataclass(frozen=True)
class IsolationPolicy:
    """Concrete isolation settings for one provision type."""
    provision_type: ProvisionType
    unprivileged: bool
    lxc_config: Tuple[str, ...] = ()
    device_mounts: Tuple[str, ...] = ()
    library_mounts: Tuple[str, ...] = ()
    requires_gpu: bool = False
    gpu_driver_version: Optional[str] = None

    def features(self, nesting: bool = True) -> str:
        """pct --features value."""
        items = []
        if nesting:
            items.append("nesting=1")
        if not self.unprivileged:
            items.append("mount=nfs;cifs")
        return ",".join(items)

    def config_lines(self) -> Tuple[str, ...]:
        """Raw lines appended to /etc/pve/lxc/<id>.conf."""
        lines = list(self.lxc_config)
        for device in self.device_mounts:
            lines.append(
                f"lxc.mount.entry: {device} {device.lstrip('/')} none bind,optional,create=file"
            )
        for path in self.library_mounts:
            lines.append(
                f"lxc.mount.entry: {path} {path.lstrip('/')} none bind,ro,optional,create=file"
            )
        return tuple(lines)


def resolve(provision_type: ProvisionType, gpu_driver_version: Optional[str] = None) -> IsolationPolicy:
    """Map a provision type to its IsolationPolicy.

    Raises:
        PolicyError: nvidia_gpu requested without a driver version
    """
    if provision_type == ProvisionType.UNPRIVILEGED:
        return IsolationPolicy(provision_type=provision_type, unprivileged=True)

    if provision_type == ProvisionType.PRIVILEGED:
        return IsolationPolicy(
            provision_type=provision_type,
            unprivileged=False,
            lxc_config=FULL_DEVICE_ACCESS,
        )

    if provision_type == ProvisionType.NVIDIA_GPU:
        if not gpu_driver_version:
            raise PolicyError("gpu-driver-version-missing",
                              "nvidia_gpu containers need gpu_driver_version")
        libraries = tuple(
            f"{NVIDIA_LIBRARY_DIR}/{lib}.{gpu_driver_version}" for lib in NVIDIA_LIBRARIES
        )
        return IsolationPolicy(
            provision_type=provision_type,
            unprivileged=False,
            lxc_config=FULL_DEVICE_ACCESS,
            device_mounts=NVIDIA_DEVICES,
            library_mounts=libraries + NVIDIA_BINARIES,
            requires_gpu=True,
            gpu_driver_version=gpu_driver_version,
        )

    raise PolicyError("unknown-provision-type", str(provision_type))


def check_host(policy: IsolationPolicy, snapshot: HostSnapshot) -> None:
    """Verify the host can honour the policy.

    Raises:
        PolicyError: GPU required but absent, or driver version differs
    """
    if not policy.requires_gpu:
        return

    if not snapshot.has_gpu:
        raise PolicyError("gpu-driver-missing",
                          f"host {snapshot.host} reports no functional NVIDIA driver")

    if snapshot.gpu_driver_version != policy.gpu_driver_version:
        raise PolicyError(
            "gpu-driver-mismatch",
            f"host {snapshot.host} runs driver {snapshot.gpu_driver_version}, "
            f"map expects {policy.gpu_driver_version}",
        )
