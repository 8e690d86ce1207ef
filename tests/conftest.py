"""Shared test fixtures for lxcmap tests."""
import subprocess
from typing import Dict, List, Optional

import pytest

from lxcmap.config.inventory import Inventory
from lxcmap.core.config import LxcmapConfig, set_config
from lxcmap.models.container import BindMount, ContainerMap, ContainerSpec, ProvisionType, RootFs
from lxcmap.models.host import HostSnapshot, InventoryHost


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from /var/run, /var/log and the real cwd."""
    monkeypatch.setenv("LXCMAP_LOCK_DIR", str(tmp_path / "locks"))
    monkeypatch.setenv("LXCMAP_OUTPUT_DIR", str(tmp_path / "output"))
    monkeypatch.delenv("LXCMAP_INVENTORY", raising=False)
    monkeypatch.delenv("LXCMAP_MOCK", raising=False)
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def fast_config(tmp_path):
    """Config with no real waiting between retries."""
    return LxcmapConfig(
        retry_attempts=3,
        retry_delay=0.01,
        retry_backoff=2.0,
        output_dir=str(tmp_path / "output"),
        lock_dir=str(tmp_path / "locks"),
    )


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry sleeps instead of sleeping."""
    sleeps: List[float] = []
    monkeypatch.setattr("lxcmap.core.retry.time.sleep", lambda seconds: sleeps.append(seconds))
    return sleeps


def make_spec(vmid: int = 2001, host: str = "pve-a", **overrides) -> ContainerSpec:
    """Build a ContainerSpec with sensible defaults."""
    values = dict(
        id=vmid,
        host=host,
        hostname=f"ct{vmid}",
        ip_cidr=f"10.22.11.{vmid % 250 + 1}/24",
        rootfs=RootFs("local-lvm", 16),
        gateway="10.22.11.1",
    )
    values.update(overrides)
    return ContainerSpec(**values)


def make_map(*specs: ContainerSpec, gpu_driver_version: Optional[str] = None,
             deployment: str = "web") -> ContainerMap:
    return ContainerMap(deployment=deployment, containers=list(specs),
                        gpu_driver_version=gpu_driver_version)


def make_snapshot(host: str = "pve-a", ids=(), running=(), storage=("local", "local-lvm"),
                  paths=(), gpu: Optional[str] = None) -> HostSnapshot:
    return HostSnapshot(
        host=host,
        container_ids=frozenset(ids),
        running_ids=frozenset(running),
        storage_ids=frozenset(storage),
        present_paths=frozenset(paths),
        gpu_driver_version=gpu,
    )


def completed(cmd, returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


class FakeShell:
    """Scripted stand-in for HostShell.

    `responses` maps a command prefix (joined with spaces) to a
    CompletedProcess or a list of them consumed in order; an exception
    instance is raised instead of returned.
    """

    def __init__(self, name: str = "pve-a", responses: Optional[Dict] = None):
        self.name = name
        self.responses = dict(responses or {})
        self.calls: List[List[str]] = []

    def run(self, cmd, timeout, check=False, input_text=None):
        from lxcmap.services.proxmox.shell import classify_failure

        self.calls.append(list(cmd))
        line = " ".join(cmd)
        for prefix in sorted(self.responses, key=len, reverse=True):
            if line.startswith(prefix):
                response = self.responses[prefix]
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                break
        else:
            response = completed(cmd)

        if isinstance(response, Exception):
            raise response
        if not isinstance(response, subprocess.CompletedProcess):
            response = completed(cmd, stdout=str(response))
        if check and response.returncode != 0:
            raise classify_failure(f"[{self.name}] {line}", response)
        return response

    def commands(self, prefix: str) -> List[List[str]]:
        return [c for c in self.calls if " ".join(c).startswith(prefix)]


@pytest.fixture
def inventory():
    return Inventory({
        "pve-a": InventoryHost(name="pve-a", address="10.22.11.6"),
        "pve-b": InventoryHost(name="pve-b", address="10.22.11.7"),
    })


@pytest.fixture
def unprivileged_spec():
    return make_spec()


@pytest.fixture
def gpu_spec():
    return make_spec(2002, provision_type=ProvisionType.NVIDIA_GPU, hostname="gpu01")


@pytest.fixture
def mounted_spec():
    return make_spec(
        2003,
        hostname="files01",
        mounts=(BindMount("/tank/media", "/srv/media", read_only=True),),
    )
