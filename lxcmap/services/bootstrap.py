"""In-container OS bootstrap for freshly created containers.

Runs after the first start, through `pct exec`:
- key-only SSH access for an `ansible` user
- ufw with SSH allowed
- Ubuntu telemetry removed
"""
import shlex
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure, TransientActionError
from lxcmap.core.logger import get_logger
from lxcmap.models.container import ContainerSpec, ProvisionType
from lxcmap.services.proxmox.lifecycle import ContainerLifecycle

logger = get_logger(__name__)

BOOTSTRAP_USER = "ansible"


@dataclass
class ContainerRef:
    """A started container plus what hardening needs to know about it."""
    spec: ContainerSpec
    lifecycle: ContainerLifecycle
    public_key: Optional[str] = None

    @property
    def vmid(self) -> int:
        return self.spec.id


def bootstrap_steps(ref: ContainerRef) -> List[Tuple[str, str]]:
    """Ordered (name, script) pairs for a container."""
    steps = [
        ("packages", """
            export DEBIAN_FRONTEND=noninteractive
            apt-get update -qq
            apt-get install -y -qq openssh-server sudo ufw ca-certificates
        """),
        ("telemetry", """
            export DEBIAN_FRONTEND=noninteractive
            apt-get purge -y -qq ubuntu-report popularity-contest apport whoopsie 2>/dev/null || true
            if [ -f /etc/default/motd-news ]; then
                sed -i 's/^ENABLED=.*/ENABLED=0/' /etc/default/motd-news
            fi
            systemctl disable --now motd-news.timer 2>/dev/null || true
        """),
        ("user", f"""
            id -u {BOOTSTRAP_USER} >/dev/null 2>&1 || useradd -m -s /bin/bash {BOOTSTRAP_USER}
            echo '{BOOTSTRAP_USER} ALL=(ALL) NOPASSWD:ALL' > /etc/sudoers.d/{BOOTSTRAP_USER}
            chmod 0440 /etc/sudoers.d/{BOOTSTRAP_USER}
        """),
    ]

    if ref.public_key:
        key = shlex.quote(ref.public_key.strip())
        steps.append(("authorized_keys", f"""
            install -d -m 0700 -o {BOOTSTRAP_USER} -g {BOOTSTRAP_USER} /home/{BOOTSTRAP_USER}/.ssh
            touch /home/{BOOTSTRAP_USER}/.ssh/authorized_keys
            grep -qxF {key} /home/{BOOTSTRAP_USER}/.ssh/authorized_keys || \\
                echo {key} >> /home/{BOOTSTRAP_USER}/.ssh/authorized_keys
            chown {BOOTSTRAP_USER}:{BOOTSTRAP_USER} /home/{BOOTSTRAP_USER}/.ssh/authorized_keys
            chmod 0600 /home/{BOOTSTRAP_USER}/.ssh/authorized_keys
        """))

    steps.append(("sshd", """
        cat > /etc/ssh/sshd_config.d/10-lxcmap.conf <<'SSHD'
PasswordAuthentication no
KbdInteractiveAuthentication no
PermitRootLogin no
PubkeyAuthentication yes
SSHD
        systemctl enable ssh >/dev/null 2>&1 || true
        systemctl restart ssh
    """))

    steps.append(("firewall", """
        ufw --force reset >/dev/null
        ufw default deny incoming
        ufw default allow outgoing
        ufw allow OpenSSH
        ufw --force enable
    """))

    if ref.spec.provision_type == ProvisionType.NVIDIA_GPU:
        steps.append(("nvidia", "ldconfig && nvidia-smi -L"))

    return steps


class BootstrapManager:
    """Hardens freshly created containers."""

    def __init__(self, mock: bool = False, config: Optional[LxcmapConfig] = None):
        self.mock = mock
        self.config = config or get_config()

    def harden(self, ref: ContainerRef) -> None:
        """Run every bootstrap step in order.

        Raises:
            ActionFailure: A step failed or the container never became ready
        """
        if self.mock:
            logger.info(f"MOCK: Would harden container {ref.spec.label}")
            return

        logger.info(f"Hardening container {ref.spec.label}")
        if not self.wait_for_boot(ref):
            raise ActionFailure(
                f"container {ref.vmid} did not answer pct exec within "
                f"{self.config.boot_wait_timeout}s"
            )

        for name, script in bootstrap_steps(ref):
            try:
                result = ref.lifecycle.exec(ref.vmid, script, timeout=self.config.bootstrap_timeout)
            except TransientActionError as e:
                raise ActionFailure(f"bootstrap step '{name}' timed out: {e}") from e

            if result.returncode != 0:
                stderr = (result.stderr or '').strip().splitlines()
                detail = stderr[-1] if stderr else f"exit {result.returncode}"
                raise ActionFailure(f"bootstrap step '{name}' failed: {detail}")
            logger.info(f"  ✓ {name}")

        logger.info(f"✓ Container {ref.spec.label} hardened")

    def wait_for_boot(self, ref: ContainerRef) -> bool:
        """Poll until the container runs commands, up to boot_wait_timeout seconds."""
        deadline = time.monotonic() + self.config.boot_wait_timeout
        while True:
            try:
                result = ref.lifecycle.exec(ref.vmid, "true", timeout=5)
                if result.returncode == 0:
                    return True
            except TransientActionError:
                pass

            if time.monotonic() >= deadline:
                logger.warning(f"Container {ref.vmid} not ready after {self.config.boot_wait_timeout}s")
                return False
            time.sleep(1)
