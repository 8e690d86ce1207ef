"""Deployment scaffolding written after a successful run."""
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from lxcmap.core.logger import get_logger
from lxcmap.models.container import ContainerSpec
from lxcmap.scaffold.keys import KEY_NAME
from lxcmap.services.bootstrap import BOOTSTRAP_USER

logger = get_logger(__name__)

PLAYBOOK_STUB = """---
# Starting point for configuring the {deployment} containers.
#   ansible-playbook -i hosts.ini site.yml
- name: Configure {deployment}
  hosts: {deployment}
  become: true
  tasks:
    - name: Wait for SSH
      ansible.builtin.wait_for_connection:
        timeout: 60

    - name: Gather facts
      ansible.builtin.setup:
"""


class ScaffoldManager:
    """Owns the per-deployment artifact directory under output_dir."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else Path.cwd() / "output"

    def artifact_dir(self, deployment: str) -> Path:
        return self.output_dir / deployment

    def emit(self, deployment: str, containers: Iterable[ContainerSpec]) -> Path:
        """Write inventory, playbook stub and resolved container list.

        Args:
            deployment: Deployment name
            containers: Containers that exist after the run

        Returns:
            Path to the deployment's artifact directory
        """
        containers = list(containers)
        target = self.artifact_dir(deployment)
        target.mkdir(parents=True, exist_ok=True)

        (target / "hosts.ini").write_text(self.render_inventory(deployment, containers, target))
        (target / "site.yml").write_text(PLAYBOOK_STUB.format(deployment=deployment))
        with open(target / "containers.yml", "w") as f:
            yaml.safe_dump(
                {'deployment': deployment, 'containers': [c.to_dict() for c in containers]},
                f,
                sort_keys=False,
            )

        logger.info(f"📁 Wrote deployment artifacts to {target}")
        return target

    def render_inventory(self, deployment: str, containers: List[ContainerSpec], target: Path) -> str:
        """Ansible INI inventory with one line per container."""
        key_path = (target / KEY_NAME).resolve()
        lines = [f"[{deployment}]"]
        for spec in containers:
            lines.append(
                f"{spec.hostname} ansible_host={spec.address} ansible_user={BOOTSTRAP_USER} "
                f"ansible_ssh_private_key_file={key_path} lxc_id={spec.id} proxmox_host={spec.host}"
            )
        lines.append("")
        lines.append(f"[{deployment}:vars]")
        lines.append("ansible_python_interpreter=/usr/bin/python3")
        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def inventory_hosts(hosts_file: Path) -> List[str]:
        """Container hostnames listed in a written hosts.ini (vars sections skipped)."""
        names: List[str] = []
        in_vars = False
        for raw_line in Path(hosts_file).read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith(('#', ';')):
                continue
            if line.startswith('['):
                in_vars = line.endswith(':vars]')
                continue
            if not in_vars:
                names.append(line.split()[0])
        return names

    def remove(self, deployment: str) -> bool:
        """Delete a deployment's artifacts. Returns False if there were none."""
        target = self.artifact_dir(deployment)
        if not target.exists():
            return False
        shutil.rmtree(target)
        logger.info(f"Removed deployment artifacts {target}")
        return True

    def list_deployments(self) -> List[Path]:
        """Artifact directories that contain an inventory."""
        if not self.output_dir.exists():
            return []
        return sorted(p for p in self.output_dir.iterdir() if (p / "hosts.ini").exists())
