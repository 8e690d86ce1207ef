"""Reachability checks for provisioned containers.

Uses `ansible -m ping` against the hosts.ini a provision run wrote, so the
check goes through the same user and key Ansible will use later.
"""
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure
from lxcmap.core.logger import get_logger
from lxcmap.scaffold.core import ScaffoldManager

logger = get_logger(__name__)

# One-line output: "web01 | SUCCESS => {...}" or "web01 | UNREACHABLE! => {...}"
PING_LINE = re.compile(r"^(?P<host>\S+)\s+\|\s+(?P<status>[A-Z]+)!?")


@dataclass
class Reachability:
    """Ping result for one container."""
    deployment: str
    hostname: str
    reachable: bool
    detail: str = ""


def parse_ping_output(output: str) -> Dict[str, str]:
    """Map hostname to ansible status (SUCCESS, UNREACHABLE, FAILED)."""
    statuses: Dict[str, str] = {}
    for line in output.splitlines():
        match = PING_LINE.match(line.strip())
        if match:
            statuses[match.group('host')] = match.group('status')
    return statuses


class ConnectivityChecker:
    """Pings every container of a deployment through its inventory."""

    def __init__(self, mock: bool = False, config: Optional[LxcmapConfig] = None):
        self.mock = mock
        self.config = config or get_config()

    def check(self, hosts_file: Path) -> List[Reachability]:
        """Ping the containers listed in one hosts.ini.

        Raises:
            ActionFailure: ansible is not installed
        """
        deployment = hosts_file.parent.name
        hostnames = ScaffoldManager.inventory_hosts(hosts_file)

        if self.mock:
            logger.info(f"MOCK: Would ping {len(hostnames)} container(s) of {deployment}")
            return [Reachability(deployment, name, True, "mock") for name in hostnames]

        cmd = ['ansible', '-i', str(hosts_file), 'all', '-m', 'ping', '-o']
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.command_timeout,
            )
        except FileNotFoundError as e:
            raise ActionFailure("ansible not found - install it to test connectivity") from e
        except subprocess.TimeoutExpired:
            logger.warning(f"ansible ping for {deployment} timed out after {self.config.command_timeout}s")
            return [Reachability(deployment, name, False, "timed out") for name in hostnames]

        statuses = parse_ping_output(result.stdout or "")
        results = []
        for name in hostnames:
            status = statuses.get(name, "NO RESPONSE")
            results.append(Reachability(deployment, name, status == "SUCCESS", status))
        return results
