"""Container lifecycle management (create, configure, start, stop, destroy).

Every operation checks current state first so that re-running it against a
host where it already took effect is a successful no-op. Methods return True
when they changed something and False when there was nothing to do.
"""
import shlex
from typing import Dict, List, Optional, Tuple

from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure
from lxcmap.core.logger import get_logger
from lxcmap.core.security import IsolationPolicy
from lxcmap.models.container import ContainerSpec
from lxcmap.services.proxmox.shell import HostShell, classify_failure

logger = get_logger(__name__)

CONFIG_APPEND_SCRIPT = 'grep -qxF -- "$1" "$2" || printf "%s\\n" "$1" >> "$2"'


def parse_pct_config(output: str) -> Dict[str, str]:
    """Parse `pct config` output into key/value pairs (snapshot sections ignored)."""
    config: Dict[str, str] = {}
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith('['):
            break
        if not line or line.startswith('#') or ':' not in line:
            continue
        key, value = line.split(':', 1)
        config[key.strip()] = value.strip()
    return config


def _option_map(value: str) -> Dict[str, str]:
    """Split a pct property string ('/a,mp=/b,ro=1') into a dict; bare parts keyed by position."""
    result: Dict[str, str] = {}
    for index, part in enumerate(value.split(',')):
        part = part.strip()
        if '=' in part:
            key, val = part.split('=', 1)
            result[key.strip()] = val.strip()
        elif part:
            result[f"_{index}"] = part
    return result


# Options lxcmap writes for composite properties. Anything else in the current
# value (hwaddr, type, size, backup, ...) belongs to Proxmox and is ignored.
NET_OPTIONS = ('name', 'bridge', 'ip', 'gw', 'tag')
MOUNT_OPTIONS = ('_0', 'mp', 'ro')

# Values Proxmox treats as equivalent to an absent option
_OPTION_DEFAULTS = {'ro': '0'}


def owned_options(key: str) -> Optional[Tuple[str, ...]]:
    """Options lxcmap manages for a pct property, or None if it owns the whole value."""
    if key.startswith('net') and key[3:].isdigit():
        return NET_OPTIONS
    if key.startswith('mp') and key[2:].isdigit():
        return MOUNT_OPTIONS
    return None


def property_matches(key: str, desired: str, current: Optional[str]) -> bool:
    """True when the current value already carries exactly the options we manage.

    An option the map no longer sets (a dropped gateway, vlan tag or ro flag)
    counts as drift when it is still present on the node.
    """
    if current is None:
        return False

    owned = owned_options(key)
    if owned is None:
        if '=' in desired:
            # features: nesting=1,keyctl=1 in any order
            return _option_map(desired) == _option_map(current)
        return desired == current

    desired_opts = _option_map(desired)
    current_opts = _option_map(current)
    for option in owned:
        default = _OPTION_DEFAULTS.get(option)
        if desired_opts.get(option, default) != current_opts.get(option, default):
            return False
    return True


def desired_properties(spec: ContainerSpec, policy: IsolationPolicy) -> Dict[str, str]:
    """pct properties Configure keeps in sync. rootfs and the id are never touched."""
    props = {
        'hostname': spec.hostname,
        'memory': str(spec.memory_mb),
        'swap': str(spec.swap_mb),
        'cores': str(spec.cores),
        'net0': spec.net0(),
        'onboot': '1' if spec.onboot else '0',
    }
    features = policy.features(nesting=spec.nesting)
    if features:
        props['features'] = features
    if spec.dns:
        props['nameserver'] = spec.dns
    if spec.description:
        props['description'] = spec.description
    for index, mount in enumerate(spec.mounts):
        props[f'mp{index}'] = mount.to_pct()
    return props


class ContainerLifecycle:
    """Manages LXC containers on one node through pct."""

    def __init__(self, shell: HostShell, mock: bool = False, config: Optional[LxcmapConfig] = None):
        self.shell = shell
        self.mock = mock
        self.config = config or get_config()

    @property
    def host(self) -> str:
        return self.shell.name

    # ==================== Queries ====================

    def status(self, vmid: int) -> Optional[str]:
        """Return 'running'/'stopped', or None if the container does not exist."""
        if self.mock:
            return None

        result = self.shell.run(['pct', 'status', str(vmid)], timeout=self.config.command_timeout)
        if result.returncode != 0:
            stderr = (result.stderr or '').lower()
            if 'does not exist' in stderr or 'no such' in stderr:
                return None
            raise classify_failure(f"[{self.host}] pct status {vmid}", result)

        # Output: "status: running"
        _, _, value = result.stdout.partition(':')
        return value.strip() or 'unknown'

    def get_config(self, vmid: int) -> Dict[str, str]:
        if self.mock:
            return {}
        result = self.shell.run(
            ['pct', 'config', str(vmid)], timeout=self.config.command_timeout, check=True
        )
        return parse_pct_config(result.stdout)

    # ==================== Mutations ====================

    def create(self, spec: ContainerSpec, policy: IsolationPolicy, image_ref: str) -> bool:
        """Create the container unless it already exists.

        Raises:
            TransientActionError: Lock contention, timeout
            ActionFailure: pct create rejected the request
        """
        if self.mock:
            logger.info(f"MOCK: Would create container {spec.label} from {image_ref}")
            return True

        if self.status(spec.id) is not None:
            logger.info(f"Container {spec.id} already exists on {self.host}, skipping creation")
            return False

        cmd = [
            'pct', 'create', str(spec.id), image_ref,
            '--hostname', spec.hostname,
            '--memory', str(spec.memory_mb),
            '--swap', str(spec.swap_mb),
            '--cores', str(spec.cores),
            '--rootfs', spec.rootfs.to_pct(),
            '--net0', spec.net0(),
            '--unprivileged', '1' if policy.unprivileged else '0',
            '--onboot', '1' if spec.onboot else '0',
        ]

        features = policy.features(nesting=spec.nesting)
        if features:
            cmd.extend(['--features', features])
        if spec.dns:
            cmd.extend(['--nameserver', spec.dns])
        if spec.description:
            cmd.extend(['--description', spec.description])
        for index, mount in enumerate(spec.mounts):
            cmd.extend([f'--mp{index}', mount.to_pct()])

        if not policy.unprivileged:
            logger.warning(f"⚠️  Creating PRIVILEGED container {spec.id} - has full root access!")

        logger.info(f"Creating container {spec.label} ({policy.provision_type.value})")
        logger.debug(f"Command: {shlex.join(cmd)}")
        self.shell.run(cmd, timeout=self.config.create_timeout, check=True)

        self._ensure_config_lines(spec.id, policy.config_lines())
        logger.info(f"✓ Container {spec.label} created")
        return True

    def configure(self, spec: ContainerSpec, policy: IsolationPolicy) -> bool:
        """Reconcile mutable settings of an existing container in place."""
        if self.mock:
            logger.info(f"MOCK: Would configure container {spec.label}")
            return True

        current = self.get_config(spec.id)
        if not current:
            raise ActionFailure(f"[{self.host}] container {spec.id} has no readable config")

        current_unprivileged = current.get('unprivileged', '0') == '1'
        if current_unprivileged != policy.unprivileged:
            logger.warning(
                f"Container {spec.id} is {'un' if current_unprivileged else ''}privileged on "
                f"{self.host} but the map asks for {policy.provision_type.value}; "
                f"recreate it to change the isolation level"
            )

        desired = desired_properties(spec, policy)
        cmd: List[str] = ['pct', 'set', str(spec.id)]
        for key, value in desired.items():
            if not property_matches(key, value, current.get(key)):
                cmd.extend([f'--{key}', value])

        stale = [
            key for key, value in current.items()
            if key.startswith('mp') and key[2:].isdigit()
            and key not in desired and value.startswith('/')
        ]
        if stale:
            cmd.extend(['--delete', ','.join(sorted(stale))])

        changed = len(cmd) > 3
        if changed:
            logger.info(f"Configuring container {spec.label}")
            logger.debug(f"Command: {shlex.join(cmd)}")
            self.shell.run(cmd, timeout=self.config.command_timeout, check=True)

        if self._ensure_config_lines(spec.id, policy.config_lines()):
            changed = True

        if changed:
            logger.info(f"✓ Container {spec.label} configured")
        else:
            logger.info(f"Container {spec.label} already up to date")
        return changed

    def start(self, vmid: int) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would start container {vmid}")
            return True

        state = self.status(vmid)
        if state is None:
            raise ActionFailure(f"[{self.host}] cannot start container {vmid}: it does not exist")
        if state == 'running':
            logger.info(f"Container {vmid} already running")
            return False

        logger.info(f"Starting container {vmid} on {self.host}")
        result = self.shell.run(['pct', 'start', str(vmid)], timeout=self.config.command_timeout)
        if result.returncode != 0:
            if 'already running' in (result.stderr or '').lower():
                logger.info(f"Container {vmid} already running")
                return False
            raise classify_failure(f"[{self.host}] pct start {vmid}", result)

        logger.info(f"✓ Container {vmid} started")
        return True

    def stop(self, vmid: int) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would stop container {vmid}")
            return True

        state = self.status(vmid)
        if state is None or state == 'stopped':
            return False

        logger.info(f"Stopping container {vmid} on {self.host}")
        self.shell.run(['pct', 'stop', str(vmid)], timeout=self.config.command_timeout, check=True)
        logger.info(f"✓ Container {vmid} stopped")
        return True

    def destroy(self, vmid: int) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would destroy container {vmid}")
            return True

        state = self.status(vmid)
        if state is None:
            logger.info(f"Container {vmid} already absent on {self.host}")
            return False
        if state == 'running':
            self.shell.run(['pct', 'stop', str(vmid)], timeout=self.config.command_timeout, check=True)

        logger.info(f"Destroying container {vmid} on {self.host}")
        self.shell.run(
            ['pct', 'destroy', str(vmid), '--purge', '1'],
            timeout=self.config.create_timeout,
            check=True,
        )
        logger.info(f"✓ Container {vmid} destroyed")
        return True

    def exec(self, vmid: int, script: str, timeout: Optional[int] = None):
        """Run a shell script inside the container via pct exec."""
        if self.mock:
            logger.info(f"MOCK: Would run script in container {vmid}")
            return None
        return self.shell.run(
            ['pct', 'exec', str(vmid), '--', 'bash', '-c', script],
            timeout=timeout or self.config.bootstrap_timeout,
        )

    def _ensure_config_lines(self, vmid: int, lines) -> bool:
        """Append raw lxc.* lines to the container config if missing."""
        if not lines:
            return False

        conf_path = f"/etc/pve/lxc/{vmid}.conf"
        result = self.shell.run(['cat', conf_path], timeout=self.config.command_timeout, check=True)
        existing = {line.strip() for line in result.stdout.splitlines()}
        missing = [line for line in lines if line not in existing]

        for line in missing:
            self.shell.run(
                ['sh', '-c', CONFIG_APPEND_SCRIPT, 'sh', line, conf_path],
                timeout=self.config.command_timeout,
                check=True,
            )
            logger.info(f"  ✓ {line}")
        return bool(missing)
