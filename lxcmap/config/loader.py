"""YAML container map loader.

Turns a container map document into a validated ContainerMap. Every check
runs before any host is contacted; the first violation raises
MapValidationError naming the offending path.
"""
import ipaddress
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from lxcmap.core.errors import MapValidationError
from lxcmap.models.container import (
    BindMount,
    ContainerMap,
    ContainerSpec,
    ProvisionType,
    RootFs,
)

REQUIRED_FIELDS = ('id', 'host', 'hostname', 'ip_cidr', 'rootfs')
OPTIONAL_FIELDS = (
    'provision_type', 'memory_mb', 'cores', 'swap_mb', 'bridge', 'vlan_tag',
    'gateway', 'dns', 'mounts', 'template', 'onboot', 'nesting', 'description',
)
KNOWN_FIELDS = frozenset(REQUIRED_FIELDS + OPTIONAL_FIELDS)
ROOT_KEYS = frozenset(('deployment', 'defaults', 'containers', 'gpu_driver_version'))

_HOSTNAME_RE = re.compile(r'^(?!-)[a-z0-9-]{1,63}(?<!-)$', re.IGNORECASE)
_SIZE_RE = re.compile(r'^(\d+)\s*[gG]?$')

_PROVISION_ALIASES = {
    'unprivileged': ProvisionType.UNPRIVILEGED,
    'privileged': ProvisionType.PRIVILEGED,
    'nvidia_gpu': ProvisionType.NVIDIA_GPU,
    'nvidia-gpu': ProvisionType.NVIDIA_GPU,
}


class MapLoader:
    """Loads and validates a container map file."""

    def __init__(self, map_path: str, known_hosts: Optional[Iterable[str]] = None):
        self.map_path = Path(map_path)
        self.known_hosts = set(known_hosts) if known_hosts is not None else None
        self.raw_document: Optional[Dict[str, Any]] = None

    def load(self) -> ContainerMap:
        """Read the YAML file and return the validated map."""
        if not self.map_path.exists():
            raise MapValidationError(f"Container map not found: {self.map_path}")

        try:
            with open(self.map_path) as f:
                self.raw_document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MapValidationError(f"Invalid YAML: {e}", path=str(self.map_path)) from e

        return parse(
            self.raw_document,
            source=str(self.map_path),
            known_hosts=self.known_hosts,
            default_deployment=self.map_path.stem,
        )


def parse(
    document: Any,
    source: Optional[str] = None,
    known_hosts: Optional[Iterable[str]] = None,
    default_deployment: str = "default",
) -> ContainerMap:
    """Validate a loaded document and build the ContainerMap.

    Args:
        document: Parsed YAML tree
        source: Where the document came from (for messages)
        known_hosts: Inventory host names; None skips the host membership check
        default_deployment: Deployment name when the document has none

    Raises:
        MapValidationError: On the first violation found
    """
    if not document:
        raise MapValidationError("Container map is empty")
    if not isinstance(document, dict):
        raise MapValidationError("Container map must be a mapping at the top level")

    unknown = sorted(set(document) - ROOT_KEYS)
    if unknown:
        raise MapValidationError(f"Unknown top-level key(s): {', '.join(unknown)}")

    defaults = document.get('defaults') or {}
    if not isinstance(defaults, dict):
        raise MapValidationError("must be a mapping", path='defaults')
    _reject_unknown(defaults, 'defaults')

    entries = document.get('containers')
    if not isinstance(entries, list) or not entries:
        raise MapValidationError("must be a non-empty list", path='containers')

    hosts = set(known_hosts) if known_hosts is not None else None
    specs: List[ContainerSpec] = []
    seen_ids: Dict[int, int] = {}

    for index, entry in enumerate(entries):
        path = f"containers[{index}]"
        if not isinstance(entry, dict):
            raise MapValidationError("must be a mapping", path=path)
        _reject_unknown(entry, path)

        merged = merge_defaults(defaults, entry)
        spec = _build_spec(merged, path)

        if spec.id in seen_ids:
            raise MapValidationError(
                f"duplicate container id {spec.id} (first declared at containers[{seen_ids[spec.id]}])",
                path=f"{path}.id",
            )
        seen_ids[spec.id] = index

        if hosts is not None and spec.host not in hosts:
            raise MapValidationError(
                f"host '{spec.host}' is not in the inventory (known: {', '.join(sorted(hosts)) or 'none'})",
                path=f"{path}.host",
            )

        specs.append(spec)

    gpu_driver_version = document.get('gpu_driver_version')
    if gpu_driver_version is not None:
        gpu_driver_version = str(gpu_driver_version).strip() or None

    gpu_ids = [s.id for s in specs if s.provision_type == ProvisionType.NVIDIA_GPU]
    if gpu_ids and not gpu_driver_version:
        raise MapValidationError(
            f"required because container(s) {', '.join(map(str, gpu_ids))} use nvidia_gpu",
            path='gpu_driver_version',
        )

    deployment = str(document.get('deployment') or default_deployment)
    if not _HOSTNAME_RE.match(deployment.replace('_', '-')):
        raise MapValidationError(f"invalid deployment name '{deployment}'", path='deployment')

    return ContainerMap(
        deployment=deployment,
        containers=specs,
        gpu_driver_version=gpu_driver_version,
        source=source,
    )


def merge_defaults(defaults: Dict[str, Any], entry: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay an entry on the defaults. rootfs mappings merge key-wise."""
    merged = dict(defaults)
    for key, value in entry.items():
        if key == 'rootfs' and isinstance(value, dict) and isinstance(merged.get('rootfs'), dict):
            merged['rootfs'] = {**merged['rootfs'], **value}
        else:
            merged[key] = value
    return merged


def _reject_unknown(data: Dict[str, Any], path: str) -> None:
    unknown = sorted(set(data) - KNOWN_FIELDS)
    if unknown:
        raise MapValidationError(f"unknown field(s): {', '.join(unknown)}", path=path)


def _build_spec(data: Dict[str, Any], path: str) -> ContainerSpec:
    for name in REQUIRED_FIELDS:
        if data.get(name) in (None, ''):
            raise MapValidationError("required field missing", path=f"{path}.{name}")

    vmid = _positive_int(data['id'], f"{path}.id")
    if vmid < 100:
        raise MapValidationError("Proxmox container ids start at 100", path=f"{path}.id")

    hostname = str(data['hostname'])
    if not _HOSTNAME_RE.match(hostname):
        raise MapValidationError(f"'{hostname}' is not a DNS-safe hostname", path=f"{path}.hostname")

    ip_cidr = _parse_ip_cidr(data['ip_cidr'], f"{path}.ip_cidr")

    provision_type = _parse_provision_type(
        data.get('provision_type', ProvisionType.UNPRIVILEGED.value), vmid, f"{path}.provision_type"
    )

    gateway = _optional_ip(data.get('gateway'), f"{path}.gateway")
    if gateway and ipaddress.ip_address(gateway) not in ipaddress.ip_interface(ip_cidr).network:
        raise MapValidationError(
            f"gateway {gateway} is outside {ip_cidr}", path=f"{path}.gateway"
        )

    vlan_tag = _int(data.get('vlan_tag', 0), f"{path}.vlan_tag")
    if vlan_tag != 0 and not 1 <= vlan_tag <= 4094:
        raise MapValidationError("must be 0 (untagged) or 1-4094", path=f"{path}.vlan_tag")

    swap_mb = _int(data.get('swap_mb', 512), f"{path}.swap_mb")
    if swap_mb < 0:
        raise MapValidationError("must not be negative", path=f"{path}.swap_mb")

    return ContainerSpec(
        id=vmid,
        host=str(data['host']),
        hostname=hostname,
        ip_cidr=ip_cidr,
        rootfs=_parse_rootfs(data['rootfs'], f"{path}.rootfs"),
        provision_type=provision_type,
        memory_mb=_positive_int(data.get('memory_mb', 2048), f"{path}.memory_mb"),
        cores=_positive_int(data.get('cores', 2), f"{path}.cores"),
        swap_mb=swap_mb,
        bridge=str(data.get('bridge', 'vmbr0')),
        vlan_tag=vlan_tag,
        gateway=gateway,
        dns=_optional_ip(data.get('dns'), f"{path}.dns"),
        mounts=_parse_mounts(data.get('mounts') or [], f"{path}.mounts"),
        template=str(data.get('template', '24.04')),
        onboot=_bool(data.get('onboot', True), f"{path}.onboot"),
        nesting=_bool(data.get('nesting', True), f"{path}.nesting"),
        description=data.get('description'),
    )


def _parse_provision_type(value: Any, vmid: int, path: str) -> ProvisionType:
    key = str(value).strip().lower()
    if key not in _PROVISION_ALIASES:
        raise MapValidationError(
            f"container {vmid}: unknown provision_type '{value}' "
            f"(expected unprivileged, privileged or nvidia_gpu)",
            path=path,
        )
    return _PROVISION_ALIASES[key]


def _parse_ip_cidr(value: Any, path: str) -> str:
    text = str(value).strip()
    if '/' not in text:
        raise MapValidationError(f"'{text}' needs a prefix length (e.g. {text}/24)", path=path)
    try:
        return str(ipaddress.ip_interface(text))
    except ValueError as e:
        raise MapValidationError(f"'{text}' is not a valid address/prefix: {e}", path=path) from e


def _optional_ip(value: Any, path: str) -> Optional[str]:
    if value in (None, ''):
        return None
    try:
        return str(ipaddress.ip_address(str(value).strip()))
    except ValueError as e:
        raise MapValidationError(f"'{value}' is not a valid IP address", path=path) from e


def _parse_rootfs(value: Any, path: str) -> RootFs:
    if isinstance(value, str):
        if ':' not in value:
            raise MapValidationError("expected '<storage>:<size_gb>'", path=path)
        storage, size = value.split(':', 1)
        value = {'storage': storage, 'size_gb': size}

    if not isinstance(value, dict):
        raise MapValidationError("must be a mapping with storage and size_gb", path=path)

    storage = str(value.get('storage') or '').strip()
    if not storage:
        raise MapValidationError("required field missing", path=f"{path}.storage")

    size = value.get('size_gb')
    if isinstance(size, str):
        match = _SIZE_RE.match(size.strip())
        if not match:
            raise MapValidationError(f"'{size}' is not a size in GiB", path=f"{path}.size_gb")
        size = int(match.group(1))

    return RootFs(storage=storage, size_gb=_positive_int(size, f"{path}.size_gb"))


def _parse_mounts(value: Any, path: str) -> tuple:
    if not isinstance(value, list):
        raise MapValidationError("must be a list", path=path)

    mounts = []
    seen_targets = set()
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if not isinstance(item, dict):
            raise MapValidationError("must be a mapping", path=item_path)

        host_path = str(item.get('host_path') or '').strip()
        container_path = str(item.get('container_path') or '').strip()
        if not host_path:
            raise MapValidationError("required field missing", path=f"{item_path}.host_path")
        if not container_path:
            raise MapValidationError("required field missing", path=f"{item_path}.container_path")
        if not host_path.startswith('/'):
            raise MapValidationError("must be an absolute path", path=f"{item_path}.host_path")
        if not container_path.startswith('/'):
            raise MapValidationError("must be an absolute path", path=f"{item_path}.container_path")
        if container_path in seen_targets:
            raise MapValidationError(
                f"'{container_path}' is mounted twice", path=f"{item_path}.container_path"
            )
        seen_targets.add(container_path)

        mounts.append(BindMount(
            host_path=host_path.rstrip('/') or '/',
            container_path=container_path,
            read_only=_bool(item.get('read_only', False), f"{item_path}.read_only"),
        ))
    return tuple(mounts)


def _int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise MapValidationError("must be an integer", path=path)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MapValidationError(f"'{value}' is not an integer", path=path) from e


def _positive_int(value: Any, path: str) -> int:
    number = _int(value, path)
    if number <= 0:
        raise MapValidationError("must be a positive integer", path=path)
    return number


def _bool(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('yes', 'true', '1', 'no', 'false', '0'):
        return value.lower() in ('yes', 'true', '1')
    raise MapValidationError(f"'{value}' is not a boolean", path=path)
