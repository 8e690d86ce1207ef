"""Host inventory loading."""
import os
from pathlib import Path
from typing import Dict, Iterator, Optional

import yaml

from lxcmap.core.errors import InventoryError
from lxcmap.models.host import InventoryHost

# Default inventory search paths (ordered by proximity to current run)
INVENTORY_PATHS = [
    "./inventory.yml",
    "./inventories/hosts.yml",
    str(Path.home() / ".config" / "lxcmap" / "inventory.yml"),
    "/etc/lxcmap/inventory.yml",
]

_HOST_KEYS = {'address', 'user', 'port', 'identity_file', 'local'}


class Inventory:
    """Known Proxmox hosts keyed by name."""

    def __init__(self, hosts: Optional[Dict[str, InventoryHost]] = None, source: Optional[str] = None):
        self.hosts = hosts or {}
        self.source = source

    def __contains__(self, name: str) -> bool:
        return name in self.hosts

    def __iter__(self) -> Iterator[str]:
        return iter(self.hosts)

    def __len__(self) -> int:
        return len(self.hosts)

    def get(self, name: str) -> InventoryHost:
        try:
            return self.hosts[name]
        except KeyError:
            raise InventoryError(f"Host '{name}' is not in the inventory") from None

    def names(self):
        return list(self.hosts)


def find_inventory(inventory_path: Optional[str] = None) -> Optional[str]:
    """Locate the inventory file: explicit path, LXCMAP_INVENTORY, then search paths."""
    if inventory_path:
        return inventory_path

    if env_path := os.environ.get("LXCMAP_INVENTORY"):
        return env_path

    for path in INVENTORY_PATHS:
        if Path(path).exists():
            return path

    return None


def load_inventory(inventory_path: Optional[str] = None) -> Inventory:
    """Load the YAML inventory.

    Raises:
        InventoryError: If the file is missing or malformed
    """
    path = find_inventory(inventory_path)
    if path is None:
        raise InventoryError(
            "No inventory found. Create inventory.yml or pass --inventory.\n"
            "  hosts:\n"
            "    pve-a: {address: 10.0.0.6, user: root}"
        )

    inventory_file = Path(path).expanduser()
    if not inventory_file.exists():
        raise InventoryError(f"Inventory file not found: {inventory_file}")

    try:
        with open(inventory_file) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InventoryError(f"Invalid inventory YAML in {inventory_file}: {e}") from e

    hosts_section = raw.get('hosts') if isinstance(raw, dict) else None
    if not isinstance(hosts_section, dict) or not hosts_section:
        raise InventoryError(f"{inventory_file}: 'hosts' must be a non-empty mapping")

    hosts: Dict[str, InventoryHost] = {}
    for name, entry in hosts_section.items():
        hosts[str(name)] = _parse_host(str(name), entry or {}, inventory_file)

    return Inventory(hosts, source=str(inventory_file))


def _parse_host(name: str, entry: Dict, source: Path) -> InventoryHost:
    if not isinstance(entry, dict):
        raise InventoryError(f"{source}: hosts.{name} must be a mapping")

    unknown = sorted(set(entry) - _HOST_KEYS)
    if unknown:
        raise InventoryError(f"{source}: hosts.{name}: unknown key(s) {', '.join(unknown)}")

    local = bool(entry.get('local', False))
    if not local and not entry.get('address'):
        raise InventoryError(f"{source}: hosts.{name} needs an address (or local: true)")

    try:
        port = int(entry.get('port', 22))
    except (TypeError, ValueError):
        raise InventoryError(f"{source}: hosts.{name}.port must be an integer") from None

    identity_file = entry.get('identity_file')
    return InventoryHost(
        name=name,
        address=entry.get('address'),
        user=str(entry.get('user', 'root')),
        port=port,
        identity_file=os.path.expanduser(identity_file) if identity_file else None,
        local=local,
    )
