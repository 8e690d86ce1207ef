"""Proxmox node access.

- HostShell: run commands on a node, locally or over ssh
- HostStateProber: read-only snapshots of nodes
- ContainerLifecycle: create, configure, start, stop, destroy via pct
- TemplateManager: vztmpl image availability
"""
from .shell import HostShell
from .prober import HostStateProber
from .lifecycle import ContainerLifecycle
from .templates import TemplateManager

__all__ = [
    'ContainerLifecycle',
    'HostShell',
    'HostStateProber',
    'TemplateManager',
]
