"""Data models for lxcmap."""
from lxcmap.models.container import (
    BindMount,
    ContainerMap,
    ContainerSpec,
    ProvisionType,
    RootFs,
)
from lxcmap.models.host import HostSnapshot, InventoryHost
from lxcmap.models.plan import Action, ActionKind, ActionPlan, ActionResult, Outcome

__all__ = [
    'Action',
    'ActionKind',
    'ActionPlan',
    'ActionResult',
    'BindMount',
    'ContainerMap',
    'ContainerSpec',
    'HostSnapshot',
    'InventoryHost',
    'Outcome',
    'ProvisionType',
    'RootFs',
]
