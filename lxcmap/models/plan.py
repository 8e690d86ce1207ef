"""Action plans and their results."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from lxcmap.models.container import ContainerSpec


class ActionKind(Enum):
    CREATE = "create"
    CONFIGURE = "configure"
    START = "start"
    STOP = "stop"
    DESTROY = "destroy"
    SKIP = "skip"


class Outcome(Enum):
    """Per-container line in the final report."""
    CREATED = "created"
    CONFIGURED = "configured"
    STARTED = "started"
    DESTROYED = "destroyed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Action:
    """One planned step against one container."""
    kind: ActionKind
    target: ContainerSpec
    reason: str = ""
    policy: Optional[object] = None  # IsolationPolicy for create/configure

    @property
    def host(self) -> str:
        return self.target.host

    def __str__(self) -> str:
        text = f"{self.kind.value}({self.target.id})"
        if self.reason:
            text += f" [{self.reason}]"
        return text


@dataclass
class ActionResult:
    """Terminal result of one action."""
    action: Action
    success: bool
    message: str = ""
    changed: bool = True
    attempts: int = 1
    cancelled: bool = False
    annotations: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.action.kind == ActionKind.SKIP


@dataclass
class ActionPlan:
    """Ordered, immutable-once-built sequence of actions."""
    actions: List[Action] = field(default_factory=list)

    def add(self, kind: ActionKind, target: ContainerSpec, reason: str = "",
            policy: Optional[object] = None) -> Action:
        action = Action(kind=kind, target=target, reason=reason, policy=policy)
        self.actions.append(action)
        return action

    def __iter__(self):
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def by_host(self) -> Dict[str, List[Action]]:
        """Group actions per host, preserving plan order within each host."""
        grouped: Dict[str, List[Action]] = {}
        for action in self.actions:
            grouped.setdefault(action.host, []).append(action)
        return grouped

    def for_container(self, vmid: int) -> List[Action]:
        return [a for a in self.actions if a.target.id == vmid]

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for action in self.actions:
            counts[action.kind.value] = counts.get(action.kind.value, 0) + 1
        return counts

    def is_noop(self) -> bool:
        return all(a.kind == ActionKind.SKIP for a in self.actions)


@dataclass(frozen=True)
class ContainerOutcome:
    """Report row."""
    target: ContainerSpec
    outcome: Outcome
    reason: str = ""
