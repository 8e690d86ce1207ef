"""Per-container outcome reporting."""
from typing import Dict, List

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lxcmap.models.plan import ActionKind, ActionPlan, ActionResult, ContainerOutcome, Outcome

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130

OUTCOME_STYLES = {
    Outcome.CREATED: "green",
    Outcome.CONFIGURED: "cyan",
    Outcome.STARTED: "green",
    Outcome.DESTROYED: "magenta",
    Outcome.SKIPPED: "yellow",
    Outcome.FAILED: "red",
}


def summarize(plan: ActionPlan, results: List[ActionResult]) -> List[ContainerOutcome]:
    """Collapse action results into one outcome per container, in plan order."""
    grouped: Dict[int, List[ActionResult]] = {}
    targets = {}
    for action in plan:
        grouped.setdefault(action.target.id, [])
        targets[action.target.id] = action.target
    for result in results:
        grouped.setdefault(result.action.target.id, []).append(result)
        targets.setdefault(result.action.target.id, result.action.target)

    return [_container_outcome(targets[vmid], container_results)
            for vmid, container_results in grouped.items()]


def _container_outcome(target, results: List[ActionResult]) -> ContainerOutcome:
    failures = [r for r in results if not r.success]
    if failures:
        return ContainerOutcome(target, Outcome.FAILED, failures[0].message)

    done = {r.action.kind: r for r in results if not r.cancelled}
    partial = len(done) < len(results)
    suffix = "; remaining actions cancelled" if partial else ""

    if not done:
        return ContainerOutcome(target, Outcome.SKIPPED, "cancelled")

    if ActionKind.DESTROY in done:
        reason = "" if done[ActionKind.DESTROY].changed else "already absent"
        return ContainerOutcome(target, Outcome.DESTROYED, reason + suffix)

    create = done.get(ActionKind.CREATE)
    start = done.get(ActionKind.START)
    if create is not None and create.changed:
        notes = ["started" if start is not None else "not started"]
        if start is not None:
            notes.extend(start.annotations)
        return ContainerOutcome(target, Outcome.CREATED, ", ".join(notes) + suffix)

    if start is not None:
        reason = "" if start.changed else "already running"
        return ContainerOutcome(target, Outcome.STARTED, reason + suffix)

    if ActionKind.CONFIGURE in done:
        reason = "updated" if done[ActionKind.CONFIGURE].changed else "no changes"
        return ContainerOutcome(target, Outcome.CONFIGURED, reason + suffix)

    if ActionKind.SKIP in done:
        return ContainerOutcome(target, Outcome.SKIPPED, done[ActionKind.SKIP].message)

    if ActionKind.CREATE in done:
        return ContainerOutcome(target, Outcome.CONFIGURED, "already present" + suffix)

    return ContainerOutcome(target, Outcome.SKIPPED, "stopped; destroy cancelled" if partial else "")


def exit_code(outcomes: List[ContainerOutcome], cancelled: bool = False) -> int:
    """0 when nothing failed, 1 on any failure, 130 when the run was interrupted."""
    if cancelled:
        return EXIT_CANCELLED
    if any(o.outcome == Outcome.FAILED for o in outcomes):
        return EXIT_FAILED
    return EXIT_OK


def render_table(console: Console, outcomes: List[ContainerOutcome], title: str = "Outcome") -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("Hostname")
    table.add_column("Host")
    table.add_column("Outcome")
    table.add_column("Reason", overflow="fold")

    for row in outcomes:
        style = OUTCOME_STYLES.get(row.outcome, "white")
        table.add_row(
            str(row.target.id),
            row.target.hostname,
            row.target.host,
            f"[{style}]{row.outcome.value}[/{style}]",
            escape(row.reason),
        )

    console.print(table)


def render_plan(console: Console, plan: ActionPlan, title: str = "Plan") -> None:
    """Print planned actions without executing them."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Action")
    table.add_column("ID", justify="right")
    table.add_column("Hostname")
    table.add_column("Host")
    table.add_column("Reason", overflow="fold")

    styles = {
        ActionKind.CREATE: "green",
        ActionKind.CONFIGURE: "cyan",
        ActionKind.START: "green",
        ActionKind.STOP: "yellow",
        ActionKind.DESTROY: "red",
        ActionKind.SKIP: "dim",
    }
    for index, action in enumerate(plan, start=1):
        style = styles[action.kind]
        table.add_row(
            str(index),
            f"[{style}]{action.kind.value}[/{style}]",
            str(action.target.id),
            action.target.hostname,
            action.host,
            escape(action.reason),
        )

    console.print(table)
    counts = ", ".join(f"{count} {kind}" for kind, count in plan.summary().items())
    console.print(f"[dim]{counts or 'nothing to do'}[/dim]")
