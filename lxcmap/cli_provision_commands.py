"""Provisioning CLI commands - provision, plan, nuke, templates."""
from dataclasses import replace
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lxcmap.cli_support import (
    confirm_action,
    get_cli_config,
    get_orchestrator,
    handle_cli_error,
    is_mock,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)
from lxcmap.config.inventory import load_inventory
from lxcmap.config.loader import MapLoader
from lxcmap.core.errors import ActionFailure, InventoryError, MapValidationError, TransientActionError
from lxcmap.core.lock import LockError
from lxcmap.core.orchestrator import RunReport
from lxcmap.core.report import EXIT_CANCELLED, EXIT_FAILED, render_plan, render_table
from lxcmap.services.proxmox.shell import HostShell
from lxcmap.services.proxmox.templates import DEFAULT_RELEASE, TemplateManager

# Module-level console instance (will be set by register function)
console: Console = Console()


def _finish(report: RunReport, action: str) -> None:
    """Print the outcome table and exit with the run's status."""
    render_table(console, report.outcomes, title=f"{report.deployment}: {action}")

    if report.cancelled:
        print_warning(console, "Run cancelled - undispatched actions were not applied")
    elif report.failed:
        console.print(f"[red]✗ {len(report.failed)} container(s) failed[/red]")
    else:
        print_success(console, f"{action.capitalize()} complete")
        if report.artifact_dir:
            console.print(f"[dim]Artifacts: {report.artifact_dir}[/dim]")

    code = report.exit_code
    if code:
        raise typer.Exit(code)


def provision(
    map_path: str = typer.Argument(..., help="Container map YAML file"),
    inventory: Optional[str] = typer.Option(None, "--inventory", "-i", help="Host inventory file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Probe and plan, but change nothing"),
    no_harden: bool = typer.Option(False, "--no-harden", help="Skip in-container bootstrap"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Create, configure and start every container the map declares.

    Safe to re-run: existing containers are reconfigured in place, never
    recreated.
    """
    setup_logging(log_file=log_file, verbose=verbose)
    config = get_cli_config(console, verbose)
    orchestrator = get_orchestrator(map_path, inventory, harden=not no_harden, config=config)

    try:
        report = orchestrator.provision(dry_run=dry_run)
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console, verbose)
    except LockError as e:
        handle_cli_error(e, console, verbose, exit_code=EXIT_FAILED)
    except KeyboardInterrupt:
        print_warning(console, "Cancelled before execution - no changes made")
        raise typer.Exit(EXIT_CANCELLED)

    if dry_run:
        render_plan(console, report.plan, title=f"{report.deployment}: plan")
        print_warning(console, "DRY RUN - No changes applied")
        return

    _finish(report, "provision")


def plan(
    map_path: str = typer.Argument(..., help="Container map YAML file"),
    inventory: Optional[str] = typer.Option(None, "--inventory", "-i", help="Host inventory file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Show what provision would do (probes hosts, changes nothing)."""
    config = get_cli_config(console, verbose)
    orchestrator = get_orchestrator(map_path, inventory, config=config)

    try:
        container_map, action_plan = orchestrator.plan()
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console, verbose)
    except KeyboardInterrupt:
        raise typer.Exit(EXIT_CANCELLED)

    render_plan(console, action_plan, title=f"{container_map.deployment}: plan")
    if action_plan.is_noop():
        print_info(console, "Nothing can be applied - every container is skipped")


def nuke(
    map_path: str = typer.Argument(..., help="Container map YAML file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    keep_artifacts: bool = typer.Option(False, "--keep-artifacts", help="Keep output/<deployment>"),
    inventory: Optional[str] = typer.Option(None, "--inventory", "-i", help="Host inventory file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Stop and destroy the containers the map declares.

    Containers on the hosts that the map does not declare are never touched.
    """
    setup_logging(log_file=log_file, verbose=verbose)
    config = get_cli_config(console, verbose)
    orchestrator = get_orchestrator(map_path, inventory, harden=False, config=config)

    try:
        container_map, preview = orchestrator.plan_nuke()
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console, verbose)
    except KeyboardInterrupt:
        raise typer.Exit(EXIT_CANCELLED)

    render_plan(console, preview, title=f"{container_map.deployment}: destroy plan")
    if preview.is_noop():
        print_info(console, "Nothing to destroy")
    else:
        console.print("[red]⚠️  Destroyed containers and their volumes cannot be recovered.[/red]")
        if not confirm_action(f"\nDestroy the containers of '{container_map.deployment}'?",
                              yes_flag=yes, mock=is_mock()):
            print_warning(console, "Nuke cancelled")
            return

    try:
        report = orchestrator.nuke(keep_artifacts=keep_artifacts)
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console, verbose)
    except LockError as e:
        handle_cli_error(e, console, verbose, exit_code=EXIT_FAILED)
    except KeyboardInterrupt:
        print_warning(console, "Cancelled before execution - no changes made")
        raise typer.Exit(EXIT_CANCELLED)

    _finish(report, "nuke")


def templates(
    map_path: Optional[str] = typer.Argument(None, help="Container map whose hosts and releases to prepare"),
    host: Optional[List[str]] = typer.Option(None, "--host", help="Inventory host (repeatable, default: all)"),
    version: Optional[List[str]] = typer.Option(None, "--version", help="Ubuntu release, e.g. 24.04 (repeatable)"),
    storage: Optional[str] = typer.Option(None, "--storage", help="Storage holding vztmpl images"),
    inventory: Optional[str] = typer.Option(None, "--inventory", "-i", help="Host inventory file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Download Ubuntu templates to Proxmox hosts ahead of provisioning.

    With a MAP, prepares the releases its containers use on the hosts it
    names. Without one, prepares --version (default 24.04) on every
    inventory host.
    """
    setup_logging(log_file=log_file, verbose=verbose)
    config = get_cli_config(console, verbose)
    if storage:
        config = replace(config, template_storage=storage)

    try:
        hosts = load_inventory(inventory)
        if map_path:
            container_map = MapLoader(map_path, known_hosts=hosts.names()).load()
            targets = host or container_map.hosts
            releases = version or list(dict.fromkeys(spec.template for spec in container_map.containers))
        else:
            targets = host or hosts.names()
            releases = version or [DEFAULT_RELEASE]
        shells: Dict[str, HostShell] = {name: HostShell(hosts.get(name)) for name in targets}
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console, verbose)

    manager = TemplateManager(mock=is_mock(), config=config)

    table = Table(title=f"Templates ({config.template_storage})", show_header=True, header_style="bold cyan")
    table.add_column("Host", style="cyan")
    table.add_column("Release")
    table.add_column("Template")
    table.add_column("Status")

    failed = 0
    try:
        for name, shell in shells.items():
            for release in releases:
                try:
                    ref = manager.ensure_image(shell, release)
                except (ActionFailure, TransientActionError) as e:
                    failed += 1
                    table.add_row(name, release, "-", f"[red]✗ {escape(str(e))}[/red]")
                    continue
                table.add_row(name, release, escape(ref), "[green]✓ available[/green]")
    except KeyboardInterrupt:
        console.print(table)
        raise typer.Exit(EXIT_CANCELLED)

    console.print(table)
    if failed:
        console.print(f"[red]✗ {failed} template(s) could not be prepared[/red]")
        raise typer.Exit(EXIT_FAILED)
    print_success(console, "Templates ready")


def register_provision_commands(app: typer.Typer, shared_console: Console):
    """Register provisioning commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command()(provision)
    app.command()(plan)
    app.command()(nuke)
    app.command()(templates)
