"""Deployment CLI commands - validate, list, test."""
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from lxcmap.cli_support import (
    get_cli_config,
    handle_cli_error,
    is_mock,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from lxcmap.config.inventory import find_inventory, load_inventory
from lxcmap.config.loader import MapLoader
from lxcmap.core.errors import ActionFailure, InventoryError, MapValidationError
from lxcmap.core.report import EXIT_FAILED
from lxcmap.scaffold.core import ScaffoldManager
from lxcmap.services.connectivity import ConnectivityChecker

console: Console = Console()


def validate(
    map_path: str = typer.Argument(..., help="Container map YAML file"),
    inventory: Optional[str] = typer.Option(None, "--inventory", "-i", help="Host inventory file"),
):
    """Validate a container map without contacting any host.

    Host names are checked against the inventory when one can be found.
    """
    try:
        known_hosts = None
        if find_inventory(inventory):
            known_hosts = load_inventory(inventory).names()
        container_map = MapLoader(map_path, known_hosts=known_hosts).load()
    except (MapValidationError, InventoryError) as e:
        handle_cli_error(e, console)

    table = Table(title=f"Deployment: {container_map.deployment}", show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("Hostname")
    table.add_column("Host")
    table.add_column("Type")
    table.add_column("Address")
    table.add_column("Rootfs")
    table.add_column("Mounts", justify="right")

    for spec in container_map.containers:
        table.add_row(
            str(spec.id),
            spec.hostname,
            spec.host,
            spec.provision_type.value,
            spec.ip_cidr,
            spec.rootfs.to_pct(),
            str(len(spec.mounts)),
        )

    console.print(table)
    if known_hosts is None:
        print_info(console, "No inventory found - host names were not checked")
    print_success(console, f"{map_path} is valid")


def list_deployments():
    """List deployments that have written artifacts."""
    scaffold = ScaffoldManager(Path(get_cli_config(console).output_dir))
    deployments = scaffold.list_deployments()

    if not deployments:
        print_info(console, f"No deployments found in {scaffold.output_dir}")
        return

    table = Table(title="Deployments", show_header=True, header_style="bold cyan")
    table.add_column("Deployment", style="cyan")
    table.add_column("Containers", justify="right")
    table.add_column("Path", style="dim")

    for path in deployments:
        count = "?"
        resolved = path / "containers.yml"
        if resolved.exists():
            try:
                data = yaml.safe_load(resolved.read_text()) or {}
                count = str(len(data.get("containers") or []))
            except yaml.YAMLError:
                count = "?"
        table.add_row(path.name, count, str(path))

    console.print(table)


def ping_containers(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show tracebacks on error"),
):
    """Ping every provisioned container through its Ansible inventory."""
    config = get_cli_config(console, verbose)
    scaffold = ScaffoldManager(Path(config.output_dir))

    if not scaffold.output_dir.exists():
        print_error(console, "No containers have been provisioned yet!")
        print_info(console, "Run: lxcmap provision <map.yml>")
        raise typer.Exit(EXIT_FAILED)

    deployments = scaffold.list_deployments()
    if not deployments:
        print_warning(console, f"No provisioned containers found in {scaffold.output_dir}")
        return

    checker = ConnectivityChecker(mock=is_mock(), config=config)
    results = []
    for path in deployments:
        print_info(console, f"Testing: {path.name}")
        try:
            results.extend(checker.check(path / "hosts.ini"))
        except ActionFailure as e:
            handle_cli_error(e, console, verbose, exit_code=EXIT_FAILED)

    table = Table(title="Connectivity", show_header=True, header_style="bold cyan")
    table.add_column("Deployment", style="cyan")
    table.add_column("Container")
    table.add_column("Status")

    for item in results:
        status = "[green]REACHABLE[/green]" if item.reachable else f"[red]UNREACHABLE[/red] ({item.detail})"
        table.add_row(item.deployment, item.hostname, status)

    console.print(table)
    print_info(console, f"Tested {len(results)} container(s)")

    unreachable = [item for item in results if not item.reachable]
    if unreachable:
        print_error(console, f"{len(unreachable)} container(s) unreachable")
        raise typer.Exit(EXIT_FAILED)
    print_success(console, "All containers reachable")


def register_deployment_commands(app: typer.Typer, shared_console: Console):
    """Register offline commands with the main Typer app."""
    global console
    console = shared_console

    app.command()(validate)
    app.command(name="list")(list_deployments)
    app.command(name="test")(ping_containers)
