#!/usr/bin/env python3
"""lxcmap CLI - Declarative LXC provisioning for Proxmox clusters."""

import typer
from rich.console import Console

from lxcmap.cli_deployment_commands import register_deployment_commands
from lxcmap.cli_provision_commands import register_provision_commands
from lxcmap.core.logger import get_logger

app = typer.Typer(
    name="lxcmap",
    help="""lxcmap - Declarative LXC provisioning for Proxmox clusters

One YAML map. Every container, on every node.

Quick start:
  lxcmap validate web.yml      # Check the map offline
  lxcmap templates web.yml     # Pre-download Ubuntu templates
  lxcmap plan web.yml          # See what will change
  lxcmap provision web.yml     # Make it happen
  lxcmap test                  # Ping provisioned containers
  lxcmap nuke web.yml          # Tear it down again
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

# Attach modular subcommands
register_provision_commands(app, console)
register_deployment_commands(app, console)

if __name__ == "__main__":
    app()
