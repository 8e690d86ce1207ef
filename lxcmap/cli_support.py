"""Shared utilities for lxcmap CLI modules."""
from __future__ import annotations

import os
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.orchestrator import DeploymentOrchestrator
from lxcmap.core.report import EXIT_INVALID


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("LXCMAP_MOCK") == "1"


def setup_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging and console verbosity for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from lxcmap.core.logger import set_verbose, setup_file_logging
    setup_file_logging(log_file=log_file, verbose=verbose)
    set_verbose(verbose)


def get_cli_config(console: Console, verbose: bool = False) -> LxcmapConfig:
    """Return the runtime config, exiting with a usage error if LXCMAP_* is invalid."""
    try:
        return get_config()
    except ValueError as e:
        handle_cli_error(e, console, verbose)


def get_orchestrator(
    map_path: str,
    inventory_path: Optional[str] = None,
    harden: bool = True,
    mock: Optional[bool] = None,
    config: Optional[LxcmapConfig] = None,
) -> DeploymentOrchestrator:
    """Return a DeploymentOrchestrator with mock defaults."""
    if mock is None:
        mock = is_mock()
    return DeploymentOrchestrator(
        map_path,
        inventory_path=inventory_path,
        mock=mock,
        config=config or get_config(),
        harden=harden,
    )


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = EXIT_INVALID
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {escape(str(e))}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
