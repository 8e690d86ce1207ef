"""Logging for lxcmap runs.

Every module logs to the console through Rich. A provision or nuke run also
writes a file log; hosts are worked on from parallel threads, so each file
line carries the thread name to keep one host's pct calls readable.
"""
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

console = Console()

# Log file configuration
LOG_DIR = Path("/var/log/lxcmap")
LOG_FILE = LOG_DIR / "lxcmap.log"

# Track if file logging has been set up
_file_logging_configured = False


def setup_file_logging(log_file: str = None, verbose: bool = False):
    """Attach the run log to the `lxcmap` logger (once per process).

    Args:
        log_file: Path to log file (defaults to /var/log/lxcmap/lxcmap.log)
        verbose: Also record the pct/ssh command lines (debug level)

    Note:
        Falls back to /tmp/lxcmap.log when the target cannot be written,
        e.g. when run as a non-root user off the Proxmox node.
    """
    global _file_logging_configured

    if _file_logging_configured:
        return

    target_log_file = Path(log_file) if log_file else LOG_FILE

    try:
        target_log_file.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        target_log_file = Path("/tmp/lxcmap.log")

    try:
        file_handler = logging.FileHandler(target_log_file)
    except PermissionError:
        target_log_file = Path("/tmp/lxcmap.log")
        file_handler = logging.FileHandler(target_log_file)

    root_logger = logging.getLogger("lxcmap")
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(threadName)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    _file_logging_configured = True
    root_logger.info(f"lxcmap logging initialized: {target_log_file}")


def set_verbose(verbose: bool) -> None:
    """Raise or lower console verbosity for every lxcmap logger."""
    level = logging.DEBUG if verbose else logging.INFO
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith("lxcmap") and isinstance(logger, logging.Logger):
            logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger that prints to the shared Rich console.

    Progress lines use '✓' and '✗' markers; mock runs prefix 'MOCK: Would'.
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger
