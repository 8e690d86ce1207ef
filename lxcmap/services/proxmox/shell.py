"""Command execution on Proxmox nodes."""
import shlex
import subprocess
from typing import List, Optional

from lxcmap.core.errors import ActionFailure, TransientActionError
from lxcmap.core.logger import get_logger
from lxcmap.models.host import InventoryHost

logger = get_logger(__name__)

# stderr fragments that mean "try again later"
TRANSIENT_MARKERS = (
    "can't lock file",
    "is locked",
    "got timeout",
    "trying to acquire lock",
    "connection timed out",
    "connection reset",
    "connection refused",
    "temporary failure",
    "resource temporarily unavailable",
)

SSH_CONNECTION_ERROR = 255


def classify_failure(command: str, result: subprocess.CompletedProcess) -> Exception:
    """Return the error type a failed command maps to."""
    stderr = (result.stderr or "").strip()
    message = f"{command} exited {result.returncode}: {stderr or (result.stdout or '').strip()}"

    lowered = stderr.lower()
    if result.returncode == SSH_CONNECTION_ERROR or any(m in lowered for m in TRANSIENT_MARKERS):
        return TransientActionError(message)
    return ActionFailure(message)


class HostShell:
    """Runs commands on one node, directly or through ssh."""

    def __init__(self, host: InventoryHost, connect_timeout: int = 10):
        self.host = host
        self.connect_timeout = connect_timeout

    @property
    def name(self) -> str:
        return self.host.name

    def build_command(self, cmd: List[str]) -> List[str]:
        """Full argv: the command itself for local nodes, wrapped in ssh otherwise."""
        if self.host.local:
            return list(cmd)
        return self.host.ssh_prefix(self.connect_timeout) + [shlex.join(cmd)]

    def run(self, cmd: List[str], timeout: int, check: bool = False,
            input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a command and return the completed process.

        Args:
            cmd: argv to execute on the node
            timeout: Seconds before the call counts as a transient failure
            check: Raise on non-zero exit
            input_text: Data fed to stdin

        Raises:
            TransientActionError: Timeout, ssh connection failure, or lock contention
            ActionFailure: Any other non-zero exit (only when check=True)
        """
        argv = self.build_command(cmd)
        command_str = shlex.join(cmd)
        logger.debug(f"[{self.name}] {command_str}")

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input_text,
            )
        except subprocess.TimeoutExpired as e:
            raise TransientActionError(
                f"[{self.name}] {command_str} timed out after {timeout}s"
            ) from e
        except FileNotFoundError as e:
            raise ActionFailure(f"[{self.name}] {argv[0]} not found: {e}") from e

        if result.returncode == SSH_CONNECTION_ERROR and not self.host.local:
            raise TransientActionError(
                f"[{self.name}] ssh connection failed: {(result.stderr or '').strip()}"
            )

        if check and result.returncode != 0:
            raise classify_failure(f"[{self.name}] {command_str}", result)

        return result
