"""SSH keypair generation for deployment access."""
import subprocess
from pathlib import Path

from lxcmap.core.errors import ActionFailure
from lxcmap.core.logger import get_logger

logger = get_logger(__name__)

KEY_NAME = "id_ed25519"


class KeyManager:
    """Creates (or reuses) the ed25519 keypair of a deployment."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def ensure_keypair(self, artifact_dir: Path, comment: str = "lxcmap") -> str:
        """Return the public key, generating the pair on first use.

        Raises:
            ActionFailure: ssh-keygen is missing or failed
        """
        artifact_dir = Path(artifact_dir)
        private_key = artifact_dir / KEY_NAME
        public_key = artifact_dir / f"{KEY_NAME}.pub"

        if public_key.exists() and private_key.exists():
            logger.debug(f"Reusing keypair {private_key}")
            return public_key.read_text().strip()

        if self.mock:
            logger.info(f"MOCK: Would generate keypair {private_key}")
            return f"ssh-ed25519 AAAAMOCKKEY {comment}"

        artifact_dir.mkdir(parents=True, exist_ok=True)
        try:
            subprocess.run(
                ['ssh-keygen', '-q', '-t', 'ed25519', '-N', '', '-C', comment, '-f', str(private_key)],
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise ActionFailure("ssh-keygen not found; install openssh-client") from e
        except subprocess.CalledProcessError as e:
            raise ActionFailure(f"ssh-keygen failed: {(e.stderr or '').strip()}") from e

        private_key.chmod(0o600)
        logger.info(f"🔐 Generated keypair {private_key}")
        return public_key.read_text().strip()
