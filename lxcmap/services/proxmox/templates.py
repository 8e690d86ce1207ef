"""Template image management for Proxmox LXC containers."""
import re
import threading
from typing import Dict, List, Optional, Tuple

from lxcmap.core.config import LxcmapConfig, get_config
from lxcmap.core.errors import ActionFailure, TransientActionError
from lxcmap.core.logger import get_logger
from lxcmap.core.retry import retry
from lxcmap.services.proxmox.shell import HostShell

logger = get_logger(__name__)

DEFAULT_RELEASE = "24.04"

_ARCHIVE_SUFFIXES = ('.tar.zst', '.tar.xz', '.tar.gz')


def template_pattern(version: str) -> re.Pattern:
    """Regex matching Ubuntu template filenames for a release, e.g. 24.04."""
    return re.compile(rf"ubuntu-{re.escape(version)}-standard_[\w.\-]+?_amd64\.tar\.(zst|xz|gz)")


def _latest(names: List[str]) -> Optional[str]:
    return sorted(names)[-1] if names else None


class TemplateManager:
    """Ensures a container image exists on a node before pct create.

    Lookups are memoised per (host, version) for the lifetime of the manager,
    which is one run.
    """

    def __init__(self, mock: bool = False, config: Optional[LxcmapConfig] = None):
        self.mock = mock
        self.config = config or get_config()
        self._cache: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def ensure_image(self, shell: HostShell, version: str) -> str:
        """Return a volume reference for the template, downloading it if needed.

        Args:
            shell: Shell for the target node
            version: Ubuntu release ('24.04'), a template filename, or a full
                '<storage>:vztmpl/<file>' reference

        Raises:
            ActionFailure: No template matches the version
            TransientActionError: Download kept failing
        """
        storage = self.config.template_storage

        if ':' in version:
            return version
        if version.endswith(_ARCHIVE_SUFFIXES):
            return f"{storage}:vztmpl/{version}"

        key = (shell.name, version)
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        if self.mock:
            ref = f"{storage}:vztmpl/ubuntu-{version}-standard_{version}-1_amd64.tar.zst"
            logger.info(f"MOCK: Would ensure template {ref} on {shell.name}")
            return ref

        ref = self._find_local(shell, version)
        if ref is None:
            filename = self._find_available(shell, version)
            self._download(shell, filename)
            ref = f"{storage}:vztmpl/{filename}"

        with self._lock:
            self._cache[key] = ref
        return ref

    def _find_local(self, shell: HostShell, version: str) -> Optional[str]:
        result = shell.run(
            ['pveam', 'list', self.config.template_storage],
            timeout=self.config.command_timeout,
            check=True,
        )
        pattern = template_pattern(version)
        matches = [
            line.split()[0] for line in result.stdout.splitlines()
            if line.strip() and pattern.search(line)
        ]
        ref = _latest(matches)
        if ref:
            logger.debug(f"Template {ref} already available on {shell.name}")
        return ref

    def _find_available(self, shell: HostShell, version: str) -> str:
        try:
            shell.run(['pveam', 'update'], timeout=self.config.template_download_timeout, check=True)
        except ActionFailure as e:
            logger.warning(f"Failed to update template list on {shell.name}: {e}")

        result = shell.run(
            ['pveam', 'available', '--section', 'system'],
            timeout=self.config.command_timeout,
            check=True,
        )
        pattern = template_pattern(version)
        names = [m.group(0) for m in map(pattern.search, result.stdout.splitlines()) if m]
        filename = _latest(names)
        if not filename:
            raise ActionFailure(f"[{shell.name}] no Ubuntu {version} template offered by pveam")
        return filename

    def _download(self, shell: HostShell, filename: str) -> None:
        @retry(
            max_attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
            backoff=self.config.retry_backoff,
            exceptions=(TransientActionError,),
        )
        def _run():
            logger.info(f"Downloading template {filename} to {shell.name}...")
            shell.run(
                ['pveam', 'download', self.config.template_storage, filename],
                timeout=self.config.template_download_timeout,
                check=True,
            )
            logger.info(f"✓ Downloaded template {filename}")

        _run()
