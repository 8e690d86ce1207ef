"""lxcmap runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class LxcmapConfig:
    """Runtime configuration for lxcmap runs.

    Attributes:
        command_timeout: Timeout in seconds for a single pct/pvesm call (default: 60)
        probe_timeout: Timeout in seconds for each read-only probe query (default: 20)
        create_timeout: Timeout in seconds for pct create (default: 300)
        bootstrap_timeout: Timeout in seconds for in-container hardening steps (default: 600)
        boot_wait_timeout: Seconds to wait for a started container to answer pct exec (default: 60)
        template_download_timeout: Timeout in seconds for pveam downloads (default: 600)
        retry_attempts: Attempt ceiling for transient failures (default: 4)
        retry_delay: Initial backoff delay in seconds (default: 2.0)
        retry_backoff: Backoff multiplier (default: 2.0)
        max_parallel_hosts: Hosts probed/executed concurrently (default: 4)
        output_dir: Where deployment artifacts are written (default: ./output)
        lock_dir: Where run locks live (default: /var/run/lxcmap)
        template_storage: Proxmox storage holding vztmpl images (default: local)
    """

    command_timeout: int = 60
    probe_timeout: int = 20
    create_timeout: int = 300
    bootstrap_timeout: int = 600
    boot_wait_timeout: int = 60
    template_download_timeout: int = 600

    retry_attempts: int = 4
    retry_delay: float = 2.0
    retry_backoff: float = 2.0

    max_parallel_hosts: int = 4

    output_dir: str = "./output"
    lock_dir: str = "/var/run/lxcmap"
    template_storage: str = "local"

    def __post_init__(self):
        if self.retry_attempts < 1:
            raise ValueError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.max_parallel_hosts < 1:
            raise ValueError(f"max_parallel_hosts must be at least 1, got {self.max_parallel_hosts}")

    @classmethod
    def from_env(cls) -> "LxcmapConfig":
        """Create config from LXCMAP_* environment variables."""
        return cls(
            command_timeout=int(os.getenv("LXCMAP_COMMAND_TIMEOUT", cls.command_timeout)),
            probe_timeout=int(os.getenv("LXCMAP_PROBE_TIMEOUT", cls.probe_timeout)),
            create_timeout=int(os.getenv("LXCMAP_CREATE_TIMEOUT", cls.create_timeout)),
            bootstrap_timeout=int(os.getenv("LXCMAP_BOOTSTRAP_TIMEOUT", cls.bootstrap_timeout)),
            boot_wait_timeout=int(os.getenv("LXCMAP_BOOT_WAIT_TIMEOUT", cls.boot_wait_timeout)),
            template_download_timeout=int(
                os.getenv("LXCMAP_TEMPLATE_DOWNLOAD_TIMEOUT", cls.template_download_timeout)
            ),
            retry_attempts=int(os.getenv("LXCMAP_RETRY_ATTEMPTS", cls.retry_attempts)),
            retry_delay=float(os.getenv("LXCMAP_RETRY_DELAY", cls.retry_delay)),
            retry_backoff=float(os.getenv("LXCMAP_RETRY_BACKOFF", cls.retry_backoff)),
            max_parallel_hosts=int(os.getenv("LXCMAP_MAX_PARALLEL_HOSTS", cls.max_parallel_hosts)),
            output_dir=os.getenv("LXCMAP_OUTPUT_DIR", cls.output_dir),
            lock_dir=os.getenv("LXCMAP_LOCK_DIR", cls.lock_dir),
            template_storage=os.getenv("LXCMAP_TEMPLATE_STORAGE", cls.template_storage),
        )


# Global config instance (can be overridden)
_config: Optional[LxcmapConfig] = None


def get_config() -> LxcmapConfig:
    """Get the global lxcmap configuration (created from environment on first use)."""
    global _config
    if _config is None:
        _config = LxcmapConfig.from_env()
    return _config


def set_config(config: Optional[LxcmapConfig]):
    """Set the global lxcmap configuration. Passing None resets to environment defaults."""
    global _config
    _config = config
