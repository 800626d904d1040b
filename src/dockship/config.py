"""
Image daemon connection configuration.

Handles daemon host selection, TLS settings and the Docker CLI config
directory used for registry credentials.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds

# Build context streaming
CONTEXT_CHUNK_SIZE = 32 * 1024
CONTEXT_SPOOL_SIZE = 8 * 1024 * 1024  # archives below this stay in memory


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("true", "1", "yes")


@dataclass
class DaemonConfig:
    """Image daemon connection configuration."""

    host: str = DEFAULT_DOCKER_HOST
    api_version: Optional[str] = None
    tls_verify: bool = False
    cert_path: Optional[Path] = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    docker_config_dir: Optional[Path] = None

    @classmethod
    def from_environment(cls) -> "DaemonConfig":
        """
        Create daemon config from environment variables.

        Environment variables:
            DOCKER_HOST: Daemon address (unix://, tcp://, http:// or https://)
            DOCKER_API_VERSION: Engine API version prefix (e.g. 1.41)
            DOCKER_TLS_VERIFY: Verify the daemon certificate (true/false)
            DOCKER_CERT_PATH: Directory holding ca.pem, cert.pem and key.pem
            DOCKER_CONFIG: Docker CLI config directory (defaults to ~/.docker)
            DOCKSHIP_CONNECT_TIMEOUT: Connection timeout in seconds

        Returns:
            DaemonConfig instance
        """
        cert_path = os.getenv("DOCKER_CERT_PATH")
        config_dir = os.getenv("DOCKER_CONFIG")

        return cls(
            host=os.getenv("DOCKER_HOST") or DEFAULT_DOCKER_HOST,
            api_version=os.getenv("DOCKER_API_VERSION") or None,
            tls_verify=_env_flag("DOCKER_TLS_VERIFY"),
            cert_path=Path(cert_path).expanduser() if cert_path else None,
            connect_timeout=float(
                os.getenv("DOCKSHIP_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)
            ),
            docker_config_dir=Path(config_dir).expanduser() if config_dir else None,
        )

    def get_config_dir(self) -> Path:
        """Directory holding the Docker CLI config.json."""
        return self.docker_config_dir or Path.home() / ".docker"

    def is_unix_socket(self) -> bool:
        return self.host.startswith("unix://")

    def get_socket_path(self) -> str:
        return self.host[len("unix://") :]

    def get_base_url(self) -> str:
        """
        Get the HTTP base URL for the daemon.

        Unix sockets get a placeholder host since the transport ignores it.

        Returns:
            Base URL including the API version prefix when configured
        """
        if self.is_unix_socket():
            base = "http://docker"
        elif self.host.startswith("tcp://"):
            scheme = "https" if self.tls_verify or self.cert_path else "http"
            base = f"{scheme}://{self.host[len('tcp://'):]}"
        else:
            base = self.host

        base = base.rstrip("/")
        if self.api_version:
            return f"{base}/v{self.api_version.lstrip('v')}"
        return base
