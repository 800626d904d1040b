# Load .env vars from file before everything else
from dotenv import load_dotenv

load_dotenv()

from .logger import setup_logging  # noqa: E402

setup_logging()

from typing import TYPE_CHECKING  # noqa: E402

if TYPE_CHECKING:
    from .build.orchestrator import BuildRequest, ImageOrchestrator, create_orchestrator
    from .config import DaemonConfig
    from .core.auth import AuthConfig, DockerConfigCredentialStore
    from .daemon.client import HttpDaemonClient


def __getattr__(name):
    """Lazily import core modules only when accessed."""
    if name in ("BuildRequest", "ImageOrchestrator", "create_orchestrator"):
        from .build import orchestrator

        return getattr(orchestrator, name)
    elif name == "DaemonConfig":
        from .config import DaemonConfig

        return DaemonConfig
    elif name in ("AuthConfig", "DockerConfigCredentialStore"):
        from .core import auth

        return getattr(auth, name)
    elif name == "HttpDaemonClient":
        from .daemon.client import HttpDaemonClient

        return HttpDaemonClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AuthConfig",
    "BuildRequest",
    "DaemonConfig",
    "DockerConfigCredentialStore",
    "HttpDaemonClient",
    "ImageOrchestrator",
    "create_orchestrator",
]
