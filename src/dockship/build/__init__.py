"""
Dockship build components.

    - ContextBuilder: Dependency-filtered build context archives
    - DockerfileDependencyParser: COPY/ADD source resolution
    - StatusRelay: Daemon status stream rendering
    - ImageOrchestrator: Build, push and digest lookup

Usage:
    from dockship.build.orchestrator import BuildRequest, create_orchestrator
"""

from .context import BuildContextArchive, ContextBuilder, DependencyParser
from .dockerfile_deps import DockerfileDependencyParser
from .orchestrator import BuildRequest, ImageOrchestrator, create_orchestrator
from .relay import StatusEvent, StatusRelay, decode_events

__all__ = [
    # Context assembly
    "BuildContextArchive",
    "ContextBuilder",
    "DependencyParser",
    "DockerfileDependencyParser",
    # Status stream
    "StatusEvent",
    "StatusRelay",
    "decode_events",
    # Orchestration
    "BuildRequest",
    "ImageOrchestrator",
    "create_orchestrator",
]
