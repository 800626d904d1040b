"""
Image build and push orchestrator.

Main class that coordinates context assembly, registry credentials, daemon
requests and status relaying for a single image.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Dict, Optional, Union

from ..config import DaemonConfig
from ..core.auth import AuthResolver, CredentialStore, DockerConfigCredentialStore
from ..core.reference import with_latest_tag
from ..daemon.client import (
    BUILD_STEP,
    LIST_STEP,
    PUSH_STEP,
    BuildOptions,
    DaemonClient,
    HttpDaemonClient,
)
from ..exceptions import DaemonQueryError
from .context import ContextBuilder, DependencyParser
from .dockerfile_deps import DockerfileDependencyParser
from .relay import StatusRelay

log = logging.getLogger(__name__)


@dataclass
class BuildRequest:
    """Everything needed to build one image."""

    image_name: str
    dockerfile: str
    context_dir: Union[str, Path]
    # None means "use the ARG default or the daemon environment"
    build_args: Dict[str, Optional[str]] = field(default_factory=dict)
    progress_sink: Optional[IO[str]] = None
    build_sink: Optional[IO[str]] = None


class ImageOrchestrator:
    """
    Build, push and look up images against an image daemon.

    Each operation is one coroutine. Cancelling the task running it aborts
    the daemon connection and releases the context archive and the response
    stream; nothing is retried.
    """

    def __init__(
        self,
        daemon: DaemonClient,
        credential_store: CredentialStore,
        dependency_parser: Optional[DependencyParser] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            daemon: Image daemon capability (build, push, list)
            credential_store: Source of registry credentials
            dependency_parser: Dockerfile dependency resolver
        """
        self.daemon = daemon
        self.auth = AuthResolver(credential_store)
        self.context_builder = ContextBuilder(
            dependency_parser or DockerfileDependencyParser()
        )

    async def __aenter__(self) -> "ImageOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the daemon connection, if the daemon client holds one."""
        close = getattr(self.daemon, "close", None)
        if close is not None:
            await close()

    async def build(self, request: BuildRequest) -> StatusRelay:
        """
        Build an image from a dependency-filtered context.

        Args:
            request: Build request

        Returns:
            StatusRelay holding what the daemon reported

        Raises:
            AuthResolutionError: If registry credentials cannot be read
            ConfigurationError: Invalid context or Dockerfile
            ContextAssemblyError: If the context archive cannot be produced
            SubmissionError: If the daemon rejects the build
            StreamError: If the daemon reports a build failure
        """
        log.debug(
            f"Running docker build: context: {request.context_dir}, "
            f"dockerfile: {request.dockerfile}"
        )
        auth_configs = self.auth.for_build()

        options = BuildOptions(
            tags=[request.image_name],
            dockerfile=request.dockerfile,
            build_args=dict(request.build_args),
        )
        relay = StatusRelay(request.build_sink or sys.stdout, BUILD_STEP)

        with self.context_builder.create(request.context_dir, request.dockerfile) as archive:
            body = archive.stream(request.progress_sink)
            async with self.daemon.build(body, options, auth_configs) as stream:
                await relay.relay_bytes(stream)

        log.info(f"Built image {request.image_name}")
        return relay

    async def push(self, ref: str, out: Optional[IO[str]] = None) -> StatusRelay:
        """
        Push an image with credentials for its registry only.

        Args:
            ref: Image reference to push
            out: Sink for the push log (defaults to stdout)

        Returns:
            StatusRelay holding what the daemon reported

        Raises:
            AuthResolutionError: If credentials for the registry cannot be read
            SubmissionError: If the daemon rejects the push
            StreamError: If the daemon reports a push failure
        """
        auth_config = self.auth.for_push(ref)
        relay = StatusRelay(out or sys.stdout, PUSH_STEP)

        async with self.daemon.push(ref, auth_config) as stream:
            await relay.relay_bytes(stream)

        log.info(f"Pushed image {ref}")
        return relay

    async def digest(self, ref: str) -> str:
        """
        Get the identifier of the image tagged ``<ref>:latest``.

        ":latest" is always appended, so a reference that already carries a
        tag never matches.

        Args:
            ref: Image reference without tag

        Returns:
            Image id (e.g. "sha256:..."), or "" when no image has that tag

        Raises:
            DaemonQueryError: If the image index cannot be queried
        """
        ref_latest = with_latest_tag(ref)
        try:
            images = await self.daemon.list_images(ref_latest)
        except DaemonQueryError:
            raise
        except Exception as e:
            raise DaemonQueryError(LIST_STEP, str(e)) from e

        for image in images:
            if ref_latest in image.repo_tags:
                return image.id
        return ""

    async def build_and_push(self, request: BuildRequest) -> str:
        """
        Build an image, push it and resolve its digest.

        Returns:
            Image id of the pushed image, "" if the index has no match
        """
        await self.build(request)
        await self.push(request.image_name, request.build_sink)
        return await self.digest(request.image_name)


def create_orchestrator(config: Optional[DaemonConfig] = None) -> ImageOrchestrator:
    """
    Create an orchestrator wired to the configured daemon and Docker config.

    Args:
        config: Daemon configuration (defaults to environment-based)

    Returns:
        ImageOrchestrator using HttpDaemonClient and the Docker CLI credentials

    Example:
        >>> async with create_orchestrator() as orchestrator:
        ...     await orchestrator.build(BuildRequest("myimage", "Dockerfile", "/src/app"))
    """
    config = config or DaemonConfig.from_environment()
    return ImageOrchestrator(
        daemon=HttpDaemonClient(config),
        credential_store=DockerConfigCredentialStore(config.get_config_dir()),
    )
