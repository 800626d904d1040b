"""
Dependency-filtered build context assembly.

Creates tar archives holding only the Dockerfile and the files it
references, with ownership normalized so archives are reproducible.
"""

import logging
import os
import tarfile
import tempfile
from pathlib import Path
from typing import IO, AsyncIterator, List, Optional, Protocol, Union

from ..config import CONTEXT_CHUNK_SIZE, CONTEXT_SPOOL_SIZE
from ..core.utils.terminal import is_terminal
from ..core.utils.units import human_size
from ..exceptions import (
    ConfigurationError,
    ContextAssemblyError,
    DependencyResolutionError,
)

log = logging.getLogger(__name__)

SENDING_CONTEXT = "Sending build context to Docker daemon"


class DependencyParser(Protocol):
    """Resolves the paths a Dockerfile copies or adds from its context."""

    def resolve_dependencies(
        self, context_dir: Path, dockerfile_content: str
    ) -> List[str]: ...


def _normalize_owner(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def relative_to_context(context_dir: Path, path: Union[str, Path]) -> str:
    """
    Express a path relative to the context root.

    Args:
        context_dir: Absolute context directory
        path: Absolute path, or path relative to the context

    Returns:
        Normalized POSIX relative path

    Raises:
        ConfigurationError: If the path resolves outside the context
    """
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = context_dir / candidate

    relative = os.path.relpath(os.path.normpath(candidate), context_dir)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        raise ConfigurationError(
            "resolving build context",
            f"{path} is outside the build context {context_dir}",
        )
    return Path(relative).as_posix()


class ContextProgress:
    """Report "Sending build context" progress to a sink."""

    def __init__(self, sink: Optional[IO[str]]):
        self.sink = sink
        self.terminal = sink is not None and is_terminal(sink)
        self.sent = 0

    def update(self, size: int) -> None:
        self.sent += size
        if self.terminal:
            self.sink.write(f"\r{SENDING_CONTEXT}  {human_size(self.sent)}")
            self.sink.flush()

    def finish(self) -> None:
        if self.sink is None:
            return
        if self.terminal:
            self.sink.write("\n")
        else:
            self.sink.write(f"{SENDING_CONTEXT}  {human_size(self.sent)}\n")
        self.sink.flush()


class BuildContextArchive:
    """
    Tar archive of a build context.

    Created fresh for one build request, streamed once and discarded on
    close. Use as a context manager so the backing file is released on every
    exit path.
    """

    def __init__(self, fileobj: IO[bytes], members: List[str]):
        self._fileobj = fileobj
        self.members = members
        self.size = fileobj.seek(0, os.SEEK_END)
        fileobj.seek(0)
        self._streamed = False

    @property
    def closed(self) -> bool:
        return self._fileobj.closed

    def close(self) -> None:
        self._fileobj.close()

    def __enter__(self) -> "BuildContextArchive":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def read(self) -> bytes:
        """Read the whole archive without consuming the stream."""
        position = self._fileobj.tell()
        self._fileobj.seek(0)
        try:
            return self._fileobj.read()
        finally:
            self._fileobj.seek(position)

    async def stream(
        self,
        progress: Optional[IO[str]] = None,
        chunk_size: int = CONTEXT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """
        Yield the archive in chunks, reporting progress to a sink.

        Args:
            progress: Sink for "Sending build context" progress
            chunk_size: Bytes per chunk

        Raises:
            RuntimeError: If the archive was already streamed
        """
        if self._streamed:
            raise RuntimeError("build context archive can only be streamed once")
        self._streamed = True

        reporter = ContextProgress(progress)
        self._fileobj.seek(0)
        while True:
            chunk = self._fileobj.read(chunk_size)
            if not chunk:
                break
            reporter.update(len(chunk))
            yield chunk
        reporter.finish()


class ContextBuilder:
    """Assemble build context archives limited to Dockerfile dependencies."""

    def __init__(self, dependency_parser: DependencyParser):
        self.dependency_parser = dependency_parser

    def _read_dockerfile(self, context_dir: Path, dockerfile: str) -> str:
        try:
            relative_to_context(context_dir, dockerfile)
        except ConfigurationError as e:
            raise ConfigurationError("opening dockerfile", e.message) from e

        path = context_dir / dockerfile
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError("opening dockerfile", f"{path}: {e}") from e

    def resolve_members(self, context_dir: Union[str, Path], dockerfile: str) -> List[str]:
        """
        Compute the archive membership for a build.

        Args:
            context_dir: Build context directory
            dockerfile: Dockerfile path relative to the context

        Returns:
            Context-relative paths, dependencies first and the Dockerfile last

        Raises:
            ConfigurationError: Missing context or Dockerfile, or a path
                outside the context
            DependencyResolutionError: If the dependency parser fails
        """
        context = Path(os.path.abspath(context_dir))
        if not context.is_dir():
            raise ConfigurationError(
                "opening build context", f"{context} is not a directory"
            )

        content = self._read_dockerfile(context, dockerfile)

        try:
            paths = self.dependency_parser.resolve_dependencies(context, content)
        except (ConfigurationError, DependencyResolutionError):
            raise
        except Exception as e:
            raise DependencyResolutionError(
                "resolving dockerfile dependencies", str(e)
            ) from e

        members: List[str] = []
        for path in list(paths) + [dockerfile]:
            relative = relative_to_context(context, path)
            if relative not in members:
                members.append(relative)
        return members

    def create(self, context_dir: Union[str, Path], dockerfile: str) -> BuildContextArchive:
        """
        Create the build context archive.

        Args:
            context_dir: Build context directory
            dockerfile: Dockerfile path relative to the context

        Returns:
            BuildContextArchive positioned at its start

        Raises:
            ConfigurationError: Invalid context or Dockerfile path
            DependencyResolutionError: If the dependency parser fails
            ContextAssemblyError: If a listed path cannot be archived
        """
        context = Path(os.path.abspath(context_dir))
        members = self.resolve_members(context, dockerfile)
        log.debug(f"Build context {context}: {len(members)} paths")

        fileobj = tempfile.SpooledTemporaryFile(max_size=CONTEXT_SPOOL_SIZE)
        try:
            names = self._write_tar(fileobj, context, members)
        except BaseException:
            fileobj.close()
            raise

        archive = BuildContextArchive(fileobj, names)
        log.debug(f"Build context archive: {human_size(archive.size)}")
        return archive

    def _write_tar(self, fileobj: IO[bytes], context: Path, members: List[str]) -> List[str]:
        names: List[str] = []
        seen = set()

        def add(path: Path, name: str) -> None:
            if name in seen:
                return
            seen.add(name)
            tar.add(str(path), arcname=name, recursive=False, filter=_normalize_owner)
            names.append(name)

        try:
            with tarfile.open(fileobj=fileobj, mode="w") as tar:
                for member in members:
                    path = context / member
                    if not os.path.lexists(path):
                        raise ContextAssemblyError(
                            "tar workspace", f"{member}: no such file or directory"
                        )
                    add(path, member)
                    if path.is_dir() and not path.is_symlink():
                        for root, dirs, files in os.walk(path):
                            dirs.sort()
                            for entry in dirs + sorted(files):
                                full = Path(root) / entry
                                add(full, full.relative_to(context).as_posix())
        except (OSError, tarfile.TarError) as e:
            raise ContextAssemblyError("tar workspace", str(e)) from e

        return names
