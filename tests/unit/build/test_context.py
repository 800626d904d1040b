"""Unit tests for dependency-filtered build context assembly."""

import io
import os
import tarfile
from pathlib import Path
from typing import List

import pytest

from dockship.build.context import (
    BuildContextArchive,
    ContextBuilder,
    relative_to_context,
)
from dockship.build.dockerfile_deps import DockerfileDependencyParser
from dockship.exceptions import (
    ConfigurationError,
    ContextAssemblyError,
    DependencyResolutionError,
)


class ListParser:
    """Dependency parser returning a fixed list."""

    def __init__(self, paths: List[str]):
        self.paths = paths
        self.calls = []

    def resolve_dependencies(self, context_dir, dockerfile_content):
        self.calls.append((context_dir, dockerfile_content))
        return list(self.paths)


class FailingParser:
    def resolve_dependencies(self, context_dir, dockerfile_content):
        raise FileNotFoundError("missing.txt: no source files were specified")


def tar_members(archive: BuildContextArchive) -> List[tarfile.TarInfo]:
    with tarfile.open(fileobj=io.BytesIO(archive.read()), mode="r") as tar:
        return tar.getmembers()


async def drain(archive: BuildContextArchive, progress=None) -> bytes:
    return b"".join([chunk async for chunk in archive.stream(progress, chunk_size=1024)])


class TestRelativeToContext:
    """Tests for relative_to_context."""

    def test_relative_path_is_normalized(self, tmp_path):
        assert relative_to_context(tmp_path, "./src/../src/app.py") == "src/app.py"

    def test_absolute_path_inside_context(self, tmp_path):
        assert relative_to_context(tmp_path, tmp_path / "src" / "app.py") == "src/app.py"

    def test_absolute_path_outside_context(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            relative_to_context(tmp_path / "ctx", tmp_path / "other" / "file")
        assert exc_info.value.step == "resolving build context"

    def test_relative_path_escaping_context(self, tmp_path):
        with pytest.raises(ConfigurationError):
            relative_to_context(tmp_path, "../secret")

    def test_sibling_with_shared_prefix_is_outside(self, tmp_path):
        with pytest.raises(ConfigurationError):
            relative_to_context(tmp_path / "ctx", str(tmp_path / "ctx-other" / "f"))


class TestContextBuilder:
    """Tests for ContextBuilder.create."""

    def test_archive_contains_exactly_dockerfile_and_dependencies(self, context_dir):
        builder = ContextBuilder(ListParser(["requirements.txt", "src/app.py"]))

        with builder.create(context_dir, "Dockerfile") as archive:
            names = [m.name for m in tar_members(archive)]

        assert names == ["requirements.txt", "src/app.py", "Dockerfile"]

    def test_absolute_dependencies_are_made_relative(self, context_dir):
        parser = ListParser([str(context_dir / "src" / "app.py")])
        builder = ContextBuilder(parser)

        with builder.create(context_dir, "Dockerfile") as archive:
            names = [m.name for m in tar_members(archive)]

        assert names == ["src/app.py", "Dockerfile"]

    def test_ownership_is_normalized(self, context_dir):
        builder = ContextBuilder(ListParser(["requirements.txt", "src"]))

        with builder.create(context_dir, "Dockerfile") as archive:
            members = tar_members(archive)

        assert members
        for member in members:
            assert member.uid == 0
            assert member.gid == 0
            assert member.uname == ""
            assert member.gname == ""

    def test_directory_dependency_includes_its_tree(self, context_dir):
        builder = ContextBuilder(ListParser(["src"]))

        with builder.create(context_dir, "Dockerfile") as archive:
            names = [m.name for m in tar_members(archive)]
            listed = archive.members

        assert names == ["src", "src/lib", "src/app.py", "src/lib/util.py", "Dockerfile"]
        assert listed == names

    def test_duplicates_are_archived_once(self, context_dir):
        builder = ContextBuilder(
            ListParser(["src", "src/app.py", "Dockerfile", "./Dockerfile"])
        )

        with builder.create(context_dir, "Dockerfile") as archive:
            names = [m.name for m in tar_members(archive)]

        assert sorted(names) == sorted(set(names))
        assert "Dockerfile" in names

    def test_dependency_outside_context_is_rejected(self, context_dir, tmp_path):
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        builder = ContextBuilder(ListParser(["requirements.txt", str(outside)]))

        with pytest.raises(ConfigurationError) as exc_info:
            builder.create(context_dir, "Dockerfile")

        assert str(outside) in str(exc_info.value)

    def test_missing_context_dir(self, tmp_path):
        builder = ContextBuilder(ListParser([]))

        with pytest.raises(ConfigurationError) as exc_info:
            builder.create(tmp_path / "nope", "Dockerfile")

        assert exc_info.value.step == "opening build context"

    def test_missing_dockerfile(self, context_dir):
        builder = ContextBuilder(ListParser([]))

        with pytest.raises(ConfigurationError) as exc_info:
            builder.create(context_dir, "Dockerfile.missing")

        assert exc_info.value.step == "opening dockerfile"

    def test_dockerfile_outside_context(self, context_dir):
        builder = ContextBuilder(ListParser([]))

        with pytest.raises(ConfigurationError) as exc_info:
            builder.create(context_dir, "../Dockerfile")

        assert exc_info.value.step == "opening dockerfile"

    def test_parser_failure_is_wrapped(self, context_dir):
        builder = ContextBuilder(FailingParser())

        with pytest.raises(DependencyResolutionError) as exc_info:
            builder.create(context_dir, "Dockerfile")

        assert exc_info.value.step == "resolving dockerfile dependencies"
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert isinstance(exc_info.value, ContextAssemblyError)

    def test_missing_dependency_file(self, context_dir):
        builder = ContextBuilder(ListParser(["does-not-exist.txt"]))

        with pytest.raises(ContextAssemblyError) as exc_info:
            builder.create(context_dir, "Dockerfile")

        assert exc_info.value.step == "tar workspace"

    def test_parser_receives_dockerfile_content(self, context_dir):
        parser = ListParser([])
        builder = ContextBuilder(parser)

        with builder.create(context_dir, "Dockerfile"):
            pass

        context, content = parser.calls[0]
        assert Path(context) == Path(os.path.abspath(context_dir))
        assert content.startswith("FROM python:3.12-slim")

    def test_with_default_parser(self, context_dir):
        builder = ContextBuilder(DockerfileDependencyParser())

        with builder.create(context_dir, "Dockerfile") as archive:
            names = {m.name for m in tar_members(archive)}

        assert names == {
            "Dockerfile",
            "requirements.txt",
            "src/app.py",
            "src/lib/util.py",
        }


class TestBuildContextArchive:
    """Tests for archive streaming and lifecycle."""

    @pytest.mark.asyncio
    async def test_stream_yields_whole_archive(self, context_dir):
        builder = ContextBuilder(ListParser(["requirements.txt"]))

        with builder.create(context_dir, "Dockerfile") as archive:
            expected = archive.read()
            streamed = await drain(archive)

        assert streamed == expected
        assert len(streamed) == archive.size

    @pytest.mark.asyncio
    async def test_stream_only_once(self, context_dir):
        builder = ContextBuilder(ListParser([]))

        with builder.create(context_dir, "Dockerfile") as archive:
            await drain(archive)
            with pytest.raises(RuntimeError):
                await drain(archive)

    def test_closed_on_exit(self, context_dir):
        builder = ContextBuilder(ListParser([]))

        with builder.create(context_dir, "Dockerfile") as archive:
            assert not archive.closed

        assert archive.closed

    @pytest.mark.asyncio
    async def test_progress_plain_sink_gets_single_line(self, context_dir):
        builder = ContextBuilder(ListParser(["data.bin"]))
        progress = io.StringIO()

        with builder.create(context_dir, "Dockerfile") as archive:
            await drain(archive, progress)

        output = progress.getvalue()
        assert output.startswith("Sending build context to Docker daemon  ")
        assert output.count("\n") == 1
        assert "\r" not in output

    @pytest.mark.asyncio
    async def test_progress_terminal_sink_updates_in_place(self, context_dir):
        class TerminalSink(io.StringIO):
            def isatty(self):
                return True

        builder = ContextBuilder(ListParser(["data.bin"]))
        progress = TerminalSink()

        with builder.create(context_dir, "Dockerfile") as archive:
            await drain(archive, progress)

        output = progress.getvalue()
        assert output.count("\rSending build context to Docker daemon") > 1
        assert output.endswith("\n")
