"""
Dockerfile dependency resolution.

Finds the context files a Dockerfile's COPY and ADD instructions read, so
the build context can be limited to them.
"""

import glob
import json
import logging
import os
import re
import shlex
from pathlib import Path
from typing import Dict, List, Tuple

log = logging.getLogger(__name__)

_VARIABLE = re.compile(r"\$(?:\{(\w+)(?::?([-+])([^}]*))?\}|(\w+))")
_REMOTE_PREFIXES = ("http://", "https://", "git@", "git://")
_GLOB_CHARS = set("*?[")


def parse_instructions(content: str) -> List[Tuple[str, str]]:
    """
    Split Dockerfile content into (INSTRUCTION, arguments) pairs.

    Handles comments, blank lines and backslash line continuations.
    """
    instructions: List[Tuple[str, str]] = []
    pending = ""

    for raw in content.splitlines():
        line = raw.strip()
        if not pending and (not line or line.startswith("#")):
            continue
        if pending and line.startswith("#"):
            continue

        if line.endswith("\\"):
            pending += line[:-1] + " "
            continue

        line = pending + line
        pending = ""
        if not line.strip():
            continue

        keyword, _, args = line.strip().partition(" ")
        instructions.append((keyword.upper(), args.strip()))

    if pending.strip():
        keyword, _, args = pending.strip().partition(" ")
        instructions.append((keyword.upper(), args.strip()))

    return instructions


def expand_variables(value: str, env: Dict[str, str]) -> str:
    """Substitute $VAR, ${VAR}, ${VAR:-default} and ${VAR:+alt} references."""

    def replace(match: re.Match) -> str:
        name = match.group(1) or match.group(4)
        current = env.get(name, "")
        modifier = match.group(2)
        if modifier == "-":
            return current or match.group(3)
        if modifier == "+":
            return match.group(3) if current else ""
        return current

    return _VARIABLE.sub(replace, value)


def _split_arguments(args: str) -> List[str]:
    if args.startswith("["):
        try:
            parsed = json.loads(args)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list) and all(isinstance(p, str) for p in parsed):
            return parsed
    return args.split()


def _parse_assignments(args: str) -> Dict[str, str]:
    """Parse ENV/ARG style assignments, including the legacy `ENV KEY value` form."""
    args = args.strip()
    if not args:
        return {}

    key, *rest = args.split(None, 1)
    if "=" not in key:
        # Legacy form: the rest of the line is the value
        return {key: _unquote(rest[0].strip() if rest else "")}

    values = {}
    for token in shlex.split(args, posix=True):
        key, _, value = token.partition("=")
        values[key] = value
    return values


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


class DockerfileDependencyParser:
    """Resolve the files COPY and ADD instructions read from the context."""

    def resolve_dependencies(self, context_dir: Path, dockerfile_content: str) -> List[str]:
        """
        Resolve Dockerfile dependencies.

        Args:
            context_dir: Absolute build context directory
            dockerfile_content: Dockerfile text

        Returns:
            Sorted, de-duplicated context-relative file paths

        Raises:
            ValueError: If a source escapes the context
            FileNotFoundError: If a source matches nothing in the context
        """
        context_dir = Path(context_dir)
        env: Dict[str, str] = {}
        sources: List[str] = []

        for instruction, args in parse_instructions(dockerfile_content):
            if instruction == "ARG":
                for key, value in _parse_assignments(args).items():
                    env.setdefault(key, expand_variables(value, env))
            elif instruction == "ENV":
                for key, value in _parse_assignments(args).items():
                    env[key] = expand_variables(value, env)
            elif instruction in ("COPY", "ADD"):
                sources.extend(self._instruction_sources(instruction, args, env))

        files = set()
        for source in sources:
            files.update(self._expand_source(context_dir, source))

        log.debug(f"Resolved {len(files)} dockerfile dependencies")
        return sorted(files)

    def _instruction_sources(
        self, instruction: str, args: str, env: Dict[str, str]
    ) -> List[str]:
        tokens = args.split()
        flags = []
        while tokens and tokens[0].startswith("--"):
            flags.append(tokens.pop(0))

        if any(flag.startswith("--from") for flag in flags):
            return []

        arguments = _split_arguments(" ".join(tokens))
        if len(arguments) < 2:
            return []

        sources = []
        for source in arguments[:-1]:
            source = expand_variables(source, env)
            if source.startswith(_REMOTE_PREFIXES):
                log.debug(f"Skipping remote {instruction} source {source}")
                continue
            sources.append(source)
        return sources

    def _expand_source(self, context_dir: Path, source: str) -> List[str]:
        pattern = os.path.normpath(os.path.join(str(context_dir), source.lstrip("/")))
        relative = os.path.relpath(pattern, context_dir)
        if relative == os.pardir or relative.startswith(os.pardir + os.sep):
            raise ValueError(f"{source} is outside the build context")

        if _GLOB_CHARS & set(source):
            matches = sorted(glob.glob(pattern))
        else:
            matches = [pattern] if os.path.lexists(pattern) else []

        if not matches:
            raise FileNotFoundError(f"{source}: no source files were specified")

        files = []
        for match in matches:
            path = Path(match)
            if path.is_dir() and not path.is_symlink():
                for root, _, names in os.walk(path):
                    for name in names:
                        files.append((Path(root) / name).relative_to(context_dir).as_posix())
            else:
                files.append(path.relative_to(context_dir).as_posix())
        return files
