"""
Test configuration and fixtures for dockship tests.

Provides shared fixtures for:
- Build context directories
- Fake image daemon and credential store
- Environment variable management
"""

import io
from pathlib import Path
from typing import Dict

import pytest

from dockship.build.orchestrator import BuildRequest, ImageOrchestrator
from dockship.core.auth import AuthConfig
from fakes import FakeDaemonClient, StaticCredentialStore


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep sinks plain and logs quiet regardless of the developer's shell."""
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("DOCKSHIP_PLAIN_OUTPUT", raising=False)


@pytest.fixture
def context_dir(tmp_path: Path) -> Path:
    """Provide a build context with files the Dockerfile uses and files it doesn't.

    Layout:
    - Dockerfile copying requirements.txt and src/
    - src/app.py, src/lib/util.py
    - docs/README.md, data.bin (not referenced)
    """
    root = tmp_path / "context"
    (root / "src" / "lib").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "Dockerfile").write_text(
        "FROM python:3.12-slim\n"
        "WORKDIR /app\n"
        "COPY requirements.txt .\n"
        "COPY src/ ./src/\n"
        'CMD ["python", "src/app.py"]\n'
    )
    (root / "requirements.txt").write_text("httpx\n")
    (root / "src" / "app.py").write_text("print('hello')\n")
    (root / "src" / "lib" / "util.py").write_text("VALUE = 1\n")
    (root / "docs" / "README.md").write_text("# docs\n")
    (root / "data.bin").write_bytes(b"\x00" * 4096)
    return root


@pytest.fixture
def registry_configs() -> Dict[str, AuthConfig]:
    return {
        "docker.io": AuthConfig(
            username="hubuser", password="hubpass", server_address="docker.io"
        ),
        "gcr.io": AuthConfig(
            username="_json_key", password="gcr-secret", server_address="gcr.io"
        ),
        "registry.example.com:5000": AuthConfig(
            identity_token="tok", server_address="registry.example.com:5000"
        ),
    }


@pytest.fixture
def credential_store(registry_configs) -> StaticCredentialStore:
    return StaticCredentialStore(registry_configs)


@pytest.fixture
def fake_daemon() -> FakeDaemonClient:
    return FakeDaemonClient(
        build_events=[
            {"stream": "Step 1/4 : FROM python:3.12-slim\n"},
            {"stream": " ---> 1a2b3c4d\n"},
            {"aux": {"ID": "sha256:abc123"}},
            {"stream": "Successfully built abc123\n"},
        ],
        push_events=[
            {"status": "The push refers to repository [docker.io/library/myimage]"},
            {"status": "Pushing", "id": "5f70bf18a086", "progressDetail": {"current": 512, "total": 1024}, "progress": "[====>  ]"},
            {"status": "Pushed", "id": "5f70bf18a086", "progressDetail": {}},
            {"status": "latest: digest: sha256:feed size: 528"},
            {"aux": {"Tag": "latest", "Digest": "sha256:feed", "Size": 528}},
        ],
        images=[
            {"Id": "sha256:abc123", "RepoTags": ["myimage:latest", "myimage:v1"]},
            {"Id": "sha256:def456", "RepoTags": ["other:latest"]},
        ],
    )


@pytest.fixture
def orchestrator(fake_daemon, credential_store) -> ImageOrchestrator:
    return ImageOrchestrator(daemon=fake_daemon, credential_store=credential_store)


@pytest.fixture
def build_request(context_dir: Path) -> BuildRequest:
    return BuildRequest(
        image_name="myimage",
        dockerfile="Dockerfile",
        context_dir=context_dir,
        build_args={"VERSION": "1.0", "HTTP_PROXY": None},
        progress_sink=io.StringIO(),
        build_sink=io.StringIO(),
    )
