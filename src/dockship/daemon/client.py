"""Image daemon client for build, push and image listing requests."""

import json
import logging
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterable,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Protocol,
)

import httpx
from docker.utils import parse_repository_tag
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import DaemonConfig
from ..core.auth import AuthConfig, encode_auth_config, encode_auth_configs
from ..core.reference import is_digest_reference
from ..exceptions import DaemonQueryError, StreamError, SubmissionError

log = logging.getLogger(__name__)

BUILD_STEP = "docker build"
PUSH_STEP = "pushing image to repository"
LIST_STEP = "getting image id"


@dataclass
class BuildOptions:
    """Options for one build request."""

    tags: List[str]
    dockerfile: str
    build_args: Dict[str, Optional[str]] = field(default_factory=dict)


class ImageSummary(BaseModel):
    """One entry of the daemon's image index."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="Id")
    repo_tags: List[str] = Field(default_factory=list, alias="RepoTags")

    @field_validator("repo_tags", mode="before")
    @classmethod
    def _null_tags(cls, value: Any) -> Any:
        return value or []


class DaemonClient(Protocol):
    """Capabilities the orchestrator needs from the image daemon.

    build() and push() return async context managers yielding the raw status
    stream. The stream must be drained or abandoned inside the ``async with``
    block; leaving the block releases the connection.
    """

    def build(
        self,
        context: AsyncIterable[bytes],
        options: BuildOptions,
        auth_configs: Dict[str, AuthConfig],
    ) -> AsyncContextManager[AsyncIterator[bytes]]: ...

    def push(
        self, ref: str, auth_config: AuthConfig
    ) -> AsyncContextManager[AsyncIterator[bytes]]: ...

    async def list_images(self, reference_filter: str) -> List[ImageSummary]: ...


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text.strip()[:500] or f"HTTP {response.status_code}"


class HttpDaemonClient:
    """Docker Engine API client over a unix socket or TCP.

    Requests are submitted exactly once; failures are raised to the caller
    without retrying.
    """

    def __init__(
        self,
        config: Optional[DaemonConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize daemon client.

        Args:
            config: Daemon connection settings. Defaults to the environment.
            transport: httpx transport override, mainly for tests.
        """
        self.config = config or DaemonConfig.from_environment()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HttpDaemonClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _ssl_context(self) -> Any:
        cert_path = self.config.cert_path
        if cert_path is None:
            return True

        if self.config.tls_verify:
            context = ssl.create_default_context(cafile=str(cert_path / "ca.pem"))
        else:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        cert = cert_path / "cert.pem"
        key = cert_path / "key.pem"
        if cert.exists() and key.exists():
            context.load_cert_chain(str(cert), str(key))
        return context

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            transport = self._transport
            if transport is None and self.config.is_unix_socket():
                transport = httpx.AsyncHTTPTransport(uds=self.config.get_socket_path())

            kwargs: Dict[str, Any] = {}
            if transport is not None:
                kwargs["transport"] = transport
            else:
                kwargs["verify"] = self._ssl_context()

            # Builds and pushes stream for as long as the daemon works
            timeout = httpx.Timeout(None, connect=self.config.connect_timeout)
            self._client = httpx.AsyncClient(
                base_url=self.config.get_base_url(), timeout=timeout, **kwargs
            )
        return self._client

    @asynccontextmanager
    async def _open_stream(
        self, method: str, path: str, step: str, target: str, **kwargs: Any
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        client = await self._get_client()
        log.debug(f"{method} {path} ({step}: {target})")

        request = client.build_request(method, path, **kwargs)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise SubmissionError(step, f"{target}: {e}") from e

        try:
            if response.status_code >= 400:
                await response.aread()
                raise SubmissionError(
                    step,
                    f"{target}: {_error_message(response)}",
                    status_code=response.status_code,
                )
            yield self._iter_chunks(response, step)
        finally:
            await response.aclose()

    async def _iter_chunks(self, response: httpx.Response, step: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise StreamError(step, f"reading daemon stream: {e}") from e

    def build(
        self,
        context: AsyncIterable[bytes],
        options: BuildOptions,
        auth_configs: Dict[str, AuthConfig],
    ) -> AsyncContextManager[AsyncIterator[bytes]]:
        """
        Submit a build request.

        Args:
            context: Build context tar stream
            options: Tags, Dockerfile path and build arguments
            auth_configs: Credentials for every registry the build may pull from

        Returns:
            Async context manager yielding the raw status stream
        """
        params = {
            "t": options.tags,
            "dockerfile": options.dockerfile,
            "buildargs": json.dumps(options.build_args),
        }
        headers = {
            "Content-Type": "application/x-tar",
            "X-Registry-Config": encode_auth_configs(auth_configs),
        }
        return self._open_stream(
            "POST",
            "/build",
            BUILD_STEP,
            ", ".join(options.tags),
            params=params,
            headers=headers,
            content=context,
        )

    def push(
        self, ref: str, auth_config: AuthConfig
    ) -> AsyncContextManager[AsyncIterator[bytes]]:
        """
        Submit a push request.

        Args:
            ref: Image reference to push
            auth_config: Credentials for the destination registry only

        Returns:
            Async context manager yielding the raw status stream

        Raises:
            SubmissionError: If the reference pins a digest
        """
        if is_digest_reference(ref):
            raise SubmissionError(PUSH_STEP, f"{ref}: cannot push a digest reference")

        repository, tag = parse_repository_tag(ref.strip())
        params = {"tag": tag} if tag else {}
        headers = {"X-Registry-Auth": encode_auth_config(auth_config)}
        return self._open_stream(
            "POST",
            f"/images/{repository}/push",
            PUSH_STEP,
            ref,
            params=params,
            headers=headers,
        )

    async def list_images(self, reference_filter: str) -> List[ImageSummary]:
        """
        List images matching a reference filter.

        Raises:
            DaemonQueryError: If the daemon cannot be queried
        """
        client = await self._get_client()
        params = {"filters": json.dumps({"reference": [reference_filter]})}
        try:
            response = await client.get("/images/json", params=params)
        except httpx.HTTPError as e:
            raise DaemonQueryError(LIST_STEP, str(e)) from e

        if response.status_code >= 400:
            raise DaemonQueryError(LIST_STEP, _error_message(response))

        try:
            return [ImageSummary.model_validate(item) for item in response.json()]
        except ValueError as e:
            raise DaemonQueryError(LIST_STEP, f"unexpected image list: {e}") from e
